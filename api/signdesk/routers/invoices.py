import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import func, or_
from sqlmodel import Session, select, delete
from .. import notifications
from ..auth import require_admin_access
from ..db import get_session
from ..invoice_pdf import render_invoice
from ..invoicing import calculate_invoice_totals, generate_invoice_number, is_overdue, line_amount
from ..models import Customer, Invoice, InvoiceItem
from ..schemas import InvoiceCreate, InvoiceItemIn, InvoiceStatusUpdate, InvoiceUpdate
from ..utils import content_disposition, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_access)])

def _items(session: Session, invoice_id: int) -> List[InvoiceItem]:
    return session.exec(
        select(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id).order_by(InvoiceItem.position)
    ).all()

def serialize_invoice(invoice: Invoice, items: List[InvoiceItem]) -> dict:
    return {
        **invoice.model_dump(),
        "overdue": is_overdue(invoice.due_date, invoice.status),
        "items": [item.model_dump() for item in items],
    }

def _get_or_404(session: Session, invoice_id: int) -> Invoice:
    invoice = session.get(Invoice, invoice_id)
    if not invoice:
        raise HTTPException(404, "Invoice not found")
    return invoice

def _resolve_customer(session: Session, customer_id: Optional[int]) -> Optional[Customer]:
    if customer_id is None:
        return None
    customer = session.get(Customer, customer_id)
    if not customer:
        raise HTTPException(404, "Customer not found")
    return customer

def _replace_items(session: Session, invoice: Invoice, items: List[InvoiceItemIn]):
    session.exec(delete(InvoiceItem).where(InvoiceItem.invoice_id == invoice.id))
    for position, item in enumerate(items, start=1):
        session.add(InvoiceItem(
            invoice_id=invoice.id,
            position=position,
            description=item.description,
            quantity=item.quantity,
            rate=item.rate,
            amount=line_amount(item),
            type=item.type,
            tax_rate=item.tax_rate,
            discount=item.discount,
        ))
    totals = calculate_invoice_totals(items)
    invoice.subtotal = totals["subtotal"]
    invoice.discount_amount = totals["discount_amount"]
    invoice.tax_amount = totals["tax_amount"]
    invoice.total = totals["total"]

def _unused_invoice_number(session: Session) -> str:
    for _ in range(20):
        candidate = generate_invoice_number()
        if not session.exec(select(Invoice).where(Invoice.invoice_number == candidate)).first():
            return candidate
    raise HTTPException(status.HTTP_409_CONFLICT, "Could not allocate an invoice number; supply one explicitly")

@router.get("")
def list_invoices(
    status: Optional[str] = None,
    search: Optional[str] = None,
    session: Session = Depends(get_session),
):
    stmt = select(Invoice)
    if status and status != "All":
        stmt = stmt.where(Invoice.status == status)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(or_(
            func.lower(Invoice.invoice_number).like(pattern),
            func.lower(Invoice.customer_name).like(pattern),
        ))
    invoices = session.exec(stmt.order_by(Invoice.created_at.desc(), Invoice.id.desc())).all()
    return {
        "invoices": [serialize_invoice(inv, _items(session, inv.id)) for inv in invoices],
        "total": len(invoices),
    }

@router.post("", status_code=status.HTTP_201_CREATED)
def create_invoice(payload: InvoiceCreate, session: Session = Depends(get_session)):
    customer = _resolve_customer(session, payload.customer_id)
    customer_name = customer.name if customer else (payload.customer_name or "").strip()
    if not customer_name:
        raise HTTPException(400, "Customer ID or customer name is required")
    number = (payload.invoice_number or "").strip() or _unused_invoice_number(session)
    if session.exec(select(Invoice).where(Invoice.invoice_number == number)).first():
        raise HTTPException(status.HTTP_409_CONFLICT, "An invoice with this number already exists")
    invoice = Invoice(
        invoice_number=number,
        customer_id=customer.id if customer else None,
        customer_name=customer_name,
        description=payload.description,
        status=payload.status,
        issue_date=payload.issue_date or utcnow(),
        due_date=payload.due_date,
        notes=payload.notes,
        terms=payload.terms,
    )
    session.add(invoice)
    session.flush()
    _replace_items(session, invoice, payload.items)
    session.add(invoice)
    session.commit()
    session.refresh(invoice)
    logger.info("Invoice %s created for %s (total %.2f)", invoice.invoice_number, customer_name, invoice.total)
    return {"message": "Invoice created successfully", "invoice": serialize_invoice(invoice, _items(session, invoice.id))}

@router.get("/{invoice_id}")
def get_invoice(invoice_id: int, session: Session = Depends(get_session)):
    invoice = _get_or_404(session, invoice_id)
    return serialize_invoice(invoice, _items(session, invoice.id))

@router.put("/{invoice_id}")
def update_invoice(invoice_id: int, payload: InvoiceUpdate, session: Session = Depends(get_session)):
    invoice = _get_or_404(session, invoice_id)
    data = payload.model_dump(exclude_unset=True, exclude={"items"})
    if "customer_id" in data:
        customer = _resolve_customer(session, data.pop("customer_id"))
        invoice.customer_id = customer.id if customer else None
        if customer:
            invoice.customer_name = customer.name
    if data.get("customer_name"):
        invoice.customer_name = data.pop("customer_name").strip()
    data.pop("customer_name", None)
    for key, value in data.items():
        if value is not None:
            setattr(invoice, key, value)
    if payload.items is not None:
        _replace_items(session, invoice, payload.items)
    invoice.updated_at = utcnow()
    session.add(invoice)
    session.commit()
    session.refresh(invoice)
    return serialize_invoice(invoice, _items(session, invoice.id))

@router.patch("/{invoice_id}")
def update_invoice_status(invoice_id: int, payload: InvoiceStatusUpdate, session: Session = Depends(get_session)):
    invoice = _get_or_404(session, invoice_id)
    invoice.status = payload.status
    invoice.updated_at = utcnow()
    session.add(invoice)
    session.commit()
    session.refresh(invoice)
    return serialize_invoice(invoice, _items(session, invoice.id))

@router.delete("/{invoice_id}")
def delete_invoice(invoice_id: int, session: Session = Depends(get_session)):
    invoice = _get_or_404(session, invoice_id)
    session.exec(delete(InvoiceItem).where(InvoiceItem.invoice_id == invoice.id))
    session.delete(invoice)
    session.commit()
    return {"message": "Invoice deleted successfully", "deletedId": invoice_id}

@router.get("/{invoice_id}/pdf")
def download_invoice_pdf(invoice_id: int, session: Session = Depends(get_session)):
    invoice = _get_or_404(session, invoice_id)
    customer = session.get(Customer, invoice.customer_id) if invoice.customer_id else None
    pdf = render_invoice(invoice, _items(session, invoice.id), customer)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": content_disposition(f"invoice-{invoice.invoice_number}.pdf")},
    )

@router.post("/{invoice_id}/send-email")
def send_invoice_email(invoice_id: int, session: Session = Depends(get_session)):
    invoice = _get_or_404(session, invoice_id)
    customer = session.get(Customer, invoice.customer_id) if invoice.customer_id else None
    if not customer or not customer.email:
        raise HTTPException(400, "Customer email not found")
    pdf = render_invoice(invoice, _items(session, invoice.id), customer)
    if not notifications.send_invoice(invoice, customer.email, pdf):
        raise HTTPException(500, "Failed to send email")
    if invoice.status == "Draft":
        invoice.status = "Sent"
        invoice.updated_at = utcnow()
        session.add(invoice)
        session.commit()
        session.refresh(invoice)
    return {
        "success": True,
        "message": "Invoice email sent successfully",
        "invoice": serialize_invoice(invoice, _items(session, invoice.id)),
    }
