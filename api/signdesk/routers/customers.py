import csv
import io
import logging
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlmodel import Session, select
from ..auth import require_admin_access
from ..db import get_session
from ..models import Customer
from ..schemas import CustomerIn
from ..utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_access)])

MAX_IMPORT_BYTES = 2 * 1024 * 1024
IMPORT_REQUIRED = ("Name", "Email")
_email = TypeAdapter(EmailStr)

def _clean(value):
    if value is None:
        return None
    value = value.strip()
    return value or None

def _validated_email(payload: CustomerIn) -> str:
    if not (payload.name or "").strip() or not (payload.email or "").strip():
        raise HTTPException(400, "Name and email are required")
    return payload.email.strip().lower()

def _ensure_unique_email(session: Session, email: str, exclude_id=None):
    stmt = select(Customer).where(Customer.email == email)
    if exclude_id is not None:
        stmt = stmt.where(Customer.id != exclude_id)
    if session.exec(stmt).first():
        raise HTTPException(status.HTTP_409_CONFLICT, "A customer with this email already exists")

def _get_or_404(session: Session, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if not customer:
        raise HTTPException(404, "Customer not found")
    return customer

@router.get("")
def list_customers(session: Session = Depends(get_session)):
    return {"customers": session.exec(select(Customer).order_by(Customer.name)).all()}

@router.post("", status_code=status.HTTP_201_CREATED)
def create_customer(payload: CustomerIn, session: Session = Depends(get_session)):
    email = _validated_email(payload)
    _ensure_unique_email(session, email)
    customer = Customer(
        name=payload.name.strip(),
        email=email,
        phone=_clean(payload.phone),
        company=_clean(payload.company),
        address=_clean(payload.address),
        contact_person=_clean(payload.contact_person),
        customer_type=payload.customer_type or "residential",
        notify_by_email=payload.notify_by_email is not False,
        notify_by_sms_text=payload.notify_by_sms_text is not False,
    )
    session.add(customer)
    session.commit()
    session.refresh(customer)
    return {"message": "Customer created successfully", "customer": customer}

def _csv_rows(text: str):
    rows = [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]
    return [[cell.strip() for cell in row] for row in rows]

def _flag(value: str) -> bool:
    return value.strip().lower() != "false"

@router.post("/import")
async def import_customers(file: UploadFile = File(None), session: Session = Depends(get_session)):
    if file is None:
        raise HTTPException(400, "No file uploaded")
    if not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(400, "Only CSV files are allowed")
    data = await file.read()
    if len(data) > MAX_IMPORT_BYTES:
        raise HTTPException(400, "File size too large. Max 2MB allowed.")
    try:
        rows = _csv_rows(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, csv.Error):
        raise HTTPException(400, "CSV file could not be read")
    if len(rows) < 2:
        raise HTTPException(400, "CSV file must have at least a header row and one data row")
    headers = rows[0]
    missing = [h for h in IMPORT_REQUIRED if h not in headers]
    if missing:
        raise HTTPException(400, f"Missing required headers: {', '.join(missing)}")

    records, errors = [], []
    for number, values in enumerate(rows[1:], start=2):
        record = {h: (values[i] if i < len(values) else "") for i, h in enumerate(headers)}
        if not record["Name"] or not record["Email"]:
            errors.append(f"Row {number}: Missing required fields (Name, Email)")
            continue
        try:
            record["Email"] = _email.validate_python(record["Email"]).lower()
        except ValidationError:
            errors.append(f"Row {number}: Invalid email format")
            continue
        records.append(record)
    if not records:
        return JSONResponse(status_code=400, content={"error": "No valid records found in CSV file", "details": errors})

    known = set(session.exec(select(Customer.email)).all())
    duplicates, inserted = [], 0
    for record in records:
        if record["Email"] in known:
            duplicates.append({"name": record["Name"], "email": record["Email"], "reason": "Email already exists"})
            continue
        known.add(record["Email"])
        session.add(Customer(
            name=record["Name"],
            email=record["Email"],
            phone=_clean(record.get("Phone")),
            company=_clean(record.get("Company")),
            address=_clean(record.get("Address")),
            contact_person=_clean(record.get("Contact Person")),
            customer_type=record.get("Customer Type") or "residential",
            notify_by_email=_flag(record.get("Notify By Email", "")),
            notify_by_sms_text=_flag(record.get("Notify By SMS", "")),
        ))
        inserted += 1
    session.commit()
    logger.info("Customer import: %d inserted, %d duplicates, %d errors", inserted, len(duplicates), len(errors))
    return {
        "success": True,
        "message": "CSV import completed",
        "results": {"total": len(records), "inserted": inserted, "duplicates": len(duplicates), "errors": len(errors)},
        "details": {"duplicates": duplicates[:10], "errors": errors[:10]},
    }

@router.get("/{customer_id}")
def get_customer(customer_id: int, session: Session = Depends(get_session)):
    return _get_or_404(session, customer_id)

@router.put("/{customer_id}")
def update_customer(customer_id: int, payload: CustomerIn, session: Session = Depends(get_session)):
    customer = _get_or_404(session, customer_id)
    email = _validated_email(payload)
    if email != customer.email:
        _ensure_unique_email(session, email, exclude_id=customer.id)
    customer.name = payload.name.strip()
    customer.email = email
    customer.phone = _clean(payload.phone)
    customer.company = _clean(payload.company)
    customer.address = _clean(payload.address)
    customer.contact_person = _clean(payload.contact_person)
    customer.customer_type = payload.customer_type or "residential"
    customer.notify_by_email = payload.notify_by_email is not False
    customer.notify_by_sms_text = payload.notify_by_sms_text is not False
    customer.updated_at = utcnow()
    session.add(customer)
    session.commit()
    session.refresh(customer)
    return {"message": "Customer updated successfully", "customer": customer}

@router.delete("/{customer_id}")
def delete_customer(customer_id: int, session: Session = Depends(get_session)):
    customer = _get_or_404(session, customer_id)
    data = customer.model_dump()
    session.delete(customer)
    session.commit()
    return {"message": "Customer deleted successfully", "customer": data}
