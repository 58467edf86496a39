from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select
from ..auth import require_admin_access
from ..db import get_session
from ..models import Payment
from ..schemas import PaymentIn
from ..utils import utcnow

router = APIRouter(dependencies=[Depends(require_admin_access)])

def _validate(payload: PaymentIn):
    if not (payload.customer_name or "").strip() or payload.amount is None:
        raise HTTPException(400, "Customer name and amount are required")
    if payload.amount <= 0:
        raise HTTPException(400, "Amount must be a positive number")

def _get_or_404(session: Session, payment_id: int) -> Payment:
    payment = session.get(Payment, payment_id)
    if not payment:
        raise HTTPException(404, "Payment not found")
    return payment

@router.get("")
def list_payments(session: Session = Depends(get_session)):
    return {"payments": session.exec(select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc())).all()}

@router.post("", status_code=status.HTTP_201_CREATED)
def create_payment(payload: PaymentIn, session: Session = Depends(get_session)):
    _validate(payload)
    payment = Payment(**payload.model_dump())
    payment.customer_name = payment.customer_name.strip()
    session.add(payment)
    session.commit()
    session.refresh(payment)
    return {"payment": payment}

@router.get("/{payment_id}")
def get_payment(payment_id: int, session: Session = Depends(get_session)):
    return {"payment": _get_or_404(session, payment_id)}

@router.put("/{payment_id}")
def update_payment(payment_id: int, payload: PaymentIn, session: Session = Depends(get_session)):
    _validate(payload)
    payment = _get_or_404(session, payment_id)
    for key, value in payload.model_dump().items():
        setattr(payment, key, value)
    payment.updated_at = utcnow()
    session.add(payment)
    session.commit()
    session.refresh(payment)
    return {"payment": payment}

@router.delete("/{payment_id}")
def delete_payment(payment_id: int, session: Session = Depends(get_session)):
    payment = _get_or_404(session, payment_id)
    session.delete(payment)
    session.commit()
    return {"message": "Payment deleted successfully"}
