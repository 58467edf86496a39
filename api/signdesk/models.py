import secrets
from typing import Optional
from datetime import datetime
from sqlalchemy import Column, DateTime
from sqlmodel import SQLModel, Field as ORMField
from .utils import utcnow

def _stamp():
    return ORMField(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))

def _moment():
    return ORMField(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

def _token_key() -> str:
    return secrets.token_urlsafe(24)

class Document(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    name: str
    s3_key: str
    signed_s3_key: Optional[str] = None
    uploaded_by: str = "admin"
    status: str = "draft"  # draft|pending_signature|signed|failed
    sha256: Optional[str] = None
    sha256_signed: Optional[str] = None
    content_type: str = "application/pdf"
    size: int = 0
    uploaded_at: datetime = _stamp()
    completed_at: Optional[datetime] = _moment()
    updated_at: datetime = _stamp()

class Signer(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    document_id: int = ORMField(index=True)
    name: str
    email: str
    routing_order: int = 1
    status: str = "pending"  # pending|sent|signed|failed
    # placement in percent of the page, origin top-left, page is 1-based
    x: Optional[float] = None
    y: Optional[float] = None
    page: Optional[int] = None
    signature_data: Optional[str] = None
    # per-signer secret carried in signing links
    token_key: str = ORMField(default_factory=_token_key)
    ip_address: Optional[str] = None
    signed_at: Optional[datetime] = _moment()
    created_at: datetime = _stamp()
    updated_at: datetime = _stamp()

class AuditEvent(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    document_id: int = ORMField(index=True)
    signer_id: Optional[int] = None
    action: str  # uploaded|signers_added|sent|opened|drafted|signed|declined|completed|failed|sealed
    meta_json: str = "{}"
    ip: Optional[str] = None
    ua: Optional[str] = None
    at: datetime = _stamp()

class Customer(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    name: str
    email: str = ORMField(index=True, unique=True)
    phone: Optional[str] = None
    company: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    customer_type: str = "residential"
    notify_by_email: bool = True
    notify_by_sms_text: bool = True
    created_at: datetime = _stamp()
    updated_at: datetime = _stamp()

class Invoice(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    invoice_number: str = ORMField(index=True, unique=True)
    customer_id: Optional[int] = None
    customer_name: str
    description: Optional[str] = None
    status: str = "Draft"  # Draft|Sent|Paid|Overdue|Cancelled|Pending
    issue_date: Optional[datetime] = _moment()
    due_date: Optional[datetime] = _moment()
    notes: Optional[str] = None
    terms: Optional[str] = None
    subtotal: float = 0.0
    discount_amount: float = 0.0
    tax_amount: float = 0.0
    total: float = 0.0
    created_at: datetime = _stamp()
    updated_at: datetime = _stamp()

class InvoiceItem(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    invoice_id: int = ORMField(index=True)
    position: int = 1
    description: str
    quantity: float
    rate: float
    amount: float = 0.0
    type: str = "Service"  # Service|Product
    tax_rate: float = 0.0
    discount: float = 0.0

class Payment(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    invoice_id: Optional[int] = None
    invoice_number: Optional[str] = None
    customer_id: Optional[int] = None
    customer_name: str
    amount: float
    status: str = "Pending"
    payment_date: Optional[datetime] = _moment()
    payment_method: Optional[str] = None
    stripe_payment_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = _stamp()
    updated_at: datetime = _stamp()
