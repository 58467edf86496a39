from datetime import datetime
from typing import Annotated, List, Literal, Optional
from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field
from .utils import as_utc

# naive input is read as UTC
UtcDateTime = Annotated[datetime, AfterValidator(as_utc)]

class Position(BaseModel):
    x: float = Field(ge=0, le=100)
    y: float = Field(ge=0, le=100)
    page: int = Field(default=1, ge=1)

class SignerCreate(BaseModel):
    name: str
    email: EmailStr
    position: Optional[Position] = None

class SignersAdd(BaseModel):
    signers: List[SignerCreate]

class DocumentSend(BaseModel):
    subject: Optional[str] = None
    message: Optional[str] = None
    requester_name: Optional[str] = None
    requester_email: Optional[str] = None

class SignSubmit(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signature_data: Optional[str] = Field(default=None, alias="signatureData")
    position: Optional[Position] = None
    action: Literal["save", "save_and_send", "draft"] = "save_and_send"

class SignDecline(BaseModel):
    reason: Optional[str] = None

class CustomerIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = Field(default=None, alias="contactPerson")
    customer_type: Optional[str] = Field(default=None, alias="customerType")
    notify_by_email: Optional[bool] = Field(default=None, alias="notifyByEmail")
    notify_by_sms_text: Optional[bool] = Field(default=None, alias="notifyBySmsText")

class InvoiceItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str
    quantity: float = Field(ge=0)
    rate: float
    type: Literal["Service", "Product"] = "Service"
    tax_rate: float = Field(default=0.0, ge=0, alias="taxRate")
    discount: float = Field(default=0.0, ge=0, le=100)

InvoiceStatus = Literal["Draft", "Sent", "Paid", "Overdue", "Cancelled", "Pending"]

class InvoiceCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_id: Optional[int] = Field(default=None, alias="customerId")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    invoice_number: Optional[str] = Field(default=None, alias="invoiceNumber")
    description: Optional[str] = None
    status: InvoiceStatus = "Draft"
    issue_date: Optional[UtcDateTime] = Field(default=None, alias="issueDate")
    due_date: Optional[UtcDateTime] = Field(default=None, alias="dueDate")
    notes: Optional[str] = None
    terms: Optional[str] = None
    items: List[InvoiceItemIn] = []

class InvoiceUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_id: Optional[int] = Field(default=None, alias="customerId")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    description: Optional[str] = None
    status: Optional[InvoiceStatus] = None
    issue_date: Optional[UtcDateTime] = Field(default=None, alias="issueDate")
    due_date: Optional[UtcDateTime] = Field(default=None, alias="dueDate")
    notes: Optional[str] = None
    terms: Optional[str] = None
    items: Optional[List[InvoiceItemIn]] = None

class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus

class PaymentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invoice_id: Optional[int] = Field(default=None, alias="invoiceId")
    invoice_number: Optional[str] = Field(default=None, alias="invoiceNumber")
    customer_id: Optional[int] = Field(default=None, alias="customerId")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    amount: Optional[float] = None
    status: str = "Pending"
    payment_date: Optional[UtcDateTime] = Field(default=None, alias="paymentDate")
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    stripe_payment_id: Optional[str] = Field(default=None, alias="stripePaymentId")
    description: Optional[str] = None

class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invoice_id: int = Field(alias="invoiceId")
    amount: float = Field(gt=0)
    description: Optional[str] = None

class DocuSealRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: int = Field(alias="documentId")
    signer_email: EmailStr = Field(alias="signerEmail")
    signer_name: str = Field(alias="signerName")
    document_url: str = Field(alias="documentUrl")
