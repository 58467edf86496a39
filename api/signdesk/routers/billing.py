"""Stripe checkout for invoices and the payment webhook."""
import json
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session, select

from .. import config
from ..auth import require_admin_access
from ..db import get_session
from ..models import Invoice, Payment
from ..schemas import CheckoutRequest
from ..utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


def _plain(obj):
    for attr in ("to_dict_recursive", "to_dict"):
        fn = getattr(obj, attr, None)
        if callable(fn):
            return fn()
    return obj


@router.post("/checkout")
def create_checkout_session(
    payload: CheckoutRequest,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    if not config.STRIPE_SECRET_KEY:
        raise HTTPException(500, "Stripe not configured. Set STRIPE_SECRET_KEY.")
    invoice = session.get(Invoice, payload.invoice_id)
    if not invoice:
        raise HTTPException(404, "Invoice not found")
    base = config.WEB_BASE_URL.rstrip("/")
    stripe.api_key = config.STRIPE_SECRET_KEY
    try:
        checkout = stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": "usd",
                    "product_data": {
                        "name": f"Invoice #{invoice.invoice_number}",
                        "description": payload.description or invoice.description or invoice.customer_name,
                    },
                    "unit_amount": round(payload.amount * 100),
                },
                "quantity": 1,
            }],
            mode="payment",
            success_url=f"{base}/dashboard?payment=success&invoice={invoice.id}",
            cancel_url=f"{base}/dashboard?payment=cancelled&invoice={invoice.id}",
            metadata={"invoiceId": str(invoice.id)},
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout failed for invoice %s: %s", invoice.id, e)
        raise HTTPException(500, "Failed to create payment session")
    logger.info("Checkout session %s created for invoice %s", checkout.id, invoice.id)
    return {"sessionUrl": checkout.url, "sessionId": checkout.id}


@router.post("/webhook")
async def stripe_webhook(request: Request, session: Session = Depends(get_session)):
    if not (config.STRIPE_WEBHOOK_SECRET and config.STRIPE_SECRET_KEY):
        raise HTTPException(500, "Stripe webhook not configured properly")
    body = await request.body()
    signature = request.headers.get("stripe-signature") or ""
    try:
        event = stripe.Webhook.construct_event(body, signature, config.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error("Stripe webhook rejected: %s", e)
        raise HTTPException(400, f"Webhook Error: {e}")

    event = _plain(event)
    event_type = event.get("type")
    logger.info("Stripe webhook received: %s", event_type)
    if event_type != "checkout.session.completed":
        return {"received": True}

    obj = event.get("data", {}).get("object", {}) or {}
    invoice_id = (obj.get("metadata") or {}).get("invoiceId")
    try:
        invoice = session.get(Invoice, int(invoice_id)) if invoice_id else None
    except (TypeError, ValueError):
        invoice = None
    if not invoice:
        logger.warning("checkout.session.completed for unknown invoice %r", invoice_id)
        return {"received": True}

    stripe_payment_id = obj.get("payment_intent") or obj.get("id")
    already = session.exec(select(Payment).where(Payment.stripe_payment_id == stripe_payment_id)).first()
    invoice.status = "Paid"
    invoice.updated_at = utcnow()
    session.add(invoice)
    if not already:
        amount_total = obj.get("amount_total")
        session.add(Payment(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            customer_id=invoice.customer_id,
            customer_name=invoice.customer_name,
            amount=amount_total / 100 if amount_total else invoice.total,
            status="Completed",
            payment_date=utcnow(),
            payment_method="card",
            stripe_payment_id=stripe_payment_id,
            description=json.dumps({"checkout_session": obj.get("id")}),
        ))
    session.commit()
    logger.info("Invoice %s marked Paid from Stripe", invoice.id)
    return {"received": True}
