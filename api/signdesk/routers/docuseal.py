"""Bridge to DocuSeal hosted signing: token issue and the signing webhook."""
import logging
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlmodel import Session

from .. import config
from ..auth import AccessContext, require_admin_access
from ..db import get_session
from ..finalize import seal_or_enqueue
from ..models import Document, Signer
from ..schemas import DocuSealRequest
from ..utils import is_png_data, same_secret, utcnow
from ..workflow import (
    DOC_DRAFT,
    DOC_FAILED,
    DOC_PENDING,
    SIGNER_PENDING,
    SIGNER_SENT,
    SIGNER_SIGNED,
    InvalidTransition,
    complete_external_signer,
    fail_signing,
    ordered_signers,
    record_event,
    transition_document,
    transition_signer,
)
from .documents import serialize_signer

logger = logging.getLogger(__name__)

router = APIRouter()

TOKEN_TTL = timedelta(days=7)


def _find_or_add_signer(session: Session, document: Document, email: str, name: Optional[str]) -> Signer:
    email = email.strip().lower()
    signers = ordered_signers(session, document.id)
    for signer in signers:
        if signer.email.lower() == email:
            return signer
    signer = Signer(
        document_id=document.id,
        name=(name or email).strip(),
        email=email,
        routing_order=max([s.routing_order for s in signers], default=0) + 1,
    )
    session.add(signer)
    session.flush()
    return signer


@router.post("")
def issue_token(
    payload: DocuSealRequest,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_admin_access),
):
    if not config.DOCUSEAL_TOKEN:
        raise HTTPException(500, "DocuSeal not configured. Set DOCUSEAL_TOKEN.")
    if not (payload.signer_email.strip() and payload.signer_name.strip() and payload.document_url.strip()):
        raise HTTPException(400, "Missing required fields: documentId, signerEmail, signerName, documentUrl")
    doc = session.get(Document, payload.document_id)
    if not doc:
        raise HTTPException(404, "Document not found")
    if doc.status not in (DOC_DRAFT, DOC_PENDING):
        raise HTTPException(status.HTTP_409_CONFLICT, f"Document is {doc.status}")

    expires = utcnow() + TOKEN_TTL
    token = jwt.encode({
        "user_email": ctx.user,
        "integration_email": payload.signer_email,
        "name": f"{doc.name} - Signature Request",
        "document_urls": [payload.document_url],
        "signer_name": payload.signer_name,
        "signer_email": payload.signer_email,
        "document_id": doc.id,
        "expires_at": expires.isoformat(),
        "exp": expires,
    }, config.DOCUSEAL_TOKEN, algorithm="HS256")

    signer = _find_or_add_signer(session, doc, payload.signer_email, payload.signer_name)
    if doc.status == DOC_DRAFT:
        transition_document(doc, DOC_PENDING)
    if signer.status == SIGNER_PENDING:
        transition_signer(signer, SIGNER_SENT)
        session.add(signer)
    doc.updated_at = utcnow()
    session.add(doc)
    record_event(session, doc.id, "sent", signer_id=signer.id, meta={"provider": "docuseal"})
    session.commit()
    logger.info("DocuSeal token issued for document %s to %s", doc.id, payload.signer_email)
    return {
        "token": token,
        "documentId": doc.id,
        "signerEmail": payload.signer_email,
        "signerName": payload.signer_name,
        "message": "Signing token generated successfully",
    }


@router.get("")
def list_signatures(
    documentId: Optional[int] = None,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_admin_access),
):
    if documentId is None:
        raise HTTPException(400, "Document ID is required")
    signed = [s for s in ordered_signers(session, documentId) if s.status == SIGNER_SIGNED]
    return {
        "documentId": documentId,
        "signatures": [serialize_signer(s) for s in signed],
        "count": len(signed),
    }


@router.post("/webhook")
async def docuseal_webhook(request: Request, session: Session = Depends(get_session)):
    if not config.DOCUSEAL_WEBHOOK_SECRET:
        raise HTTPException(500, "DocuSeal webhook not configured. Set DOCUSEAL_WEBHOOK_SECRET.")
    if not same_secret(request.headers.get("x-docuseal-secret"), config.DOCUSEAL_WEBHOOK_SECRET):
        logger.warning("DocuSeal webhook rejected: bad or missing secret")
        raise HTTPException(401, "Invalid webhook secret")
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(400, "Invalid JSON payload")
    if not isinstance(body, dict):
        raise HTTPException(400, "Invalid JSON payload")
    event_type = body.get("event_type")
    data = body.get("data") or {}
    document_id = data.get("document_id")
    logger.info("DocuSeal webhook received: %s for document %s", event_type, document_id)

    if event_type not in ("document.signed", "document.failed"):
        return {"success": True, "message": "Webhook received", "event_type": event_type}

    try:
        doc = session.get(Document, int(document_id))
    except (TypeError, ValueError):
        doc = None

    if event_type == "document.failed":
        if doc is not None and doc.status in (DOC_DRAFT, DOC_PENDING):
            fail_signing(session, doc)
            record_event(session, doc.id, "failed", meta={"provider": "docuseal"})
            session.commit()
        return {"success": True, "message": "Document signing failure recorded"}

    if doc is None:
        logger.error("Document not found for signature webhook: %s", document_id)
        raise HTTPException(404, "Document not found")
    if doc.status == DOC_FAILED:
        raise HTTPException(status.HTTP_409_CONFLICT, "Document signing has failed")
    signer_email = data.get("signer_email")
    if not signer_email:
        raise HTTPException(400, "signer_email is required")

    signer = _find_or_add_signer(session, doc, signer_email, data.get("signer_name"))
    signature_data = data.get("signature_data")
    if signature_data and is_png_data(signature_data) and not signer.signature_data:
        signer.signature_data = signature_data
        signer.page = signer.page or 1
        signer.x = signer.x if signer.x is not None else 0.0
        signer.y = signer.y if signer.y is not None else 0.0
    try:
        completed = complete_external_signer(session, doc, signer)
    except InvalidTransition as exc:
        session.rollback()
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc))
    record_event(session, doc.id, "signed", signer_id=signer.id, meta={"provider": "docuseal"})
    if completed:
        record_event(session, doc.id, "completed")
    session.commit()
    session.refresh(doc)
    sealed = seal_or_enqueue(session, doc) if completed else False
    return {
        "success": True,
        "message": "Signature processed successfully",
        "documentCompleted": completed,
        "sealed": sealed,
    }
