import logging
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from minio.error import S3Error
from sqlmodel import Session
from .. import notifications, storage
from ..db import get_session
from ..finalize import seal_or_enqueue
from ..models import Document, Signer
from ..schemas import SignDecline, SignSubmit
from ..utils import TokenExpired, TokenInvalid, is_png_data, read_token, same_secret
from ..workflow import (
    ACTION_DRAFT,
    AlreadySigned,
    InvalidTransition,
    fail_signing,
    ordered_signers,
    record_event,
    submit_signature,
)
from .documents import serialize_document, serialize_signer

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------- helpers ----------
def _resolve(session: Session, token: str):
    try:
        data = read_token(token)
    except TokenExpired:
        raise HTTPException(400, "Signing link has expired")
    except TokenInvalid:
        raise HTTPException(404, "Invalid signing token")
    signer_id = data.get("signer_id")
    if not isinstance(signer_id, int):
        raise HTTPException(404, "Invalid signing token")
    signer = session.get(Signer, signer_id)
    if not signer or signer.document_id != data.get("document_id") or not same_secret(data.get("key"), signer.token_key):
        raise HTTPException(404, "Invalid signing token")
    doc = session.get(Document, signer.document_id)
    if not doc:
        raise HTTPException(404, "Document not found")
    return doc, signer

def _client_ip(request: Request):
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


# ---------- routes ----------

@router.get("/{token}")
def load_signing_session(token: str, request: Request, session: Session = Depends(get_session)):
    doc, signer = _resolve(session, token)
    record_event(session, doc.id, "opened", signer_id=signer.id, ip=_client_ip(request), ua=request.headers.get("user-agent"))
    session.commit()
    session.refresh(doc)
    session.refresh(signer)
    signers = ordered_signers(session, doc.id)
    waiting_on = len([s for s in signers if s.status != "signed" and s.id != signer.id])
    document = serialize_document(doc)
    document.pop("signers")
    return {
        "document": document,
        "signer": {**serialize_signer(signer), "has_draft": bool(signer.signature_data) and signer.status != "signed"},
        "waiting_on": waiting_on,
    }

@router.get("/{token}/pdf")
def get_original_pdf(token: str, session: Session = Depends(get_session)):
    doc, _ = _resolve(session, token)
    try:
        pdf_bytes = storage.get_bytes(doc.s3_key)
    except S3Error:
        raise HTTPException(404, "stored file missing for this document")
    return Response(content=pdf_bytes, media_type="application/pdf")

@router.post("/{token}")
def submit(token: str, payload: SignSubmit, request: Request, session: Session = Depends(get_session)):
    doc, signer = _resolve(session, token)
    if payload.action != ACTION_DRAFT and (not payload.signature_data or payload.position is None):
        raise HTTPException(400, "signatureData and position are required")
    if payload.action == ACTION_DRAFT and not payload.signature_data and payload.position is None:
        raise HTTPException(400, "Nothing to save: provide signatureData or position")
    if payload.signature_data and not is_png_data(payload.signature_data):
        raise HTTPException(400, "signatureData must be a base64 encoded PNG image")

    ip = _client_ip(request)
    position = payload.position.model_dump() if payload.position else None
    try:
        result = submit_signature(session, doc, signer, payload.action, payload.signature_data, position, ip=ip)
    except AlreadySigned:
        session.rollback()
        raise HTTPException(status.HTTP_409_CONFLICT, "Document already signed")
    except InvalidTransition as exc:
        session.rollback()
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc))

    ua = request.headers.get("user-agent")
    if payload.action == ACTION_DRAFT:
        record_event(session, doc.id, "drafted", signer_id=signer.id, meta={"position": position}, ip=ip, ua=ua)
    else:
        record_event(session, doc.id, "signed", signer_id=signer.id, meta={"action": payload.action, "position": position}, ip=ip, ua=ua)
    if result.next_signer is not None:
        record_event(session, doc.id, "sent", signer_id=result.next_signer.id)
    if result.document_completed:
        record_event(session, doc.id, "completed")
    session.commit()
    session.refresh(doc)
    session.refresh(signer)

    if result.next_signer is not None:
        session.refresh(result.next_signer)
        notifications.send_signing_request(doc, result.next_signer)
    sealed = seal_or_enqueue(session, doc) if result.document_completed else False
    session.refresh(doc)
    session.refresh(signer)
    return {
        "message": "Draft saved" if payload.action == ACTION_DRAFT else "Document signed successfully",
        "documentCompleted": result.document_completed,
        "sealed": sealed,
        "document": {"id": doc.id, "status": doc.status},
        "signer": serialize_signer(signer),
        "next_signer": serialize_signer(result.next_signer) if result.next_signer is not None else None,
    }

@router.post("/{token}/decline")
def decline(token: str, payload: SignDecline, request: Request, session: Session = Depends(get_session)):
    doc, signer = _resolve(session, token)
    try:
        fail_signing(session, doc, signer)
    except InvalidTransition as exc:
        session.rollback()
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc))
    record_event(session, doc.id, "declined", signer_id=signer.id, meta={"reason": payload.reason},
                 ip=_client_ip(request), ua=request.headers.get("user-agent"))
    record_event(session, doc.id, "failed", signer_id=signer.id)
    session.commit()
    session.refresh(doc)
    session.refresh(signer)
    notifications.send_failed(doc, signer, payload.reason)
    return {"document": {"id": doc.id, "status": doc.status}, "signer": serialize_signer(signer)}
