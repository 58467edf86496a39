import json
import logging
from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from minio.error import S3Error
from sqlmodel import Session, select, delete
from .. import notifications, storage
from ..auth import AccessContext, require_admin_access
from ..config import MAX_UPLOAD_MB
from ..db import get_session
from ..models import AuditEvent, Document, Signer
from ..schemas import DocumentSend, SignersAdd
from ..utils import content_disposition, sha256_bytes
from ..workflow import DOC_DRAFT, InvalidTransition, ordered_signers, record_event, start_signing

logger = logging.getLogger(__name__)

router = APIRouter()

def serialize_signer(s: Signer) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "email": s.email,
        "order": s.routing_order,
        "status": s.status,
        "position": {"x": s.x, "y": s.y, "page": s.page} if s.x is not None else None,
        "signed_at": s.signed_at,
    }

def serialize_document(doc: Document, signers=None) -> dict:
    return {
        "id": doc.id,
        "name": doc.name,
        "file_url": f"/api/documents/{doc.id}/download",
        "uploaded_by": doc.uploaded_by,
        "uploaded_at": doc.uploaded_at,
        "completed_at": doc.completed_at,
        "status": doc.status,
        "size": doc.size,
        "sha256": doc.sha256,
        "signed": bool(doc.signed_s3_key),
        "signers": [serialize_signer(s) for s in (signers or [])],
    }

def get_document_or_404(session: Session, document_id: int) -> Document:
    doc = session.get(Document, document_id)
    if not doc:
        raise HTTPException(404, "Document not found")
    return doc

def _looks_like_pdf(file: UploadFile, data: bytes) -> bool:
    name_ok = (file.filename or "").lower().endswith(".pdf")
    type_ok = (file.content_type or "") == "application/pdf"
    return (name_ok or type_ok) and data.startswith(b"%PDF")

@router.post("")
async def upload_document(
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_admin_access),
):
    data = await file.read()
    if not data:
        raise HTTPException(400, "No file provided")
    if len(data) > MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, f"File exceeds {MAX_UPLOAD_MB} MB")
    if not _looks_like_pdf(file, data):
        raise HTTPException(400, "Only PDF documents can be uploaded")
    name = file.filename or "document.pdf"
    doc = Document(
        name=name,
        s3_key="pending",
        uploaded_by=ctx.user,
        sha256=sha256_bytes(data),
        size=len(data),
    )
    session.add(doc)
    session.flush()
    key = storage.original_key(doc.id, name)
    storage.put_bytes(key, data, content_type="application/pdf")
    doc.s3_key = key
    session.add(doc)
    record_event(session, doc.id, "uploaded", meta={"name": name, "size": len(data)})
    session.commit()
    session.refresh(doc)
    logger.info("Document %s uploaded by %s (%d bytes)", doc.id, ctx.user, len(data))
    return {"document": serialize_document(doc), "message": "Document uploaded successfully"}

@router.get("")
def list_documents(
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    docs = session.exec(select(Document).order_by(Document.uploaded_at.desc(), Document.id.desc())).all()
    results = [serialize_document(d, ordered_signers(session, d.id)) for d in docs]
    return {"documents": results, "total": len(results)}

@router.get("/{document_id}")
def get_document(
    document_id: int,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    doc = get_document_or_404(session, document_id)
    return {"document": serialize_document(doc, ordered_signers(session, doc.id))}

@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(
    document_id: int,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    doc = get_document_or_404(session, document_id)
    keys = [doc.s3_key]
    if doc.signed_s3_key:
        keys += [doc.signed_s3_key, storage.audit_key(doc.id)]
    if storage.delete_objects(keys):
        logger.warning("Document %s deleted with stored objects left behind", doc.id)
    session.exec(delete(Signer).where(Signer.document_id == doc.id))
    session.exec(delete(AuditEvent).where(AuditEvent.document_id == doc.id))
    session.delete(doc)
    session.commit()
    logger.info("Document %s deleted by %s", document_id, ctx.user)

@router.get("/{document_id}/download")
def download_document(
    document_id: int,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    doc = get_document_or_404(session, document_id)
    key = doc.signed_s3_key or doc.s3_key
    try:
        pdf_bytes = storage.get_bytes(key)
    except S3Error:
        raise HTTPException(404, "stored file missing for this document")
    base = doc.name[:-4] if doc.name.lower().endswith(".pdf") else doc.name
    filename = f"{base}-signed.pdf" if doc.signed_s3_key else f"{base}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": content_disposition(filename)},
    )

@router.post("/{document_id}/signers", status_code=status.HTTP_201_CREATED)
def add_signers(
    document_id: int,
    payload: SignersAdd,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    doc = get_document_or_404(session, document_id)
    if doc.status != DOC_DRAFT:
        raise HTTPException(status.HTTP_409_CONFLICT, f"Signers can only be added while the document is a draft (status: {doc.status})")
    if not payload.signers:
        raise HTTPException(400, "At least one signer is required")
    existing = ordered_signers(session, doc.id)
    next_order = (existing[-1].routing_order if existing else 0) + 1
    created = []
    for offset, s in enumerate(payload.signers):
        name = s.name.strip()
        email = s.email.strip().lower()
        if not name:
            raise HTTPException(400, "Each signer needs a name")
        signer = Signer(
            document_id=doc.id,
            name=name,
            email=email,
            routing_order=next_order + offset,
            x=s.position.x if s.position else None,
            y=s.position.y if s.position else None,
            page=s.position.page if s.position else None,
        )
        session.add(signer)
        created.append(signer)
    session.flush()
    record_event(session, doc.id, "signers_added", meta={"signer_ids": [s.id for s in created]})
    session.commit()
    for signer in created:
        session.refresh(signer)
    return {
        "signers": [serialize_signer(s) for s in created],
        "signing_links": [
            {"name": s.name, "email": s.email, "link": notifications.signing_link(s)} for s in created
        ],
    }

@router.get("/{document_id}/signers")
def list_signers(
    document_id: int,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    get_document_or_404(session, document_id)
    return {"signers": [serialize_signer(s) for s in ordered_signers(session, document_id)]}

@router.post("/{document_id}/send")
def send_document(
    document_id: int,
    payload: DocumentSend,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    doc = get_document_or_404(session, document_id)
    try:
        first = start_signing(session, doc)
    except InvalidTransition as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc))
    record_event(session, doc.id, "sent", signer_id=first.id, meta={"subject": payload.subject})
    session.commit()
    session.refresh(doc)
    session.refresh(first)
    notifications.send_signing_request(
        doc,
        first,
        subject=payload.subject,
        message=payload.message,
        requester_name=payload.requester_name,
        requester_email=payload.requester_email,
    )
    return {"document": serialize_document(doc, ordered_signers(session, doc.id)), "sent_to": serialize_signer(first)}

# Dev helper: get magic links without tailing logs
@router.get("/{document_id}/links")
def signing_links(
    document_id: int,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    get_document_or_404(session, document_id)
    return {
        "document_id": document_id,
        "links": [
            {"signer": {"id": s.id, "name": s.name, "email": s.email}, "link": notifications.signing_link(s)}
            for s in ordered_signers(session, document_id)
        ],
    }

@router.get("/{document_id}/audit")
def audit_trail(
    document_id: int,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    get_document_or_404(session, document_id)
    events = session.exec(
        select(AuditEvent).where(AuditEvent.document_id == document_id).order_by(AuditEvent.id)
    ).all()
    return {
        "events": [
            {
                "id": e.id,
                "action": e.action,
                "signer_id": e.signer_id,
                "meta": json.loads(e.meta_json or "{}"),
                "ip": e.ip,
                "at": e.at,
            }
            for e in events
        ]
    }
