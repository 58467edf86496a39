import logging

from sqlmodel import Session

from . import config, notifications, storage
from .models import Document
from .sealing import seal_pdf
from .workflow import DOC_SIGNED, InvalidTransition, ordered_signers, record_event

logger = logging.getLogger(__name__)


def finalize_document(session: Session, document: Document) -> str:
    """Seal a signed document, store the executed copy and notify every party.

    Returns the SHA-256 of the sealed PDF. Calling it again is a no-op that
    returns the stored hash.
    """
    if document.status != DOC_SIGNED:
        raise InvalidTransition(f"document {document.id} is {document.status}, not signed")
    if document.signed_s3_key:
        return document.sha256_signed or ""
    signers = ordered_signers(session, document.id)
    original = storage.get_bytes(document.s3_key)
    final_pdf, audit_json, sha_final = seal_pdf(original, document.id, [
        {
            "name": s.name,
            "email": s.email,
            "signature_data": s.signature_data,
            "x": s.x,
            "y": s.y,
            "page": s.page,
            "signed_at": s.signed_at.isoformat() if s.signed_at else None,
            "ip": s.ip_address,
        }
        for s in signers
    ])
    key_pdf = storage.signed_key(document.id)
    storage.put_bytes(key_pdf, final_pdf, content_type="application/pdf")
    storage.put_bytes(storage.audit_key(document.id), audit_json.encode(), content_type="application/json")
    document.signed_s3_key = key_pdf
    document.sha256_signed = sha_final
    session.add(document)
    record_event(session, document.id, "sealed", meta={"sha256_final": sha_final})
    session.commit()
    logger.info("Document %s sealed (%s)", document.id, sha_final)
    notifications.send_completed(document, signers, final_pdf=final_pdf, sha_final=sha_final)
    return sha_final


def seal_or_enqueue(session: Session, document: Document) -> bool:
    """Seal inline, or hand off to the worker when SEAL_ASYNC is set.

    Returns True only when the sealed copy was produced in this call.
    """
    if config.SEAL_ASYNC:
        from .tasks import seal_document
        seal_document.delay(document.id)
        return False
    try:
        finalize_document(session, document)
    except Exception:
        # signatures are already committed; the seal can be retried from the worker
        logger.exception("Sealing document %s failed", document.id)
        session.rollback()
        notifications.send_completed(document, ordered_signers(session, document.id))
        return False
    return True
