"""Document signing state machine.

A document moves ``draft -> pending_signature -> signed`` as its signers
sign in list order, or to ``failed`` when a failure is reported. Signed and
failed are terminal. Signers move ``pending -> sent -> signed`` (or to
``failed``). Nothing here commits; callers own the transaction.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from .models import AuditEvent, Document, Signer
from .utils import canonical_json, utcnow

logger = logging.getLogger(__name__)

DOC_DRAFT = "draft"
DOC_PENDING = "pending_signature"
DOC_SIGNED = "signed"
DOC_FAILED = "failed"

SIGNER_PENDING = "pending"
SIGNER_SENT = "sent"
SIGNER_SIGNED = "signed"
SIGNER_FAILED = "failed"

ACTION_SAVE = "save"
ACTION_SAVE_AND_SEND = "save_and_send"
ACTION_DRAFT = "draft"

DOCUMENT_TRANSITIONS = {
    DOC_DRAFT: {DOC_PENDING, DOC_FAILED},
    DOC_PENDING: {DOC_SIGNED, DOC_FAILED},
    DOC_SIGNED: set(),
    DOC_FAILED: set(),
}

SIGNER_TRANSITIONS = {
    SIGNER_PENDING: {SIGNER_SENT, SIGNER_SIGNED, SIGNER_FAILED},
    SIGNER_SENT: {SIGNER_SIGNED, SIGNER_FAILED},
    SIGNER_SIGNED: set(),
    SIGNER_FAILED: set(),
}


class InvalidTransition(ValueError):
    pass


class AlreadySigned(InvalidTransition):
    pass


@dataclass
class SubmitResult:
    document_completed: bool
    next_signer: Optional[Signer] = None


def transition_document(document: Document, target: str) -> Document:
    current = document.status
    if target not in DOCUMENT_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"document {document.id} cannot move from {current} to {target}")
    now = utcnow()
    document.status = target
    document.updated_at = now
    if target == DOC_SIGNED:
        document.completed_at = now
    logger.info("Document %s: %s -> %s", document.id, current, target)
    return document


def transition_signer(signer: Signer, target: str) -> Signer:
    current = signer.status
    if target not in SIGNER_TRANSITIONS.get(current, set()):
        if current == SIGNER_SIGNED:
            raise AlreadySigned(f"signer {signer.id} has already signed")
        raise InvalidTransition(f"signer {signer.id} cannot move from {current} to {target}")
    signer.status = target
    signer.updated_at = utcnow()
    return signer


def ordered_signers(session: Session, document_id: int) -> List[Signer]:
    return session.exec(
        select(Signer).where(Signer.document_id == document_id).order_by(Signer.routing_order, Signer.id)
    ).all()


def next_pending_signer(signers: List[Signer]) -> Optional[Signer]:
    for signer in signers:
        if signer.status == SIGNER_PENDING:
            return signer
    return None


def all_signed(signers: List[Signer]) -> bool:
    return bool(signers) and all(s.status == SIGNER_SIGNED for s in signers)


def record_event(
    session: Session,
    document_id: int,
    action: str,
    signer_id: Optional[int] = None,
    meta: Optional[dict] = None,
    ip: Optional[str] = None,
    ua: Optional[str] = None,
) -> AuditEvent:
    event = AuditEvent(
        document_id=document_id,
        signer_id=signer_id,
        action=action,
        meta_json=canonical_json(meta or {}),
        ip=ip,
        ua=ua,
    )
    session.add(event)
    return event


def start_signing(session: Session, document: Document) -> Signer:
    """Send the document to its first pending signer.

    Returns the signer who should receive the signing request.
    """
    if document.status not in (DOC_DRAFT, DOC_PENDING):
        raise InvalidTransition(f"document {document.id} is {document.status}")
    signers = ordered_signers(session, document.id)
    if not signers:
        raise InvalidTransition(f"document {document.id} has no signers")
    if document.status == DOC_PENDING and any(s.status == SIGNER_SENT for s in signers):
        raise InvalidTransition(f"document {document.id} is already out for signature")
    first = next_pending_signer(signers)
    if first is None:
        raise InvalidTransition(f"document {document.id} has no pending signers")
    if document.status == DOC_DRAFT:
        transition_document(document, DOC_PENDING)
        session.add(document)
    transition_signer(first, SIGNER_SENT)
    session.add(first)
    session.flush()
    return first


def _mark_signed(session: Session, signer: Signer, signature_data: str, position: dict, ip: Optional[str]):
    # conditional update: of two racing submissions only one sees the unsigned row
    now = utcnow()
    result = session.execute(
        update(Signer)
        .where(Signer.id == signer.id, Signer.status.in_([SIGNER_PENDING, SIGNER_SENT]))
        .values(
            status=SIGNER_SIGNED,
            signature_data=signature_data,
            x=position["x"],
            y=position["y"],
            page=position["page"],
            ip_address=ip,
            signed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.refresh(signer)
        if signer.status == SIGNER_SIGNED:
            raise AlreadySigned(f"signer {signer.id} has already signed")
        raise InvalidTransition(f"signer {signer.id} is {signer.status}")
    session.refresh(signer)


def submit_signature(
    session: Session,
    document: Document,
    signer: Signer,
    action: str,
    signature_data: Optional[str],
    position: Optional[dict],
    ip: Optional[str] = None,
) -> SubmitResult:
    if document.status in (DOC_SIGNED, DOC_FAILED):
        raise InvalidTransition(f"document {document.id} is {document.status}")
    if signer.status == SIGNER_SIGNED:
        raise AlreadySigned(f"signer {signer.id} has already signed")
    if signer.status == SIGNER_FAILED:
        raise InvalidTransition(f"signer {signer.id} has declined")

    if action == ACTION_DRAFT:
        if signature_data:
            signer.signature_data = signature_data
        if position:
            signer.x = position["x"]
            signer.y = position["y"]
            signer.page = position["page"]
        signer.updated_at = utcnow()
        session.add(signer)
        session.flush()
        return SubmitResult(document_completed=False)

    if action not in (ACTION_SAVE, ACTION_SAVE_AND_SEND):
        raise ValueError(f"unknown action {action!r}")
    if not signature_data or not position:
        raise ValueError("signatureData and position are required to sign")

    _mark_signed(session, signer, signature_data, position, ip)
    if document.status == DOC_DRAFT:
        # signed through a link before the document was formally sent
        transition_document(document, DOC_PENDING)

    signers = ordered_signers(session, document.id)
    if all_signed(signers):
        transition_document(document, DOC_SIGNED)
        session.add(document)
        session.flush()
        return SubmitResult(document_completed=True)

    nxt = None
    if action == ACTION_SAVE_AND_SEND:
        nxt = next_pending_signer(signers)
        if nxt is not None:
            transition_signer(nxt, SIGNER_SENT)
            session.add(nxt)
    document.updated_at = utcnow()
    session.add(document)
    session.flush()
    return SubmitResult(document_completed=False, next_signer=nxt)


def fail_signing(session: Session, document: Document, signer: Optional[Signer] = None) -> Document:
    if signer is not None and signer.status != SIGNER_FAILED:
        transition_signer(signer, SIGNER_FAILED)
        session.add(signer)
    transition_document(document, DOC_FAILED)
    session.add(document)
    session.flush()
    return document


def complete_external_signer(session: Session, document: Document, signer: Signer) -> bool:
    """Mark a signer signed on behalf of an external provider.

    Returns True when this completed the document.
    """
    if signer.status != SIGNER_SIGNED:
        transition_signer(signer, SIGNER_SIGNED)
        signer.signed_at = utcnow()
        session.add(signer)
        session.flush()
    if document.status == DOC_DRAFT:
        transition_document(document, DOC_PENDING)
    if document.status == DOC_PENDING and all_signed(ordered_signers(session, document.id)):
        transition_document(document, DOC_SIGNED)
        session.add(document)
        session.flush()
        return True
    session.add(document)
    session.flush()
    return False
