import logging

from celery import Celery
from sqlmodel import Session

from . import db
from .config import REDIS_URL, WORKER_QUEUE
from .finalize import finalize_document
from .models import Document

logger = logging.getLogger(__name__)

cel = Celery("signdesk", broker=REDIS_URL, backend=REDIS_URL)

@cel.task(name="seal_document", queue=WORKER_QUEUE)
def seal_document(document_id: int):
    with Session(db.engine) as session:
        document = session.get(Document, document_id)
        if not document:
            logger.warning("seal_document: document %s no longer exists", document_id)
            return None
        sha_final = finalize_document(session, document)
    return {"document_id": document_id, "sha256_final": sha_final}
