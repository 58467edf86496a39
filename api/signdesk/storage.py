"""Document object store on MinIO.

Every object for a document lives under ``documents/<id>/``: the uploaded
original, and once sealed the signed PDF plus its audit JSON.
"""
import io
import logging
from typing import Iterable, List

from minio import Minio
from minio.error import S3Error

from . import config

logger = logging.getLogger(__name__)

_client = None
_bucket_ready = False


def client() -> Minio:
    global _client
    if _client is None:
        _client = Minio(
            config.MINIO_ENDPOINT,
            access_key=config.MINIO_ACCESS_KEY,
            secret_key=config.MINIO_SECRET_KEY,
            secure=config.MINIO_SECURE,
        )
    return _client


def original_key(document_id: int, filename: str) -> str:
    return f"documents/{document_id}/original-{filename.replace('/', '_')}"


def signed_key(document_id: int) -> str:
    return f"documents/{document_id}/signed.pdf"


def audit_key(document_id: int) -> str:
    return f"documents/{document_id}/signed.audit.json"


def ensure_bucket():
    global _bucket_ready
    if _bucket_ready:
        return
    if not client().bucket_exists(config.MINIO_BUCKET):
        client().make_bucket(config.MINIO_BUCKET)
        logger.info("Created bucket %s", config.MINIO_BUCKET)
    _bucket_ready = True


def put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
    ensure_bucket()
    client().put_object(config.MINIO_BUCKET, key, io.BytesIO(data), length=len(data), content_type=content_type)


def get_bytes(key: str) -> bytes:
    resp = client().get_object(config.MINIO_BUCKET, key)
    try:
        return resp.read()
    finally:
        resp.close()
        resp.release_conn()


def delete_object(key: str):
    client().remove_object(config.MINIO_BUCKET, key)


def delete_objects(keys: Iterable[str]) -> List[str]:
    """Remove each key, logging the ones the store refused. Returns the keys left behind."""
    left = []
    for key in keys:
        try:
            delete_object(key)
        except S3Error:
            logger.warning("Stored object %s could not be removed", key, exc_info=True)
            left.append(key)
    return left
