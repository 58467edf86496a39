import base64, binascii, hashlib, hmac, json, re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from .config import SECRET_KEY, SIGNING_TOKEN_MAX_AGE

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"

class TokenExpired(Exception):
    pass

class TokenInvalid(Exception):
    pass

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # naive values are taken to be UTC already (SQLite hands them back that way)
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def b64png_to_bytes(data_url: str) -> bytes:
    # accepts "data:image/png;base64,....." or the bare base64 payload
    if "," in data_url:
        data_url = data_url.split(",", 1)[1]
    return base64.b64decode(data_url, validate=True)

def is_png_data(data_url: str) -> bool:
    try:
        return b64png_to_bytes(data_url).startswith(PNG_MAGIC)
    except (binascii.Error, ValueError):
        return False

def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)

def content_disposition(filename: str, disposition: str = "attachment") -> str:
    """Header value that survives non latin-1 names (RFC 6266 ``filename*``)."""
    stem, dot, ext = filename.rpartition(".")
    if not dot:
        stem, ext = filename, ""
    ascii_stem = re.sub(r'[^A-Za-z0-9 ._()-]+', "", stem.encode("ascii", "ignore").decode()).strip(" .-_")
    ascii_ext = re.sub(r"[^A-Za-z0-9]+", "", ext)
    fallback = (ascii_stem or "document") + (f".{ascii_ext}" if ascii_ext else "")
    return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"

def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(SECRET_KEY, salt="signing")

def make_token(payload: dict) -> str:
    return _serializer().dumps(payload)

def read_token(token: str, max_age: int = SIGNING_TOKEN_MAX_AGE) -> dict:
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise TokenExpired(str(exc)) from exc
    except BadSignature as exc:
        raise TokenInvalid(str(exc)) from exc
    if not isinstance(data, dict):
        raise TokenInvalid("malformed token payload")
    return data

def same_secret(given, expected: Optional[str]) -> bool:
    if not expected or not isinstance(given, str):
        return False
    return hmac.compare_digest(given.encode(), expected.encode())
