import base64
import io
import os
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from minio.error import S3Error
from PIL import Image
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_ACCESS_TOKEN", "admin-test-token")
os.environ.setdefault("SEAL_ASYNC", "false")

from signdesk.main import app  # noqa: E402
from signdesk import config as config_module  # noqa: E402
from signdesk import db as db_module  # noqa: E402
from signdesk.db import get_session  # noqa: E402
from signdesk import storage as storage_module  # noqa: E402
from signdesk import email as email_module  # noqa: E402

ADMIN_TOKEN = "admin-test-token"


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session(test_engine, setup_db):
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[key] = bytes(data)

    def fake_get_bytes(key: str) -> bytes:
        if key not in store:
            raise S3Error("NoSuchKey", "missing", f"/{key}", "test-request", "test-host")
        return store[key]

    def fake_delete_object(key: str):
        store.pop(key, None)

    monkeypatch.setattr(storage_module, "put_bytes", fake_put_bytes)
    monkeypatch.setattr(storage_module, "get_bytes", fake_get_bytes)
    monkeypatch.setattr(storage_module, "delete_object", fake_delete_object)
    return store


@pytest.fixture
def sent_emails(monkeypatch):
    messages = []

    def fake_send_email(to, subject, text_body, html_body=None, attachments=None, sender_name=None, reply_to=None):
        messages.append(
            {
                "to": to,
                "subject": subject,
                "text": text_body,
                "html": html_body,
                "attachments": attachments or [],
                "reply_to": reply_to,
            }
        )
        return True

    monkeypatch.setattr(email_module, "send_email", fake_send_email)
    return messages


@pytest.fixture
def client(test_engine, setup_db, mock_storage, sent_emails, monkeypatch):
    db_module.engine = test_engine
    monkeypatch.setattr(config_module, "ADMIN_ACCESS_TOKEN", ADMIN_TOKEN)
    monkeypatch.setattr(config_module, "SEAL_ASYNC", False)

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Access-Token": ADMIN_TOKEN, "X-User": "owner@example.com"}


def build_pdf(pages: int = 1) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    for number in range(1, pages + 1):
        c.drawString(72, 720, f"Agreement page {number}")
        c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def pdf_bytes():
    return build_pdf(pages=2)


@pytest.fixture
def signature_b64():
    buf = io.BytesIO()
    Image.new("RGBA", (60, 24), (20, 20, 20, 255)).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


@pytest.fixture
def create_document(client, admin_headers, pdf_bytes):
    """Upload a PDF and attach signers; returns (document, tokens in signing order)."""

    def _create(signers=(("Ana Lima", "ana@example.com"), ("Ben Ortiz", "ben@example.com")), name="contract.pdf"):
        upload = client.post(
            "/api/documents",
            files={"file": (name, pdf_bytes, "application/pdf")},
            headers=admin_headers,
        )
        assert upload.status_code == 200, upload.text
        document = upload.json()["document"]
        if not signers:
            return document, []
        resp = client.post(
            f"/api/documents/{document['id']}/signers",
            json={"signers": [{"name": n, "email": e} for n, e in signers]},
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.text
        tokens = [link["link"].rsplit("/", 1)[1] for link in resp.json()["signing_links"]]
        return document, tokens

    return _create
