from types import SimpleNamespace
from unittest.mock import patch

import jwt
import pytest
import stripe
from sqlmodel import Session, select

from signdesk import config
from signdesk.models import Invoice, Payment


@pytest.fixture
def stripe_keys(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", "whsec_123")


@pytest.fixture
def invoice(client, admin_headers):
    resp = client.post(
        "/api/invoices",
        json={"invoiceNumber": "INV-202405-001", "customerName": "Dana", "items": [
            {"description": "Install", "quantity": 1, "rate": 120.5},
        ]},
        headers=admin_headers,
    )
    return resp.json()["invoice"]


def test_checkout_requires_stripe_configuration(client, admin_headers, invoice, monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "")
    resp = client.post("/api/stripe/checkout", json={"invoiceId": invoice["id"], "amount": 120.5}, headers=admin_headers)
    assert resp.status_code == 500
    assert "Stripe not configured" in resp.json()["error"]


def test_checkout_creates_session(client, admin_headers, invoice, stripe_keys):
    fake = SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/cs_test_1")
    with patch("stripe.checkout.Session.create", return_value=fake) as create:
        resp = client.post(
            "/api/stripe/checkout",
            json={"invoiceId": invoice["id"], "amount": 120.5, "description": "Roof install"},
            headers=admin_headers,
        )
    assert resp.status_code == 200
    assert resp.json()["sessionUrl"] == fake.url
    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "payment"
    assert kwargs["metadata"] == {"invoiceId": str(invoice["id"])}
    line = kwargs["line_items"][0]["price_data"]
    assert line["unit_amount"] == 12050
    assert line["product_data"]["name"] == "Invoice #INV-202405-001"


def test_checkout_reports_stripe_errors(client, admin_headers, invoice, stripe_keys):
    with patch("stripe.checkout.Session.create", side_effect=stripe.StripeError("card declined")):
        resp = client.post("/api/stripe/checkout", json={"invoiceId": invoice["id"], "amount": 10}, headers=admin_headers)
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to create payment session"}


def test_checkout_rejects_non_positive_amount(client, admin_headers, invoice, stripe_keys):
    resp = client.post("/api/stripe/checkout", json={"invoiceId": invoice["id"], "amount": 0}, headers=admin_headers)
    assert resp.status_code == 400


def test_webhook_rejects_bad_signature(client, stripe_keys):
    error = stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad")
    with patch("stripe.Webhook.construct_event", side_effect=error):
        resp = client.post("/api/stripe/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=bad"})
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Webhook Error")


def test_webhook_marks_invoice_paid_once(client, invoice, stripe_keys, test_engine):
    event = {
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_1",
            "payment_intent": "pi_123",
            "amount_total": 12050,
            "metadata": {"invoiceId": str(invoice["id"])},
        }},
    }
    with patch("stripe.Webhook.construct_event", return_value=event):
        for _ in range(2):
            resp = client.post("/api/stripe/webhook", content=b"{}", headers={"stripe-signature": "sig"})
            assert resp.json() == {"received": True}

    with Session(test_engine) as session:
        assert session.get(Invoice, invoice["id"]).status == "Paid"
        payments = session.exec(select(Payment)).all()
    assert len(payments) == 1
    assert payments[0].amount == pytest.approx(120.5)
    assert payments[0].stripe_payment_id == "pi_123"
    assert payments[0].status == "Completed"


def test_webhook_ignores_other_events(client, stripe_keys):
    with patch("stripe.Webhook.construct_event", return_value={"type": "invoice.created", "data": {"object": {}}}):
        resp = client.post("/api/stripe/webhook", content=b"{}", headers={"stripe-signature": "sig"})
    assert resp.json() == {"received": True}


@pytest.fixture
def docuseal_key(monkeypatch):
    monkeypatch.setattr(config, "DOCUSEAL_TOKEN", "docuseal-secret")
    return "docuseal-secret"


def request_token(client, headers, document_id, email="ext@example.com"):
    return client.post(
        "/api/docuseal",
        json={
            "documentId": document_id,
            "signerEmail": email,
            "signerName": "External Signer",
            "documentUrl": f"https://files.example.com/{document_id}.pdf",
        },
        headers=headers,
    )


def test_docuseal_token_moves_document_to_pending(client, admin_headers, create_document, docuseal_key):
    document, _ = create_document(signers=())
    resp = request_token(client, admin_headers, document["id"])
    assert resp.status_code == 200
    claims = jwt.decode(resp.json()["token"], docuseal_key, algorithms=["HS256"])
    assert claims["document_id"] == document["id"]
    assert claims["signer_email"] == "ext@example.com"
    assert claims["name"] == "contract.pdf - Signature Request"

    detail = client.get(f"/api/documents/{document['id']}", headers=admin_headers).json()["document"]
    assert detail["status"] == "pending_signature"
    assert [s["email"] for s in detail["signers"]] == ["ext@example.com"]


def test_docuseal_token_errors(client, admin_headers, monkeypatch, docuseal_key):
    assert request_token(client, admin_headers, 12345).status_code == 404
    monkeypatch.setattr(config, "DOCUSEAL_TOKEN", "")
    assert request_token(client, admin_headers, 1).status_code == 500


WEBHOOK_SECRET = "hook-secret"


@pytest.fixture(autouse=True)
def docuseal_webhook_secret(monkeypatch):
    monkeypatch.setattr(config, "DOCUSEAL_WEBHOOK_SECRET", WEBHOOK_SECRET)


def docuseal_event(client, event_type, document_id, email=None, name=None, secret=WEBHOOK_SECRET):
    data = {"document_id": document_id}
    if email:
        data.update(signer_email=email, signer_name=name or email)
    headers = {"X-DocuSeal-Secret": secret} if secret else {}
    return client.post("/api/docuseal/webhook", json={"event_type": event_type, "data": data}, headers=headers)


def test_docuseal_webhook_completes_when_all_signed(client, admin_headers, create_document, mock_storage):
    document, _ = create_document()
    first = docuseal_event(client, "document.signed", document["id"], "ana@example.com")
    assert first.status_code == 200
    assert first.json()["documentCompleted"] is False

    second = docuseal_event(client, "document.signed", document["id"], "ben@example.com")
    assert second.json()["documentCompleted"] is True
    assert second.json()["sealed"] is True
    assert f"documents/{document['id']}/signed.pdf" in mock_storage

    signatures = client.get(f"/api/docuseal?documentId={document['id']}", headers=admin_headers).json()
    assert signatures["count"] == 2


def test_docuseal_webhook_adds_unknown_signer(client, admin_headers, create_document):
    document, _ = create_document(signers=())
    resp = docuseal_event(client, "document.signed", document["id"], "new@example.com", "New Person")
    assert resp.json()["documentCompleted"] is True
    detail = client.get(f"/api/documents/{document['id']}", headers=admin_headers).json()["document"]
    assert detail["status"] == "signed"
    assert detail["signers"][0]["name"] == "New Person"


def test_docuseal_failure_event(client, admin_headers, create_document):
    document, _ = create_document()
    resp = docuseal_event(client, "document.failed", document["id"])
    assert resp.json()["success"] is True
    detail = client.get(f"/api/documents/{document['id']}", headers=admin_headers).json()["document"]
    assert detail["status"] == "failed"

    late = docuseal_event(client, "document.signed", document["id"], "ana@example.com")
    assert late.status_code == 409

    missing = docuseal_event(client, "document.signed", 4242, "x@example.com")
    assert missing.status_code == 404
    other = client.post(
        "/api/docuseal/webhook",
        json={"event_type": "form.viewed", "data": {}},
        headers={"X-DocuSeal-Secret": WEBHOOK_SECRET},
    )
    assert other.json()["event_type"] == "form.viewed"


def test_docuseal_webhook_requires_shared_secret(client, admin_headers, create_document, monkeypatch):
    document, _ = create_document()
    assert docuseal_event(client, "document.failed", document["id"], secret=None).status_code == 401
    assert docuseal_event(client, "document.failed", document["id"], secret="guess").status_code == 401
    detail = client.get(f"/api/documents/{document['id']}", headers=admin_headers).json()["document"]
    assert detail["status"] == "draft"

    monkeypatch.setattr(config, "DOCUSEAL_WEBHOOK_SECRET", "")
    assert docuseal_event(client, "document.failed", document["id"]).status_code == 500


def test_docuseal_token_marks_signer_sent(client, admin_headers, create_document, docuseal_key):
    document, _ = create_document()
    resp = request_token(client, admin_headers, document["id"], email="ana@example.com")
    assert resp.status_code == 200
    signers = client.get(f"/api/documents/{document['id']}/signers", headers=admin_headers).json()["signers"]
    assert [(s["email"], s["status"]) for s in signers] == [("ana@example.com", "sent"), ("ben@example.com", "pending")]

    again = request_token(client, admin_headers, document["id"], email="ana@example.com")
    assert again.status_code == 200
    signers = client.get(f"/api/documents/{document['id']}/signers", headers=admin_headers).json()["signers"]
    assert signers[0]["status"] == "sent"
