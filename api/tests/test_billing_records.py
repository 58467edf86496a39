from io import BytesIO

import pytest
from pypdf import PdfReader


def create_customer(client, headers, **overrides):
    payload = {"name": "Dana Reyes", "email": "Dana@Example.com", "phone": "555-0100", "customerType": "commercial"}
    payload.update(overrides)
    resp = client.post("/api/customers", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["customer"]


def test_customer_routes_require_admin(client):
    assert client.get("/api/customers").status_code == 401
    assert client.get("/api/invoices").status_code == 401
    assert client.get("/api/payments").status_code == 401


def test_customer_crud(client, admin_headers):
    customer = create_customer(client, admin_headers)
    assert customer["email"] == "dana@example.com"
    assert customer["customer_type"] == "commercial"
    assert customer["notify_by_email"] is True

    listed = client.get("/api/customers", headers=admin_headers).json()["customers"]
    assert [c["id"] for c in listed] == [customer["id"]]

    resp = client.put(
        f"/api/customers/{customer['id']}",
        json={"name": "Dana R.", "email": "dana@example.com", "notifyBySmsText": False},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    updated = resp.json()["customer"]
    assert updated["name"] == "Dana R."
    assert updated["notify_by_sms_text"] is False

    resp = client.delete(f"/api/customers/{customer['id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["customer"]["id"] == customer["id"]
    assert client.get(f"/api/customers/{customer['id']}", headers=admin_headers).status_code == 404


def test_customer_validation_and_duplicates(client, admin_headers):
    resp = client.post("/api/customers", json={"name": "No Email"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Name and email are required"}

    for email in ("bad@", "@", "a b@@c"):
        resp = client.post("/api/customers", json={"name": "Bad", "email": email}, headers=admin_headers)
        assert resp.status_code == 400, email
        assert resp.json()["error"].startswith("email: ")

    create_customer(client, admin_headers)
    dup = client.post("/api/customers", json={"name": "Other", "email": "dana@example.com"}, headers=admin_headers)
    assert dup.status_code == 409


def test_invoice_lifecycle(client, admin_headers):
    customer = create_customer(client, admin_headers)
    resp = client.post(
        "/api/invoices",
        json={
            "customerId": customer["id"],
            "dueDate": "2000-01-01T00:00:00",
            "items": [{"description": "Consulting", "quantity": 2, "rate": 50, "taxRate": 10, "discount": 5}],
        },
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    invoice = resp.json()["invoice"]
    assert invoice["invoice_number"].startswith("INV-")
    assert invoice["customer_name"] == "Dana Reyes"
    assert invoice["subtotal"] == pytest.approx(100)
    assert invoice["discount_amount"] == pytest.approx(5)
    assert invoice["tax_amount"] == pytest.approx(9.5)
    assert invoice["total"] == pytest.approx(104.5)
    assert invoice["overdue"] is True
    assert invoice["items"][0]["amount"] == pytest.approx(100)

    resp = client.put(
        f"/api/invoices/{invoice['id']}",
        json={"items": [{"description": "Support", "quantity": 3, "rate": 10}], "notes": "Thanks"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == pytest.approx(30)
    assert body["notes"] == "Thanks"
    assert [i["description"] for i in body["items"]] == ["Support"]

    resp = client.patch(f"/api/invoices/{invoice['id']}", json={"status": "Paid"}, headers=admin_headers)
    assert resp.json()["status"] == "Paid"
    assert resp.json()["overdue"] is False

    bad = client.patch(f"/api/invoices/{invoice['id']}", json={"status": "Lost"}, headers=admin_headers)
    assert bad.status_code == 400

    resp = client.delete(f"/api/invoices/{invoice['id']}", headers=admin_headers)
    assert resp.json() == {"message": "Invoice deleted successfully", "deletedId": invoice["id"]}
    assert client.get(f"/api/invoices/{invoice['id']}", headers=admin_headers).status_code == 404


def test_invoice_filters_and_number_conflicts(client, admin_headers):
    for number, name, status in (("INV-1", "Acme Roofing", "Sent"), ("INV-2", "Bay Plumbing", "Draft")):
        resp = client.post(
            "/api/invoices",
            json={"invoiceNumber": number, "customerName": name, "status": status, "items": []},
            headers=admin_headers,
        )
        assert resp.status_code == 201

    dup = client.post("/api/invoices", json={"invoiceNumber": "INV-1", "customerName": "X"}, headers=admin_headers)
    assert dup.status_code == 409

    missing = client.post("/api/invoices", json={"items": []}, headers=admin_headers)
    assert missing.status_code == 400

    unknown_customer = client.post("/api/invoices", json={"customerId": 999}, headers=admin_headers)
    assert unknown_customer.status_code == 404

    sent = client.get("/api/invoices?status=Sent", headers=admin_headers).json()
    assert [i["invoice_number"] for i in sent["invoices"]] == ["INV-1"]
    everything = client.get("/api/invoices?status=All", headers=admin_headers).json()
    assert everything["total"] == 2
    searched = client.get("/api/invoices?search=plumb", headers=admin_headers).json()
    assert [i["customer_name"] for i in searched["invoices"]] == ["Bay Plumbing"]


def test_payment_crud_and_validation(client, admin_headers):
    resp = client.post("/api/payments", json={"customerName": "Dana", "amount": -5}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Amount must be a positive number"}
    resp = client.post("/api/payments", json={"amount": 10}, headers=admin_headers)
    assert resp.json() == {"error": "Customer name and amount are required"}

    resp = client.post(
        "/api/payments",
        json={"customerName": "Dana", "amount": 250, "paymentMethod": "check", "invoiceNumber": "INV-9"},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    payment = resp.json()["payment"]
    assert payment["status"] == "Pending"
    assert payment["payment_method"] == "check"

    resp = client.put(
        f"/api/payments/{payment['id']}",
        json={"customerName": "Dana", "amount": 260, "status": "Completed"},
        headers=admin_headers,
    )
    assert resp.json()["payment"]["amount"] == 260
    assert resp.json()["payment"]["status"] == "Completed"

    assert len(client.get("/api/payments", headers=admin_headers).json()["payments"]) == 1
    assert client.delete(f"/api/payments/{payment['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/payments/{payment['id']}", headers=admin_headers).status_code == 404


def import_csv(client, headers, text, filename="customers.csv"):
    return client.post(
        "/api/customers/import",
        files={"file": (filename, text.encode(), "text/csv")},
        headers=headers,
    )


def test_customer_csv_import(client, admin_headers):
    create_customer(client, admin_headers)
    text = (
        "Name,Email,Phone,Company,Contact Person,Customer Type,Notify By Email,Notify By SMS\n"
        "Lee Park,Lee@Example.com,555-0101,\"Park, Inc\",Lee,commercial,false,true\n"
        "Dana Again,dana@example.com,,,,,,\n"
        ",missing@example.com,,,,,,\n"
        "\n"
        "Bad Mail,a b@@c,,,,,,\n"
        "Lee Twin,lee@example.com,,,,,,\n"
        "Mo Diaz,mo@example.com\n"
    )
    resp = import_csv(client, admin_headers, text)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "CSV import completed"
    assert body["results"] == {"total": 4, "inserted": 2, "duplicates": 2, "errors": 2}
    assert body["details"]["errors"] == [
        "Row 4: Missing required fields (Name, Email)",
        "Row 5: Invalid email format",
    ]
    assert [d["email"] for d in body["details"]["duplicates"]] == ["dana@example.com", "lee@example.com"]

    customers = {c["email"]: c for c in client.get("/api/customers", headers=admin_headers).json()["customers"]}
    assert set(customers) == {"dana@example.com", "lee@example.com", "mo@example.com"}
    lee = customers["lee@example.com"]
    assert lee["company"] == "Park, Inc"
    assert lee["customer_type"] == "commercial"
    assert lee["notify_by_email"] is False
    assert lee["notify_by_sms_text"] is True
    assert customers["mo@example.com"]["customer_type"] == "residential"


def test_customer_csv_import_rejections(client, admin_headers):
    assert import_csv(client, admin_headers, "Name,Email\nA,a@example.com\n", filename="people.txt").json() == {
        "error": "Only CSV files are allowed"
    }
    big = "Name,Email\n" + "x" * (2 * 1024 * 1024)
    assert import_csv(client, admin_headers, big).json() == {"error": "File size too large. Max 2MB allowed."}
    assert import_csv(client, admin_headers, "Name,Email\n").json() == {
        "error": "CSV file must have at least a header row and one data row"
    }
    assert import_csv(client, admin_headers, "Name,Phone\nA,1\n").json() == {"error": "Missing required headers: Email"}

    resp = import_csv(client, admin_headers, "Name,Email\nA,not-an-email\n,b@example.com\n")
    assert resp.status_code == 400
    assert resp.json() == {
        "error": "No valid records found in CSV file",
        "details": ["Row 2: Invalid email format", "Row 3: Missing required fields (Name, Email)"],
    }
    assert client.get("/api/customers", headers=admin_headers).json()["customers"] == []


def billable_invoice(client, headers, customer_id=None, status="Draft"):
    payload = {
        "invoiceNumber": "INV-77",
        "status": status,
        "items": [{"description": "Window install", "quantity": 2, "rate": 150, "taxRate": 8}],
    }
    if customer_id is None:
        payload["customerName"] = "Walk-in"
    else:
        payload["customerId"] = customer_id
    resp = client.post("/api/invoices", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["invoice"]


def test_invoice_pdf_download(client, admin_headers):
    customer = create_customer(client, admin_headers)
    invoice = billable_invoice(client, admin_headers, customer["id"])
    resp = client.get(f"/api/invoices/{invoice['id']}/pdf", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert 'filename="invoice-INV-77.pdf"' in resp.headers["content-disposition"]
    text = PdfReader(BytesIO(resp.content)).pages[0].extract_text()
    assert "Invoice #INV-77" in text
    assert "Window install" in text
    assert "$324.00" in text

    assert client.get("/api/invoices/999/pdf", headers=admin_headers).status_code == 404


def test_invoice_send_email(client, admin_headers, sent_emails):
    customer = create_customer(client, admin_headers)
    invoice = billable_invoice(client, admin_headers, customer["id"])
    resp = client.post(f"/api/invoices/{invoice['id']}/send-email", headers=admin_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["success"] is True
    assert resp.json()["invoice"]["status"] == "Sent"

    message = sent_emails[-1]
    assert message["to"] == "dana@example.com"
    assert message["subject"].startswith("Invoice #INV-77")
    assert "$324.00" in message["text"]
    attachment = message["attachments"][0]
    assert attachment["filename"] == "invoice-INV-77.pdf"
    assert attachment["content"].startswith(b"%PDF")


def test_invoice_send_email_keeps_non_draft_status(client, admin_headers, sent_emails):
    customer = create_customer(client, admin_headers)
    invoice = billable_invoice(client, admin_headers, customer["id"], status="Overdue")
    resp = client.post(f"/api/invoices/{invoice['id']}/send-email", headers=admin_headers)
    assert resp.json()["invoice"]["status"] == "Overdue"
    assert len(sent_emails) == 1


def test_invoice_send_email_errors(client, admin_headers, monkeypatch):
    walk_in = billable_invoice(client, admin_headers)
    resp = client.post(f"/api/invoices/{walk_in['id']}/send-email", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Customer email not found"}

    from signdesk import email as email_module

    monkeypatch.setattr(email_module, "send_email", lambda *args, **kwargs: False)
    customer = create_customer(client, admin_headers)
    client.put(f"/api/invoices/{walk_in['id']}", json={"customerId": customer["id"]}, headers=admin_headers)
    resp = client.post(f"/api/invoices/{walk_in['id']}/send-email", headers=admin_headers)
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to send email"}
    assert client.get(f"/api/invoices/{walk_in['id']}", headers=admin_headers).json()["status"] == "Draft"
