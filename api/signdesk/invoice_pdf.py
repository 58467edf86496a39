# Renders an invoice and its line items to a one-or-more page PDF with reportlab.

from io import BytesIO
from typing import List, Optional

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from .invoicing import calculate_item_total, format_currency
from .models import Customer, Invoice, InvoiceItem

COLUMNS = ((72, "Description"), (300, "Qty"), (350, "Rate"), (420, "Tax %"), (470, "Amount"))


def _date(value) -> str:
    return value.strftime("%Y-%m-%d") if value else "-"


def render_invoice(invoice: Invoice, items: List[InvoiceItem], customer: Optional[Customer] = None) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.setTitle(f"Invoice {invoice.invoice_number}")
    c.setFont("Helvetica-Bold", 16)
    c.drawString(72, 740, f"Invoice #{invoice.invoice_number}")
    c.setFont("Helvetica", 10)
    header = [
        f"Status: {invoice.status}",
        f"Issued: {_date(invoice.issue_date)}    Due: {_date(invoice.due_date)}",
        f"Bill to: {invoice.customer_name}",
    ]
    if customer:
        header += [line for line in (customer.company, customer.email, customer.phone, customer.address) if line]
    if invoice.description:
        header.append(invoice.description)
    y = 716
    for line in header:
        c.drawString(72, y, line[:95])
        y -= 14

    y -= 10
    c.setFont("Helvetica-Bold", 10)
    for x, title in COLUMNS:
        c.drawString(x, y, title)
    c.setFont("Helvetica", 10)
    y -= 16
    for item in items:
        row = (item.description[:40], f"{item.quantity:g}", format_currency(item.rate),
               f"{item.tax_rate:g}", format_currency(calculate_item_total(item)))
        for (x, _), text in zip(COLUMNS, row):
            c.drawString(x, y, text)
        y -= 14
        if y < 120:
            c.showPage(); c.setFont("Helvetica", 10); y = 740

    y -= 10
    for label, amount in (("Subtotal", invoice.subtotal), ("Discount", -invoice.discount_amount),
                          ("Tax", invoice.tax_amount), ("Total", invoice.total)):
        c.setFont("Helvetica-Bold" if label == "Total" else "Helvetica", 10)
        c.drawString(380, y, label)
        c.drawRightString(540, y, format_currency(amount))
        y -= 14
    for block in (invoice.notes, invoice.terms):
        if block:
            y -= 8
            c.setFont("Helvetica", 9)
            for line in block.splitlines():
                c.drawString(72, y, line[:110])
                y -= 12
                if y < 72:
                    c.showPage(); c.setFont("Helvetica", 9); y = 740
    c.showPage(); c.save()
    return buf.getvalue()
