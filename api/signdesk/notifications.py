import logging
from html import escape
from typing import Iterable, Optional

from . import email as mailer
from .config import WEB_BASE_URL
from .invoicing import format_currency
from .models import Document, Invoice, Signer
from .utils import make_token

logger = logging.getLogger(__name__)

_CARD = """
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f5f6f8; padding: 24px;">
    <div style="max-width: 520px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 24px; box-shadow: 0 10px 25px rgba(15,23,42,0.08);">
      <h2 style="margin-top: 0; font-size: 20px; color: #0f172a;">{title}</h2>
      {content}
    </div>
  </body>
</html>
"""


def signing_token(signer: Signer) -> str:
    return make_token({"signer_id": signer.id, "document_id": signer.document_id, "key": signer.token_key})


def signing_link(signer: Signer) -> str:
    return f"{WEB_BASE_URL.rstrip('/')}/sign/{signing_token(signer)}"


def _paragraph(text: str, size: int = 14, color: str = "#1e293b") -> str:
    return f'<p style="font-size: {size}px; color: {color}; line-height: 1.5;">{escape(text)}</p>'


def send_signing_request(
    document: Document,
    signer: Signer,
    subject: Optional[str] = None,
    message: Optional[str] = None,
    requester_name: Optional[str] = None,
    requester_email: Optional[str] = None,
) -> bool:
    link = signing_link(signer)
    requester = (requester_name or "").strip() or "Your contact"
    intro = message or f"{requester} invited you to review and sign this document."
    subject_line = f"Signature Requested: {(subject or '').strip() or document.name}"
    text_body = f"""{requester} sent you a document to review and sign.
Document: "{document.name}"

{intro}

Open document: {link}
"""
    link_html = escape(link)
    content = (
        _paragraph(f"{requester} sent you a document to review and sign.")
        + _paragraph(intro)
        + f"""
      <div style="margin: 24px 0;">
        <a href="{link_html}" style="display: inline-block; background: #2563eb; color: #fff; padding: 12px 24px; border-radius: 999px; text-decoration: none; font-weight: 600;">
          Review &amp; Sign
        </a>
      </div>
      <p style="font-size: 12px; color: #64748b;">If the button doesn&apos;t work, copy this link into your browser:<br /><a href="{link_html}">{link_html}</a></p>"""
    )
    logger.info("Signing request for document %s sent to signer %s", document.id, signer.id)
    return mailer.send_email(
        signer.email,
        subject_line,
        text_body,
        html_body=_CARD.format(title="Signature requested", content=content),
        sender_name=mailer.format_sender_name(requester_name),
        reply_to=requester_email,
    )


def send_completed(document: Document, signers: Iterable[Signer], final_pdf: Optional[bytes] = None,
                   sha_final: Optional[str] = None) -> None:
    subject = f"Completed: {document.name}"
    sha_line = f"Final SHA256: {sha_final}" if sha_final else ""
    plain_body = f"All parties have finished signing {document.name}.\n\n{sha_line}".rstrip() + "\n"
    content = _paragraph(f"All parties have finished signing {document.name}.")
    if sha_line:
        content += _paragraph(sha_line, size=13, color="#475569")
    attachments = []
    if final_pdf:
        base_name = document.name[:-4] if document.name.lower().endswith(".pdf") else document.name
        attachments.append({
            "filename": f"{base_name} - signed.pdf",
            "content": final_pdf,
            "maintype": "application",
            "subtype": "pdf",
        })
        plain_body += "\nA copy of the signed PDF is attached for your records.\n"
        content += _paragraph("A copy of the signed PDF is attached for your records.", size=13, color="#475569")
    html_body = _CARD.format(title="Completed", content=content)
    recipients = [s.email for s in signers]
    if "@" in (document.uploaded_by or ""):
        recipients.append(document.uploaded_by)
    for to in dict.fromkeys(recipients):
        mailer.send_email(to, subject, plain_body, html_body=html_body, attachments=attachments)


def send_failed(document: Document, signer: Optional[Signer] = None, reason: Optional[str] = None) -> None:
    if "@" not in (document.uploaded_by or ""):
        logger.warning("Document %s failed; uploader %r has no email address", document.id, document.uploaded_by)
        return
    who = f"{signer.name} <{signer.email}>" if signer else "The signing provider"
    lines = [f"{who} could not complete signing {document.name}."]
    if reason:
        lines.append(f"Reason: {reason}")
    content = "".join(_paragraph(line) for line in lines)
    mailer.send_email(
        document.uploaded_by,
        f"Signing failed: {document.name}",
        "\n".join(lines) + "\n",
        html_body=_CARD.format(title="Signing failed", content=content),
    )


def send_invoice(invoice: Invoice, to: str, pdf: bytes) -> bool:
    amount = format_currency(invoice.total)
    subject = f"Invoice #{invoice.invoice_number} from {mailer.DEFAULT_SENDER_NAME}"
    lines = [
        f"Hello {invoice.customer_name},",
        f"Invoice #{invoice.invoice_number} for {amount} is attached.",
    ]
    if invoice.due_date:
        lines.append(f"Payment is due by {invoice.due_date.strftime('%Y-%m-%d')}.")
    content = "".join(_paragraph(line) for line in lines)
    logger.info("Invoice %s emailed to customer %s", invoice.id, invoice.customer_id)
    return mailer.send_email(
        to,
        subject,
        "\n\n".join(lines) + "\n",
        html_body=_CARD.format(title=f"Invoice #{escape(invoice.invoice_number)}", content=content),
        attachments=[{
            "filename": f"invoice-{invoice.invoice_number}.pdf",
            "content": pdf,
            "maintype": "application",
            "subtype": "pdf",
        }],
    )
