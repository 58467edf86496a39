import logging
import os
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("EMAIL_PORT", "587"))
SMTP_USER = os.getenv("EMAIL_USER")
SMTP_PASSWORD = os.getenv("EMAIL_PASSWORD")
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", SMTP_USER or "noreply@example.com")
DEFAULT_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "SignDesk")

def format_sender_name(requester_name: str | None = None) -> str:
    base_label = (DEFAULT_SENDER_NAME or "SignDesk").strip() or "SignDesk"
    if requester_name:
        plain = requester_name.strip()
        if plain:
            return f"{plain} via {base_label}"
    return base_label

def send_email(
    to: str,
    subject: str,
    body: str,
    html_body: str | None = None,
    attachments: list | None = None,
    sender_name: str | None = None,
    reply_to: str | None = None,
) -> bool:
    """Deliver one message over SMTP, or log it when SMTP is not configured.

    Returns False when delivery failed; callers treat notifications as best effort.
    """
    attachments = attachments or []
    display_name = (sender_name or DEFAULT_SENDER_NAME).strip()
    from_value = formataddr((display_name, DEFAULT_SENDER)) if display_name else DEFAULT_SENDER
    if not (SMTP_USER and SMTP_PASSWORD):
        logger.info(
            "EMAIL (stub) from=%s reply_to=%s to=%s subject=%r attachments=%d\n%s",
            from_value, reply_to or "(not set)", to, subject, len(attachments), body,
        )
        return True
    msg = EmailMessage()
    msg["From"] = from_value
    if reply_to:
        msg["Reply-To"] = reply_to
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body or "")
    if html_body:
        msg.add_alternative(html_body, subtype="html")
    for attachment in attachments:
        if not attachment:
            continue
        content = attachment.get("content")
        if content is None:
            continue
        msg.add_attachment(
            content,
            maintype=attachment.get("maintype", "application"),
            subtype=attachment.get("subtype", "octet-stream"),
            filename=attachment.get("filename") or "attachment",
        )
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as smtp:
            smtp.starttls()
            smtp.login(SMTP_USER, SMTP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send email to %s", to)
        return False
    logger.info("Email sent to %s: %s", to, subject)
    return True
