import smtplib
from email.message import EmailMessage
from typing import Optional

from app.core.config import settings

SMTP_SSL_PORT = 465


def build_email(
    *,
    to: str,
    subject: str,
    text: str,
    html: Optional[str] = None,
) -> EmailMessage:
    sender = settings.EMAILS_FROM_SECURITY or settings.EMAILS_FROM_EMAIL
    msg = EmailMessage()
    msg["Subject"] = f"[{settings.EMAILS_FROM_NAME}] {subject}"
    msg["From"] = f"{settings.EMAILS_FROM_NAME} <{sender}>"
    msg["To"] = to
    msg.set_content(text)

    if html:
        msg.add_alternative(html, subtype="html")

    return msg


def _send_email_smtp(msg: EmailMessage) -> None:
    """
    Send an email message over SMTP.
    Port 465 uses implicit TLS; any other port upgrades with STARTTLS.
    Only called from Celery workers.
    """
    if settings.SMTP_PORT == SMTP_SSL_PORT:
        server = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30)
    else:
        server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30)

    with server:
        if not isinstance(server, smtplib.SMTP_SSL):
            server.ehlo()
            server.starttls()
            server.ehlo()
        if settings.SMTP_USER and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.send_message(msg)
