from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from settings import Settings

logger = logging.getLogger("planledger.mailer")


def send_email(
    settings: Settings,
    to_address: str,
    subject: str,
    body: str,
    reply_to: str | None = None,
) -> None:
    if not settings.smtp_configured:
        raise RuntimeError("SMTP is not configured.")
    message = EmailMessage()
    message["From"] = settings.smtp_from
    message["To"] = to_address
    message["Subject"] = subject
    if reply_to:
        message["Reply-To"] = reply_to
    message.set_content(body)
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as smtp:
        if settings.smtp_use_tls:
            smtp.starttls()
        if settings.smtp_user and settings.smtp_password:
            smtp.login(settings.smtp_user, settings.smtp_password)
        smtp.send_message(message)


def alert_admin(settings: Settings, subject: str, body: str) -> None:
    if not settings.alert_email_to or not settings.smtp_configured:
        logger.error("%s: %s", subject, body)
        return
    try:
        send_email(settings, settings.alert_email_to, subject, body)
    except (OSError, smtplib.SMTPException):
        logger.exception("Failed to send admin alert.")
