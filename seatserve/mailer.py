"""Outbound email over SMTP.

Works with any SMTP relay (SendGrid, Mailgun, Brevo or a plain server).
Port 465 uses implicit TLS, anything else upgrades with STARTTLS.
"""

from __future__ import annotations

import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage

from seatserve.config import Settings, settings as default_settings
from seatserve.logger import get_logger

logger = get_logger(__name__)


class EmailDeliveryError(RuntimeError):
    pass


@dataclass(frozen=True)
class EmailOptions:
    to: str
    subject: str
    text: str
    html: str


def is_configured(config: Settings = default_settings) -> bool:
    return bool(config.smtp_host and config.smtp_username and config.smtp_password)


def build_message(options: EmailOptions, sender: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = options.subject
    msg["From"] = sender
    msg["To"] = options.to
    msg.set_content(options.text)
    msg.add_alternative(options.html, subtype="html")
    return msg


def send_email(options: EmailOptions, config: Settings = default_settings) -> None:
    if not is_configured(config):
        logger.error("Attempted to send email to %s but SMTP is not configured", options.to)
        raise EmailDeliveryError(
            "Email service is not configured on the server. Please contact an administrator."
        )

    msg = build_message(options, config.smtp_from)
    context = ssl.create_default_context()
    try:
        if config.smtp_port == 465:
            with smtplib.SMTP_SSL(config.smtp_host, config.smtp_port, context=context) as smtp:
                smtp.login(config.smtp_username, config.smtp_password)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(config.smtp_host, config.smtp_port) as smtp:
                smtp.starttls(context=context)
                smtp.login(config.smtp_username, config.smtp_password)
                smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.exception("Error sending email to %s", options.to)
        raise EmailDeliveryError("Failed to send email due to a server error.") from exc
    logger.info("Email sent to %s: %s", options.to, options.subject)
