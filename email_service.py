"""
Outgoing account mail (currently only the email-verification message).

EMAIL_BACKEND picks the transport: "log" writes the message to the log, which
is what development and the tests use; "smtp" delivers it with the MAIL_*
settings. Delivery failures are logged and reported as False, never raised,
so a mail outage cannot fail a registration.
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

from flask import current_app

logger = logging.getLogger(__name__)


@dataclass
class SmtpSettings:
    server: str
    port: int
    sender: str
    username: str = ""
    password: str = ""

    @classmethod
    def from_config(cls, config) -> SmtpSettings:
        return cls(
            server=config.get("MAIL_SERVER", "localhost"),
            port=int(config.get("MAIL_PORT", 587)),
            sender=config.get("MAIL_FROM", "noreply@example.edu"),
            username=config.get("MAIL_USERNAME", ""),
            password=config.get("MAIL_PASSWORD", ""),
        )


def build_message(sender: str, to: str, subject: str, text: str, html: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to
    msg.set_content(text)
    msg.add_alternative(html, subtype="html")
    return msg


class EmailService:
    @staticmethod
    def send(to: str, subject: str, text: str, html: str) -> bool:
        if current_app.config.get("EMAIL_BACKEND", "log") != "smtp":
            logger.info("mail (log backend) to=%s subject=%r\n%s", to, subject, text)
            return True
        settings = SmtpSettings.from_config(current_app.config)
        return EmailService.deliver(settings, build_message(settings.sender, to, subject, text, html))

    @staticmethod
    def send_verification(to: str, name: str, token: str) -> bool:
        link = f"{current_app.config.get('BASE_URL', 'http://localhost:5001')}/verify-email?token={token}"
        text = (
            f"Hi {name},\n\n"
            f"Confirm your school email to start sharing flashcards, notes and course reviews:\n"
            f"{link}\n"
        )
        html = (
            f"<p>Hi {name},</p>"
            f"<p>Confirm your school email to start sharing flashcards, notes and course reviews:</p>"
            f'<p><a href="{link}">{link}</a></p>'
        )
        return EmailService.send(to, "Verify your school email", text, html)

    @staticmethod
    def deliver(settings: SmtpSettings, msg: EmailMessage) -> bool:
        """Hand one message to the SMTP server. Needs no app context."""
        try:
            with smtplib.SMTP(settings.server, settings.port, timeout=30) as smtp:
                smtp.starttls()
                if settings.username and settings.password:
                    smtp.login(settings.username, settings.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP delivery to %s failed: %s", msg["To"], e)
            return False
        return True
