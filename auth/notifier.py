"""
auth/notifier.py -- Out-of-band delivery of registration and reset tokens.

The auth service depends only on the Notifier protocol:

    send(kind, recipient, token) -> bool

SmtpNotifier is the production implementation. It renders a link to the
frontend and delivers it over SMTP (STARTTLS or implicit TLS). With no SMTP
host configured it runs in dev mode: the message is logged (recipient
redacted) and reported as delivered, so local registration works without a
mail server.

Delivery failures are logged here and reported as False. Whether a False
becomes a 500 is the caller's decision (see AuthService).
"""

from __future__ import annotations

import enum
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("authflow.auth.notifier")


class NotificationKind(str, enum.Enum):
    verification = "verification"
    password_reset = "password_reset"


class Notifier(Protocol):
    def send(self, kind: NotificationKind, recipient: str, token: str) -> bool: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpNotifier:
    def __init__(self, settings: Settings) -> None:
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.smtp_use_tls = settings.smtp_use_tls
        self.from_email = settings.mail_from or settings.smtp_user
        self.frontend_url = settings.frontend_url.rstrip("/")
        self.registration_minutes = settings.registration_token_expire_minutes
        self.reset_minutes = settings.password_reset_expire_minutes

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send(self, kind: NotificationKind, recipient: str, token: str) -> bool:
        subject, html_body, text_body = self._render(kind, token)
        if not self.is_configured:
            logger.info("Email dev mode: %s to %s (%s)", kind.value, redact_email(recipient), subject)
            logger.debug("Email dev mode body: %s", text_body)
            return True
        return self._deliver(recipient, subject, html_body, text_body)

    def _render(self, kind: NotificationKind, token: str) -> tuple[str, str, str]:
        if kind is NotificationKind.verification:
            link = f"{self.frontend_url}/verify-registration?token={token}"
            subject = "Verify Your Registration"
            html_body = (
                "<h1>Welcome to Our Service!</h1>"
                "<p>Please click the link below to verify your registration:</p>"
                f'<a href="{link}">Verify Your Account</a>'
                f"<p>This link will expire in {self.registration_minutes} minutes.</p>"
                "<p>If you did not request this registration, please ignore this email.</p>"
            )
            text_body = (
                f"Please verify your registration: {link}\n"
                f"This link will expire in {self.registration_minutes} minutes."
            )
        else:
            link = f"{self.frontend_url}/reset-password?token={token}"
            subject = "Password Reset Request"
            html_body = (
                "<h1>Password Reset</h1>"
                "<p>You requested a password reset. Click the link below to reset your password:</p>"
                f'<a href="{link}">Reset Your Password</a>'
                f"<p>This link will expire in {self.reset_minutes} minutes.</p>"
                "<p>If you did not request this password reset, please ignore this email.</p>"
            )
            text_body = f"Reset your password: {link}\nThis link will expire in {self.reset_minutes} minutes."
        return subject, html_body, text_body

    def _deliver(self, recipient: str, subject: str, html_body: str, text_body: str) -> bool:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = recipient
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.sendmail(self.from_email, recipient, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    self._login(server)
                    server.sendmail(self.from_email, recipient, msg.as_string())
        except (smtplib.SMTPException, OSError):
            logger.exception("Email delivery failed to %s via %s:%d", redact_email(recipient), self.smtp_host, self.smtp_port)
            return False
        logger.info("Email sent to %s (%s)", redact_email(recipient), subject)
        return True

    def _login(self, server: smtplib.SMTP) -> None:
        if self.smtp_user and self.smtp_password:
            server.login(self.smtp_user, self.smtp_password)
