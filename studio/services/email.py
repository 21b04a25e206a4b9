"""Transactional email (verification and password reset links).

SMTP is blocking, so sends run in a worker thread. When SMTP_HOST is not
configured the message is logged instead of sent.
"""

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from studio.core.config import Settings

logger = logging.getLogger(__name__)

VERIFICATION_SUBJECT = "Verify your Studio AI account"
PASSWORD_RESET_SUBJECT = "Reset your Studio AI password"


def _redact(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    """Sends the account emails. Every send returns True on success and never raises."""

    def __init__(self, settings: Settings) -> None:
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = (
            settings.SMTP_PASSWORD.get_secret_value() if settings.SMTP_PASSWORD else None
        )
        self.smtp_use_tls = settings.SMTP_USE_TLS
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME
        self.frontend_url = settings.FRONTEND_URL

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    async def send_verification_email(self, to_email: str, token: str) -> bool:
        link = f"{self.frontend_url}/verify-email?token={token}"
        text = (
            "Welcome to Studio AI!\n\n"
            f"Please verify your email address by opening this link:\n{link}\n\n"
            "The link expires in 24 hours. If you did not create an account, ignore this email."
        )
        html = (
            "<h2>Welcome to Studio AI!</h2>"
            "<p>Please verify your email address by clicking the link below:</p>"
            f'<p><a href="{link}">Verify Email</a></p>'
            "<p>This link expires in 24 hours.</p>"
        )
        return await self.send(to_email, VERIFICATION_SUBJECT, html, text)

    async def send_password_reset_email(self, to_email: str, token: str) -> bool:
        link = f"{self.frontend_url}/reset-password?token={token}"
        text = (
            "We received a request to reset your Studio AI password.\n\n"
            f"Open this link to choose a new password:\n{link}\n\n"
            "The link expires in 1 hour. If you did not request a reset, ignore this email."
        )
        html = (
            "<h2>Password Reset</h2>"
            "<p>Click the link below to choose a new password:</p>"
            f'<p><a href="{link}">Reset Password</a></p>'
            "<p>This link expires in 1 hour.</p>"
        )
        return await self.send(to_email, PASSWORD_RESET_SUBJECT, html, text)

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        if not self.is_configured:
            logger.info(
                "SMTP not configured; email to %s (%s):\n%s",
                _redact(to_email),
                subject,
                text_body,
            )
            return True
        try:
            await asyncio.to_thread(self._send_blocking, to_email, subject, html_body, text_body)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s (%s): %s", _redact(to_email), subject, e)
            return False
        logger.info("Email sent to %s (%s)", _redact(to_email), subject)
        return True

    def _send_blocking(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
