"""Outbound transactional email (verification and password-reset links)."""

from __future__ import annotations

import logging
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from gearmarket.core.exceptions import EmailDeliveryError
from gearmarket.core.security import redact_email

logger = logging.getLogger(__name__)


class EmailDispatcher(ABC):
    """Contract the auth flows depend on."""

    @abstractmethod
    def send_verification_link(self, to_email: str, token: str) -> None:
        ...

    @abstractmethod
    def send_password_reset_link(self, to_email: str, token: str) -> None:
        ...


class SmtpEmailService(EmailDispatcher):
    """SMTP email sender.

    Supports:
    - STARTTLS or implicit TLS
    - Verification link and password reset emails
    - Dev mode: when sending is disabled or SMTP is not configured the
      message is logged instead of sent

    Transport failures raise EmailDeliveryError.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "GearMarket",
        api_url: str = "http://localhost:8000",
        frontend_url: str = "http://localhost:3000",
        send_actual_email: bool = False,
        verification_ttl_hours: int = 24,
        reset_ttl_hours: int = 24,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.api_url = api_url.rstrip("/")
        self.frontend_url = frontend_url.rstrip("/")
        self.send_actual_email = send_actual_email
        self.verification_ttl_hours = verification_ttl_hours
        self.reset_ttl_hours = reset_ttl_hours

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        if not (self.send_actual_email and self.is_configured):
            logger.info(
                "[DEV MODE] Email not sent: to=%s subject=%r",
                redact_email(to_email),
                subject,
            )
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg["Reply-To"] = self.from_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Failed to send email to %s via %s: %s (%s)",
                redact_email(to_email),
                self.smtp_host,
                exc,
                type(exc).__name__,
            )
            raise EmailDeliveryError() from exc

        logger.info("Email sent to %s: %r", redact_email(to_email), subject)

    def send_verification_link(self, to_email: str, token: str) -> None:
        verification_url = f"{self.api_url}/api/v1/auth/verify-email/{token}"
        subject = "Verify your GearMarket email"
        text_body = (
            "Welcome to GearMarket!\n\n"
            "Open the link below to verify your email address:\n"
            f"{verification_url}\n\n"
            f"The link is valid for {self.verification_ttl_hours} hours. "
            "If you did not sign up, you can ignore this email."
        )
        html_body = f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2>Verify your email</h2>
    <p>Welcome to GearMarket! Click the button below to verify your email address.</p>
    <p style="margin: 30px 0;">
        <a href="{verification_url}"
           style="background-color: #222; color: white; padding: 12px 24px;
                  text-decoration: none; border-radius: 4px;">Verify email</a>
    </p>
    <p>The link is valid for {self.verification_ttl_hours} hours.</p>
    <p>If you did not sign up, you can ignore this email.</p>
</body>
</html>
"""
        self._send_email(to_email, subject, html_body, text_body)

    def send_password_reset_link(self, to_email: str, token: str) -> None:
        reset_url = f"{self.frontend_url}/reset-password?token={token}"
        subject = "Reset your GearMarket password"
        text_body = (
            "We received a request to reset your GearMarket password.\n\n"
            f"{reset_url}\n\n"
            f"The link expires in {self.reset_ttl_hours} hours and can be used once. "
            "If you didn't request this, you can safely ignore this email."
        )
        html_body = f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2>Reset your password</h2>
    <p>We received a request to reset your GearMarket password.</p>
    <p style="margin: 30px 0;">
        <a href="{reset_url}"
           style="background-color: #222; color: white; padding: 12px 24px;
                  text-decoration: none; border-radius: 4px;">Reset password</a>
    </p>
    <p>The link expires in {self.reset_ttl_hours} hours and can be used once.</p>
    <p>If you didn't request this, you can safely ignore this email.</p>
</body>
</html>
"""
        self._send_email(to_email, subject, html_body, text_body)
