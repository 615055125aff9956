"""
Outgoing account emails: address confirmation and password reset.

``SmtpEmailSender`` delivers through the configured SMTP relay;
``LoggingEmailSender`` is wired in when ``EMAIL_ENABLED`` is off and only
records that a message would have gone out.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from rankhub.core.config import Settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    pass


class EmailSender(Protocol):
    async def send_confirmation_email(self, email: str, token: str) -> None: ...

    async def send_password_reset_email(self, email: str, token: str) -> None: ...


def confirmation_link(settings: Settings, token: str) -> str:
    return f"{settings.SITE_URL.rstrip('/')}{settings.API_V1_PREFIX}/auth/confirm?token={token}"


def password_reset_link(settings: Settings, token: str) -> str:
    return f"{settings.SITE_URL.rstrip('/')}/reset-password?token={token}"


_CONFIRM_TEXT = (
    "Please open the link below to confirm your email address:\n\n{link}\n\n"
    "If you did not register for this account, please ignore this email."
)
_CONFIRM_HTML = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Confirm Your Email</h2>
  <p>Please press the link below to confirm your email address:</p>
  <p><a href="{link}">Confirm Email</a></p>
  <p>Or copy this link into your browser:</p>
  <p style="word-break: break-all;">{link}</p>
  <p style="font-size: 12px; color: #666;">If you did not register for this account, please ignore this email.</p>
</div>
"""
_RESET_TEXT = (
    "You requested a password reset.\n\n"
    "Open the link below to choose a new password:\n\n{link}\n\n"
    "This link will expire in {ttl}.\n\n"
    "If you did not request a password reset, please ignore this email."
)
_RESET_HTML = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Password Reset Request</h2>
  <p>You requested a password reset for your account.</p>
  <p><a href="{link}">Reset Password</a></p>
  <p>Or copy this link into your browser:</p>
  <p style="word-break: break-all;">{link}</p>
  <p style="color: #ff9800; font-weight: bold;">This link will expire in {ttl}.</p>
  <p style="font-size: 12px; color: #666;">If you did not request a password reset, please ignore this email.</p>
</div>
"""


class SmtpEmailSender:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _build(self, to: str, subject: str, text: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self._settings.EMAIL_FROM
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        s = self._settings
        smtp_cls = smtplib.SMTP_SSL if s.SMTP_SECURE else smtplib.SMTP
        with smtp_cls(s.SMTP_HOST, s.SMTP_PORT, timeout=30) as smtp:
            if not s.SMTP_SECURE:
                smtp.starttls()
            if s.SMTP_USER:
                smtp.login(s.SMTP_USER, s.SMTP_PASSWORD)
            smtp.send_message(msg)

    async def send_email(self, to: str, subject: str, text: str, html: str) -> None:
        msg = self._build(to, subject, text, html)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", to, exc, exc_info=True)
            raise EmailDeliveryError("Failed to send email") from exc
        logger.info("Email sent to %s (%s)", to, subject)

    async def send_confirmation_email(self, email: str, token: str) -> None:
        link = confirmation_link(self._settings, token)
        await self.send_email(
            email,
            f"Confirm your registration at {self._settings.SITE_URL}",
            _CONFIRM_TEXT.format(link=link),
            _CONFIRM_HTML.format(link=link),
        )

    async def send_password_reset_email(self, email: str, token: str) -> None:
        link = password_reset_link(self._settings, token)
        ttl = self._settings.PASSWORD_RESET_TOKEN_EXPIRES
        await self.send_email(
            email,
            f"Password reset for {self._settings.SITE_URL}",
            _RESET_TEXT.format(link=link, ttl=ttl),
            _RESET_HTML.format(link=link, ttl=ttl),
        )


class LoggingEmailSender:
    async def send_confirmation_email(self, email: str, token: str) -> None:
        logger.info("Email delivery disabled; confirmation email for %s not sent", email)

    async def send_password_reset_email(self, email: str, token: str) -> None:
        logger.info("Email delivery disabled; password reset email for %s not sent", email)


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.EMAIL_ENABLED:
        return SmtpEmailSender(settings)
    return LoggingEmailSender()
