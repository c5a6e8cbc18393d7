"""
Outgoing account emails: verification links/codes, password recovery, status updates
"""
import asyncio
import logging
from typing import Awaitable, Optional
from urllib.parse import quote

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType

from .config import (
    BACKEND_URL, FRONTEND_URL, OTP_TTL_MINUTES, PASSWORD_RESET_TTL_MINUTES,
    NOTIFICATION_TIMEOUT_SECONDS,
    MAIL_SERVER, MAIL_PORT, MAIL_USERNAME, MAIL_PASSWORD, MAIL_FROM, MAIL_FROM_NAME,
    MAIL_STARTTLS, MAIL_SSL_TLS,
)

logger = logging.getLogger(__name__)


class Notifier:
    """Builds account emails; subclasses decide how they are delivered."""

    async def deliver(self, recipient: str, subject: str, body: str) -> None:
        raise NotImplementedError

    async def send_verification(self, account, code: str) -> None:
        if account.is_admin:
            subject = "Your Deep Tech admin verification code"
            body = (
                f"Hello {account.full_name},\n\n"
                f"Your verification code is {code}. It expires in {OTP_TTL_MINUTES} minutes.\n"
            )
        else:
            link = f"{BACKEND_URL}/auth/verifyDTusermail/{account.id}?email={quote(account.email)}"
            subject = "Verify your Deep Tech email"
            body = (
                f"Hello {account.full_name},\n\n"
                f"Confirm your email address by opening this link:\n{link}\n\n"
                f"Or enter this code: {code} (valid for {OTP_TTL_MINUTES} minutes).\n"
            )
        await self.deliver(account.email, subject, body)

    async def send_password_reset(self, account, token: str) -> None:
        link = f"{FRONTEND_URL}/reset-password?token={token}"
        body = (
            f"Hello {account.full_name},\n\n"
            f"Reset your password here:\n{link}\n\n"
            f"The link expires in {PASSWORD_RESET_TTL_MINUTES} minutes. "
            "If you did not request this, ignore this email.\n"
        )
        await self.deliver(account.email, "Reset your Deep Tech password", body)

    async def send_password_changed(self, account) -> None:
        body = (
            f"Hello {account.full_name},\n\n"
            "Your Deep Tech password was just changed. "
            "If this was not you, contact support immediately.\n"
        )
        await self.deliver(account.email, "Your Deep Tech password was changed", body)

    async def send_status_update(self, account, track: str, status: str) -> None:
        body = (
            f"Hello {account.full_name},\n\n"
            f"Your {track} application status is now: {status}.\n"
        )
        await self.deliver(account.email, f"Your {track} application was {status}", body)


class LogNotifier(Notifier):
    """Only logs outgoing mail; used when no SMTP server is configured"""

    async def deliver(self, recipient: str, subject: str, body: str) -> None:
        logger.info(f"[EMAIL SERVICE] Would send '{subject}' to {recipient}")


class MailNotifier(Notifier):
    def __init__(self, conf: ConnectionConfig):
        self.fm = FastMail(conf)

    async def deliver(self, recipient: str, subject: str, body: str) -> None:
        message = MessageSchema(
            subject=subject,
            recipients=[recipient],
            body=body,
            subtype=MessageType.plain
        )
        await self.fm.send_message(message)
        logger.info(f"Sent '{subject}' to {recipient}")


def build_notifier() -> Notifier:
    if not MAIL_SERVER:
        logger.warning("MAIL_SERVER not configured; outgoing mail will only be logged.")
        return LogNotifier()
    conf = ConnectionConfig(
        MAIL_USERNAME=MAIL_USERNAME,
        MAIL_PASSWORD=MAIL_PASSWORD,
        MAIL_FROM=MAIL_FROM,
        MAIL_FROM_NAME=MAIL_FROM_NAME,
        MAIL_PORT=MAIL_PORT,
        MAIL_SERVER=MAIL_SERVER,
        MAIL_STARTTLS=MAIL_STARTTLS,
        MAIL_SSL_TLS=MAIL_SSL_TLS,
        USE_CREDENTIALS=bool(MAIL_USERNAME),
        VALIDATE_CERTS=True,
    )
    return MailNotifier(conf)


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """FastAPI dependency returning the process-wide notifier"""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier


async def send_safely(send: Awaitable[None], what: str, timeout: float = NOTIFICATION_TIMEOUT_SECONDS) -> bool:
    """Await a send with a bounded timeout. Failures are logged, never raised."""
    try:
        await asyncio.wait_for(send, timeout=timeout)
        return True
    except asyncio.TimeoutError:
        logger.error(f"Timed out after {timeout}s sending {what}")
    except Exception as e:
        logger.error(f"Failed to send {what}: {e}")
    return False
