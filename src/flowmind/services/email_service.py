"""
Email Service - gửi email đặt lại mật khẩu.

``SMTPEmailSender`` chạy smtplib trong worker thread để không chặn event loop.
Khi SMTP chưa được cấu hình, việc gửi được coi là thất bại (trả về False).
"""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Protocol

from ..core.config import Settings, settings
from ..core.logger import get_logger

logger = get_logger(__name__)


class EmailSender(Protocol):
    async def send_reset_email(self, address: str, token: str) -> bool: ...


def build_reset_link(token: str, frontend_url: str | None = None) -> str:
    base = (frontend_url or settings.FRONTEND_URL).rstrip("/")
    return f"{base}/reset-password/{token}"


class SMTPEmailSender:
    def __init__(self, config: Settings = settings):
        self.config = config

    @property
    def configured(self) -> bool:
        return bool(self.config.SMTP_HOST and self.config.SMTP_USER)

    def _build_message(self, address: str, token: str) -> EmailMessage:
        link = build_reset_link(token, self.config.FRONTEND_URL)
        hours = self.config.RESET_TOKEN_EXPIRE_HOURS

        message = EmailMessage()
        message["Subject"] = f"{self.config.APP_NAME} - Password reset"
        message["From"] = f"{self.config.EMAIL_FROM_NAME} <{self.config.SMTP_USER}>"
        message["To"] = address
        message.set_content(
            "You requested a password reset.\n\n"
            f"Open the link below to choose a new password (valid for {hours} hours):\n"
            f"{link}\n\n"
            "If you did not request this, you can ignore this email."
        )
        return message

    def _send_sync(self, message: EmailMessage) -> None:
        cfg = self.config
        smtp_class = smtplib.SMTP_SSL if cfg.SMTP_USE_SSL else smtplib.SMTP
        with smtp_class(cfg.SMTP_HOST, cfg.SMTP_PORT, timeout=cfg.SMTP_TIMEOUT_SECONDS) as smtp:
            if not cfg.SMTP_USE_SSL:
                smtp.starttls()
            smtp.login(cfg.SMTP_USER, cfg.SMTP_PASSWORD)
            smtp.send_message(message)

    async def send_reset_email(self, address: str, token: str) -> bool:
        if not self.configured:
            logger.warning("SMTP is not configured, reset email not sent")
            return False

        message = self._build_message(address, token)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send reset email: {e.__class__.__name__}: {e}")
            return False

        logger.info("Password reset email sent")
        return True


def get_email_sender() -> EmailSender:
    return SMTPEmailSender()
