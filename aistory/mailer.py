"""Outbound email over SMTP (aiosmtplib).

One transport per process, built on first use and reused afterwards. Sends are
serialized on that connection. A connection the server dropped while idle is
reopened once before the send is given up; any other failure drops the
connection so the next call reconnects.
"""
from __future__ import annotations

import asyncio
import logging
from email.message import EmailMessage
from typing import Optional

import aiosmtplib

from aistory.errors import DeliveryFailed
from config.settings import settings

logger = logging.getLogger(__name__)


class Mailer:
    """SMTP mailer configured from settings."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str = "",
        timeout: float = 15.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.sender = sender or user
        self.timeout = timeout
        self._transport: Optional[aiosmtplib.SMTP] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls) -> "Mailer":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            user=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_SECURE,
            sender=settings.MAIL_FROM,
            timeout=settings.SMTP_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password and self.sender)

    def _get_transport(self) -> aiosmtplib.SMTP:
        if self._transport is None:
            self._transport = aiosmtplib.SMTP(
                hostname=self.host,
                port=self.port,
                use_tls=self.use_tls,
                timeout=self.timeout,
            )
        return self._transport

    async def send(self, to: str, subject: str, text: str) -> None:
        """Send a plain-text message. Raises DeliveryFailed on any transport error."""
        if not self.configured:
            raise DeliveryFailed("Mail transport is not configured")

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)

        async with self._lock:
            try:
                await self._deliver(message)
            except aiosmtplib.SMTPServerDisconnected as e:
                # The server may drop an idle connection while is_connected still reads True
                logger.warning("SMTP connection dropped, reconnecting: %s", e)
                self._reset()
                try:
                    await self._deliver(message)
                except (aiosmtplib.SMTPException, OSError) as retry_error:
                    self._fail(to, retry_error)
            except (aiosmtplib.SMTPException, OSError) as e:
                self._fail(to, e)

    async def _deliver(self, message: EmailMessage) -> None:
        smtp = self._get_transport()
        if not smtp.is_connected:
            await smtp.connect()
            await smtp.login(self.user, self.password)
        await smtp.send_message(message)

    def _reset(self) -> None:
        if self._transport is not None:
            self._transport.close()
        self._transport = None

    def _fail(self, to: str, error: Exception) -> None:
        logger.error("Email delivery to %s failed: %s", to, error)
        self._reset()
        raise DeliveryFailed() from error


_mailer: Optional[Mailer] = None


def get_mailer() -> Mailer:
    """FastAPI dependency: the process-wide mailer, created lazily."""
    global _mailer
    if _mailer is None:
        _mailer = Mailer.from_settings()
    return _mailer
