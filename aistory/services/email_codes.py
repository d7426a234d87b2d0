"""Email verification codes: sending against a cooldown and daily budget, checking against an attempt cap.

Budget and attempt counters are charged with single conditional UPDATE
statements so concurrent requests can't both slip under a limit.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import math
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aistory.db.email_code_tables import EmailCodeRow, EmailSendCounterRow
from aistory.db.tables import utcnow
from aistory.db.user_tables import UserRow
from aistory.errors import (
    BadRequest, CodeExpired, CodeNotFound, Conflict, DeliveryFailed, InvalidCode,
    NotFound, TooManyAttempts, TooManyRequests,
)
from aistory.mailer import Mailer
from config.settings import settings

logger = logging.getLogger(__name__)

PURPOSES = ("register", "reset")
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CODE_DIGITS = 6


def _now() -> datetime:
    return utcnow()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_email(email: str) -> str:
    normalized = normalize_email(email or "")
    if len(normalized) > 254 or not _EMAIL_PATTERN.match(normalized):
        raise BadRequest("Invalid email address")
    return normalized


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** _CODE_DIGITS):0{_CODE_DIGITS}d}"


def hash_code(email: str, code: str) -> str:
    raw = f"{settings.EMAIL_CODE_SECRET}:{normalize_email(email)}:{code.strip()}"
    return hashlib.sha256(raw.encode()).hexdigest()


class EmailCodeService:
    """Issues and checks verification codes for one request's session."""

    def __init__(self, session: AsyncSession, mailer: Optional[Mailer] = None):
        self.session = session
        self.mailer = mailer

    # ── Sending ──────────────────────────────────────────────────────────

    async def send_code(self, email: str, purpose: str) -> dict:
        if purpose not in PURPOSES:
            raise BadRequest("Invalid code purpose")
        email = validate_email(email)
        await self._check_purpose(email, purpose)

        now = _now()
        await self._charge_budget(email, now)

        code = generate_code()
        await self.session.execute(
            delete(EmailCodeRow).where(EmailCodeRow.email == email, EmailCodeRow.purpose == purpose)
        )
        self.session.add(EmailCodeRow(
            email=email,
            purpose=purpose,
            code_hash=hash_code(email, code),
            attempts=0,
            expires_at=now + timedelta(seconds=settings.EMAIL_CODE_TTL_SECONDS),
            created_at=now,
        ))
        await self.session.commit()

        minutes = max(1, settings.EMAIL_CODE_TTL_SECONDS // 60)
        try:
            await self.mailer.send(
                to=email,
                subject=settings.MAIL_SUBJECT,
                text=f"您的验证码是 {code}，{minutes} 分钟内有效。请勿泄露给他人。",
            )
        except DeliveryFailed:
            await self._release_budget(email, purpose, now)
            raise

        logger.info("Verification code (%s) sent to %s", purpose, email)
        return {
            "success": True,
            "cooldownSeconds": settings.EMAIL_CODE_COOLDOWN_SECONDS,
            "ttlSeconds": settings.EMAIL_CODE_TTL_SECONDS,
        }

    async def _check_purpose(self, email: str, purpose: str) -> None:
        user = (await self.session.execute(
            select(UserRow).where(UserRow.email == email)
        )).scalar_one_or_none()
        if purpose == "register" and user is not None and user.is_bound:
            raise Conflict("Email is already registered")
        if purpose == "reset" and (user is None or not user.is_bound):
            raise NotFound("Email is not registered")

    async def _charge_budget(self, email: str, now: datetime) -> None:
        """Charge one send against cooldown + daily limit, or raise TooManyRequests."""
        today = now.date()
        cutoff = now - timedelta(seconds=settings.EMAIL_CODE_COOLDOWN_SECONDS)
        limit = settings.EMAIL_CODE_DAILY_LIMIT
        counter = EmailSendCounterRow

        result = await self.session.execute(
            update(counter)
            .where(
                counter.email == email,
                or_(counter.last_sent_at.is_(None), counter.last_sent_at <= cutoff),
                or_(counter.day != today, counter.sent_count < limit),
            )
            .values(
                sent_count=case((counter.day == today, counter.sent_count + 1), else_=1),
                day=today,
                last_sent_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        row = (await self.session.execute(
            select(counter).where(counter.email == email)
        )).scalar_one_or_none()

        if row is None:
            if limit < 1:
                raise TooManyRequests("Daily verification email limit reached, try again tomorrow")
            self.session.add(counter(email=email, day=today, sent_count=1, last_sent_at=now))
            try:
                await self.session.flush()
            except IntegrityError:
                # A concurrent send created the row first, so we are inside its cooldown.
                await self.session.rollback()
                raise TooManyRequests(self._cooldown_message(settings.EMAIL_CODE_COOLDOWN_SECONDS))
            return

        if row.last_sent_at is not None and row.last_sent_at > cutoff:
            remaining = settings.EMAIL_CODE_COOLDOWN_SECONDS - (now - row.last_sent_at).total_seconds()
            raise TooManyRequests(self._cooldown_message(math.ceil(max(remaining, 1))))
        raise TooManyRequests("Daily verification email limit reached, try again tomorrow")

    @staticmethod
    def _cooldown_message(seconds: int) -> str:
        return f"Sending too frequently, retry in {seconds} seconds"

    async def _release_budget(self, email: str, purpose: str, charged_at: datetime) -> None:
        """Undo a charge whose email never left: drop the code and give the send back."""
        counter = EmailSendCounterRow
        await self.session.execute(
            delete(EmailCodeRow).where(
                EmailCodeRow.email == email,
                EmailCodeRow.purpose == purpose,
                EmailCodeRow.created_at == charged_at,
            )
        )
        await self.session.execute(
            update(counter)
            .where(counter.email == email, counter.last_sent_at == charged_at)
            .values(
                sent_count=case((counter.sent_count > 0, counter.sent_count - 1), else_=0),
                last_sent_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        logger.warning("Released send budget for %s after delivery failure", email)

    # ── Verifying ────────────────────────────────────────────────────────

    async def verify_code(self, email: str, purpose: str, code: str) -> str:
        """Check a code and consume it. Returns the normalized email.

        Failed attempts are committed right away; the consumption itself is
        left to the caller's commit so it lands together with the account change.
        """
        email = validate_email(email)
        max_attempts = settings.EMAIL_CODE_MAX_ATTEMPTS
        row = (await self.session.execute(
            select(EmailCodeRow).where(EmailCodeRow.email == email, EmailCodeRow.purpose == purpose)
        )).scalar_one_or_none()

        if row is None:
            raise CodeNotFound()

        if row.expires_at <= _now():
            await self.session.delete(row)
            await self.session.commit()
            raise CodeExpired()

        if row.attempts >= max_attempts:
            raise TooManyAttempts()

        if not hmac.compare_digest(hash_code(email, code or ""), row.code_hash):
            await self.session.execute(
                update(EmailCodeRow)
                .where(EmailCodeRow.id == row.id)
                .values(attempts=EmailCodeRow.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            raise InvalidCode()

        result = await self.session.execute(
            delete(EmailCodeRow)
            .where(EmailCodeRow.id == row.id, EmailCodeRow.attempts < max_attempts)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise CodeNotFound()
        return email
