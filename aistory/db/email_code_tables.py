"""Email verification tables: active codes and per-email send counters."""
from __future__ import annotations

from sqlalchemy import Column, String, Integer, Date, DateTime, UniqueConstraint

from aistory.db.tables import Base, utcnow


class EmailCodeRow(Base):
    """The single active code for an (email, purpose) pair. Only the hash is stored."""
    __tablename__ = "email_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(254), nullable=False)
    purpose = Column(String(10), nullable=False)  # register, reset
    code_hash = Column(String(64), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("email", "purpose", name="uq_email_codes_email_purpose"),
    )


class EmailSendCounterRow(Base):
    """Send budget for one email: today's count (UTC day) plus the cooldown stamp.

    sent_count only refers to ``day``; the first send on a new day resets it.
    """
    __tablename__ = "email_send_counters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(254), nullable=False)
    day = Column(Date, nullable=False)
    sent_count = Column(Integer, nullable=False, default=0)
    last_sent_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("email", name="uq_email_send_counters_email"),
    )
