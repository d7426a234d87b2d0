"""User-related database tables: accounts and issued refresh tokens."""
from __future__ import annotations

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Index,
)

from aistory.db.tables import Base, new_uuid, utcnow

DEFAULT_NICKNAME = "匿名玩家"


class UserRow(Base):
    """User account, anonymous (device_id only) until bound to email + password.

    Invariant: is_bound is True iff username and password_hash are both set.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), nullable=False, unique=True, default=new_uuid)
    device_id = Column(String(256), nullable=True, index=True)
    email = Column(String(254), nullable=True, unique=True)
    username = Column(String(254), nullable=True, unique=True)
    password_hash = Column(String(256), nullable=True)  # PBKDF2-SHA256
    nickname = Column(String(20), nullable=False, default=DEFAULT_NICKNAME)
    avatar_seed = Column(String(128), nullable=False, default="")
    role = Column(String(10), nullable=False, default="user")  # user, admin
    is_bound = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    last_login_at = Column(DateTime, nullable=True)


class RefreshTokenRow(Base):
    """SHA-256 of every live refresh token. Deleting the row revokes the token."""
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_uuid = Column(String(36), nullable=False)
    token_hash = Column(String(64), nullable=False, unique=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_refresh_tokens_user", "user_uuid"),
        Index("ix_refresh_tokens_expires", "expires_at"),
    )
