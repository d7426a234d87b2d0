"""Account service: anonymous device accounts, binding, login and token lifecycle.

Every successful sign-in returns an AuthResult::

    {"accessToken": ..., "refreshToken": ..., "user": ApiUser}

Refresh tokens are one-time use: the SHA-256 of each issued token is stored in
``refresh_tokens`` and deleted when the token is redeemed or logged out.
"""
from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aistory.auth import (
    hash_password, hash_token, sign_access_token, sign_refresh_token,
    verify_password, verify_token,
)
from aistory.db.tables import new_uuid, utcnow
from aistory.db.user_tables import DEFAULT_NICKNAME, RefreshTokenRow, UserRow
from aistory.errors import BadRequest, Conflict, InvalidToken, NotFound, Unauthorized
from aistory.services.email_codes import EmailCodeService
from config.settings import settings

logger = logging.getLogger(__name__)

ROLES = ("user", "admin")
_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_\u4e00-\u9fff]{2,20}$")
_LOGIN_FAILED = "Incorrect username or password"


def validate_password(password: Optional[str]) -> str:
    value = (password or "").strip()
    if len(value) < 6 or len(value) > 64:
        raise BadRequest("Password must be 6-64 characters")
    return value


def validate_nickname(nickname: str) -> str:
    value = nickname.strip()
    if len(value) < 1 or len(value) > 20:
        raise BadRequest("Nickname must be 1-20 characters")
    return value


def format_user(user: UserRow) -> dict:
    """Public shape of a user (ApiUser)."""
    return {
        "uuid": user.uuid,
        "email": user.email,
        "username": user.username,
        "nickname": user.nickname,
        "avatarSeed": user.avatar_seed,
        "role": user.role,
        "isBound": bool(user.is_bound),
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


class AccountService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _by_uuid(self, sub: str) -> Optional[UserRow]:
        result = await self.session.execute(select(UserRow).where(UserRow.uuid == sub))
        return result.scalar_one_or_none()

    async def _require_user(self, sub: str) -> UserRow:
        user = await self._by_uuid(sub)
        if user is None:
            raise NotFound("User not found")
        return user

    async def _issue(self, user: UserRow) -> dict:
        """Mint a token pair and stage the refresh token's hash. Caller commits."""
        access = sign_access_token({"sub": user.uuid, "role": user.role, "isBound": user.is_bound})
        refresh = sign_refresh_token({"sub": user.uuid})
        self.session.add(RefreshTokenRow(
            user_uuid=user.uuid,
            token_hash=hash_token(refresh),
            expires_at=utcnow() + timedelta(seconds=settings.JWT_REFRESH_TTL_SECONDS),
        ))
        return {"accessToken": access, "refreshToken": refresh, "user": format_user(user)}

    # ── Sign-in flows ────────────────────────────────────────────────────

    async def device_login(self, device_id: str) -> dict:
        """Find or create the anonymous account attached to a device."""
        device_id = (device_id or "").strip()
        if len(device_id) < 8:
            raise BadRequest("Invalid device id")

        result = await self.session.execute(
            select(UserRow).where(UserRow.device_id == device_id).order_by(UserRow.id)
        )
        user = None
        for candidate in result.scalars().all():
            if candidate.is_bound:
                # A bound account keeps its data but no longer answers for this device.
                candidate.device_id = None
            elif user is None:
                user = candidate

        if user is None:
            uuid = new_uuid()
            user = UserRow(
                uuid=uuid,
                device_id=device_id,
                nickname=DEFAULT_NICKNAME,
                avatar_seed=uuid[:8],
                role="user",
                is_bound=False,
            )
            self.session.add(user)
            logger.info("Created anonymous user %s", uuid)

        user.last_login_at = utcnow()
        await self.session.flush()
        auth = await self._issue(user)
        await self.session.commit()
        return auth

    async def register_bound_account(
        self,
        email: str,
        password: str,
        code: str,
        nickname: Optional[str] = None,
        username: Optional[str] = None,
        current_sub: Optional[str] = None,
    ) -> dict:
        """Bind an email + password.

        With ``current_sub`` the caller's anonymous account is upgraded in place;
        without it a new bound account is created.
        """
        password = validate_password(password)
        if nickname is not None:
            nickname = validate_nickname(nickname)
        if username is not None:
            username = username.strip()
            if not _USERNAME_PATTERN.match(username):
                raise BadRequest("Username must be 2-20 letters, digits, underscores or CJK characters")

        user = None
        if current_sub:
            user = await self._require_user(current_sub)
            if user.is_bound:
                raise Conflict("Account is already bound")

        email = await EmailCodeService(self.session).verify_code(email, "register", code)
        username = username or email

        taken = await self.session.execute(
            select(UserRow).where(or_(UserRow.email == email, UserRow.username == username))
        )
        for other in taken.scalars().all():
            if user is None or other.id != user.id:
                if other.email == email:
                    raise Conflict("Email is already in use")
                raise Conflict("Username is already in use")

        if user is None:
            uuid = new_uuid()
            user = UserRow(uuid=uuid, nickname=DEFAULT_NICKNAME, avatar_seed=uuid[:8], role="user")
            self.session.add(user)

        user.email = email
        user.username = username
        user.password_hash = hash_password(password)
        user.nickname = nickname or user.nickname or DEFAULT_NICKNAME
        user.device_id = None
        user.is_bound = True
        user.last_login_at = utcnow()

        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            raise Conflict("Email or username is already in use")

        auth = await self._issue(user)
        await self.session.commit()
        logger.info("User %s bound to %s", user.uuid, email)
        return auth

    async def login_account(self, username: str, password: str) -> dict:
        """Password login by username or email. Every failure looks the same."""
        login = (username or "").strip()
        if not login or not password:
            raise BadRequest("Username and password are required")

        result = await self.session.execute(
            select(UserRow).where(or_(UserRow.username == login, UserRow.email == login.lower()))
        )
        user = result.scalars().first()
        if (
            user is None
            or not user.is_bound
            or not user.password_hash
            or not verify_password(password.strip(), user.password_hash)
        ):
            raise Unauthorized(_LOGIN_FAILED)

        user.last_login_at = utcnow()
        auth = await self._issue(user)
        await self.session.commit()
        return auth

    async def reset_password(self, email: str, code: str, new_password: str) -> None:
        """Set a new password from a reset code. All refresh tokens are revoked; no auto-login."""
        new_password = validate_password(new_password)
        email = await EmailCodeService(self.session).verify_code(email, "reset", code)

        result = await self.session.execute(select(UserRow).where(UserRow.email == email))
        user = result.scalar_one_or_none()
        if user is None or not user.is_bound:
            raise NotFound("Email is not registered")

        user.password_hash = hash_password(new_password)
        await self.session.execute(
            delete(RefreshTokenRow).where(RefreshTokenRow.user_uuid == user.uuid)
        )
        await self.session.commit()
        logger.info("Password reset for %s", user.uuid)

    # ── Token lifecycle ──────────────────────────────────────────────────

    async def refresh_auth(self, refresh_token: str) -> dict:
        """Redeem a refresh token for a new pair. The presented token stops working."""
        try:
            payload = verify_token(refresh_token, expected_type="refresh")
        except InvalidToken:
            raise Unauthorized("Refresh token is invalid or expired")

        # Deleting by hash is the redemption; a replayed or concurrent second use finds nothing.
        result = await self.session.execute(
            delete(RefreshTokenRow).where(RefreshTokenRow.token_hash == hash_token(refresh_token))
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise Unauthorized("Refresh token has been revoked")

        user = await self._by_uuid(payload["sub"])
        if user is None:
            await self.session.rollback()
            raise Unauthorized("User not found")

        auth = await self._issue(user)
        await self.session.commit()
        return auth

    async def logout(self, refresh_token: str) -> None:
        await self.session.execute(
            delete(RefreshTokenRow).where(RefreshTokenRow.token_hash == hash_token(refresh_token or ""))
        )
        await self.session.commit()

    # ── Profile ──────────────────────────────────────────────────────────

    async def get_me(self, sub: str) -> dict:
        return format_user(await self._require_user(sub))

    async def update_profile(
        self, sub: str, nickname: Optional[str] = None, avatar_seed: Optional[str] = None
    ) -> dict:
        if nickname is None and avatar_seed is None:
            raise BadRequest("Nothing to update")
        user = await self._require_user(sub)
        if nickname is not None:
            user.nickname = validate_nickname(nickname)
        if avatar_seed is not None:
            user.avatar_seed = avatar_seed.strip()[:128]
        await self.session.commit()
        return format_user(user)

    async def set_role(self, login: str, role: str) -> dict:
        """Operator action: promote or demote a bound account by username or email."""
        if role not in ROLES:
            raise BadRequest(f"Role must be one of: {', '.join(ROLES)}")
        result = await self.session.execute(
            select(UserRow).where(or_(UserRow.username == login, UserRow.email == login.lower()))
        )
        user = result.scalars().first()
        if user is None:
            raise NotFound("User not found")
        user.role = role
        await self.session.commit()
        logger.info("Role of %s set to %s", user.uuid, role)
        return format_user(user)
