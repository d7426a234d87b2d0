"""Auth + profile endpoints: verification codes, binding, login, token refresh."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from aistory.api.schemas import (
    DeviceLoginRequest, LoginRequest, ProfileUpdateRequest, RefreshRequest,
    RegisterRequest, ResetPasswordRequest, SendCodeRequest,
)
from aistory.auth import Identity, optional_auth, require_auth
from aistory.db.engine import get_session
from aistory.mailer import Mailer, get_mailer
from aistory.services.accounts import AccountService
from aistory.services.email_codes import EmailCodeService
from config.settings import settings

router = APIRouter(prefix=settings.API_PREFIX, tags=["auth"])


@router.post("/auth/send-code")
async def send_code(
    body: SendCodeRequest,
    session: AsyncSession = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
):
    """Email a 6-digit verification code for registration or password reset."""
    return await EmailCodeService(session, mailer).send_code(body.email, body.purpose)


@router.post("/auth/register")
async def register(
    body: RegisterRequest,
    identity: Optional[Identity] = Depends(optional_auth),
    session: AsyncSession = Depends(get_session),
):
    """Bind email + password. Upgrades the caller's anonymous account when a token is sent."""
    return await AccountService(session).register_bound_account(
        email=body.email,
        password=body.password,
        code=body.code,
        nickname=body.nickname,
        username=body.username,
        current_sub=identity.sub if identity else None,
    )


@router.post("/auth/login")
async def login(body: LoginRequest, session: AsyncSession = Depends(get_session)):
    return await AccountService(session).login_account(body.username, body.password)


@router.post("/auth/reset-password", status_code=204)
async def reset_password(body: ResetPasswordRequest, session: AsyncSession = Depends(get_session)):
    await AccountService(session).reset_password(body.email, body.code, body.new_password)
    return Response(status_code=204)


@router.post("/auth/refresh")
async def refresh(body: RefreshRequest, session: AsyncSession = Depends(get_session)):
    """Trade a refresh token for a new token pair. Each refresh token works once."""
    return await AccountService(session).refresh_auth(body.refresh_token)


@router.post("/auth/logout")
async def logout(
    body: RefreshRequest,
    identity: Identity = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
):
    await AccountService(session).logout(body.refresh_token)
    return {"success": True}


@router.post("/auth/device-login")
async def device_login(body: DeviceLoginRequest, session: AsyncSession = Depends(get_session)):
    """Anonymous bootstrap: one account per device until it is bound."""
    return await AccountService(session).device_login(body.device_id)


@router.get("/auth/me")
async def me(identity: Identity = Depends(require_auth), session: AsyncSession = Depends(get_session)):
    return await AccountService(session).get_me(identity.sub)


@router.patch("/profile")
async def update_profile(
    body: ProfileUpdateRequest,
    identity: Identity = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
):
    return await AccountService(session).update_profile(
        identity.sub, nickname=body.nickname, avatar_seed=body.avatar_seed
    )
