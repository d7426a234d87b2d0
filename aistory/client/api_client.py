"""Async HTTP client with a single transparent refresh-and-retry on 401.

A request that comes back 401 triggers one ``/auth/refresh`` and one replay.
If the replay is 401 again (or the refresh itself fails) the stored tokens are
cleared and ``AuthExpiredError`` is raised; the caller has to sign in again.
The sign-in endpoints themselves are never retried.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import httpx

from aistory.client.config import ApiClientConfig
from aistory.client.token_store import MemoryTokenStore, StoredAuth, TokenStore

logger = logging.getLogger(__name__)

_NO_RETRY_PATHS = ("/auth/refresh", "/auth/login", "/auth/device-login")


class ApiError(Exception):
    """Non-2xx response. ``message`` is the server's ``error`` string."""

    def __init__(self, status_code: int, message: str, details: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(f"{status_code}: {message}")


class AuthExpiredError(ApiError):
    """The session can't be refreshed any more."""

    def __init__(self, message: str = "Session expired, please sign in again"):
        super().__init__(401, message)


def parse_api_error(response: httpx.Response, fallback: str = "Request failed") -> ApiError:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("message") or fallback
        return ApiError(response.status_code, str(message), payload.get("details"))
    return ApiError(response.status_code, response.reason_phrase or fallback)


class ApiClient:
    def __init__(
        self,
        config: Optional[ApiClientConfig] = None,
        store: Optional[TokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or ApiClientConfig()
        self.store = store or MemoryTokenStore()
        self._http = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            headers={"User-Agent": self.config.user_agent, **self.config.headers},
            transport=transport,
        )
        self._refresh_lock = asyncio.Lock()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    # ── Core request path ────────────────────────────────────────────────

    async def _send(self, method: str, path: str, token: Optional[str], **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return await self._http.request(method, path, headers=headers, **kwargs)

    async def request(
        self,
        method: str,
        path: str,
        *,
        auth: bool = True,
        body: Optional[Callable[[Optional[StoredAuth]], dict]] = None,
        **kwargs,
    ) -> Any:
        """Send a request and return the decoded JSON body (None for 204).

        ``body`` builds the JSON payload from the stored tokens and is called again
        before the replay, so a payload that carries the refresh token never sends
        the one the refresh just spent.
        """
        stored = await self.store.get() if auth else None
        token = stored.access_token if stored else None
        if body is not None:
            kwargs["json"] = body(stored)
        response = await self._send(method, path, token, **kwargs)

        if response.status_code == 401 and auth and token and not path.startswith(_NO_RETRY_PATHS):
            if not await self._refresh(token):
                await self.store.clear()
                raise AuthExpiredError()
            stored = await self.store.get()
            if body is not None:
                kwargs["json"] = body(stored)
            response = await self._send(method, path, stored.access_token if stored else None, **kwargs)
            if response.status_code == 401:
                await self.store.clear()
                raise AuthExpiredError()

        if response.status_code >= 400:
            raise parse_api_error(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _refresh(self, failed_token: str) -> bool:
        """Refresh once for all concurrent callers that failed with the same token."""
        async with self._refresh_lock:
            stored = await self.store.get()
            if stored is None:
                return False
            if stored.access_token != failed_token:
                # Someone else already refreshed while we waited
                return True
            response = await self._send("POST", "/auth/refresh", None, json={"refreshToken": stored.refresh_token})
            if response.status_code != 200:
                logger.info("Token refresh rejected (%s)", response.status_code)
                return False
            await self.store.set(StoredAuth.from_auth_result(response.json()))
            return True

    async def _sign_in(self, path: str, body: dict) -> dict:
        # The caller's token lets /auth/register upgrade the anonymous account in place
        data = await self.request("POST", path, json=body)
        await self.store.set(StoredAuth.from_auth_result(data))
        return data

    # ── Auth ─────────────────────────────────────────────────────────────

    async def device_login(self, device_id: str) -> dict:
        return await self._sign_in("/auth/device-login", {"deviceId": device_id})

    async def send_code(self, email: str, purpose: str = "register") -> dict:
        return await self.request("POST", "/auth/send-code", auth=False, json={"email": email, "purpose": purpose})

    async def register(self, email: str, password: str, code: str, nickname: Optional[str] = None) -> dict:
        body = {"email": email, "password": password, "code": code}
        if nickname is not None:
            body["nickname"] = nickname
        return await self._sign_in("/auth/register", body)

    async def login(self, username: str, password: str) -> dict:
        return await self._sign_in("/auth/login", {"username": username, "password": password})

    async def reset_password(self, email: str, code: str, new_password: str) -> None:
        await self.request(
            "POST", "/auth/reset-password", auth=False,
            json={"email": email, "code": code, "newPassword": new_password},
        )

    async def logout(self) -> None:
        stored = await self.store.get()
        try:
            if stored:
                await self.request(
                    "POST", "/auth/logout",
                    body=lambda current: {"refreshToken": current.refresh_token if current else ""},
                )
        finally:
            await self.store.clear()

    async def me(self) -> dict:
        return await self.request("GET", "/auth/me")

    async def update_profile(self, nickname: Optional[str] = None, avatar_seed: Optional[str] = None) -> dict:
        body = {}
        if nickname is not None:
            body["nickname"] = nickname
        if avatar_seed is not None:
            body["avatarSeed"] = avatar_seed
        return await self.request("PATCH", "/profile", json=body)

    # ── Plaza ────────────────────────────────────────────────────────────

    async def list_prompts(self, **params) -> dict:
        return await self.request("GET", "/prompts", params=params)

    async def list_stories(self, **params) -> dict:
        return await self.request("GET", "/stories", params=params)

    async def report(self, target_type: str, target_uuid: str, reason_type: str, reason_text: str = "") -> dict:
        return await self.request("POST", "/reports", json={
            "targetType": target_type,
            "targetUuid": target_uuid,
            "reasonType": reason_type,
            "reasonText": reason_text,
        })
