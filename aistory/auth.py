"""JWT authentication: token service, password hashing and request gating."""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from aistory.errors import Forbidden, InvalidToken, Unauthorized
from config.settings import settings

# ---- Password hashing (PBKDF2, stdlib only) ----

_ITERATIONS = 260_000
_SALT_BYTES = 16


def hash_password(password: str) -> str:
    salt = secrets.token_hex(_SALT_BYTES)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), _ITERATIONS)
    return f"{salt}${dk.hex()}"


def verify_password(password: str, stored: str) -> bool:
    if "$" not in stored:
        return False
    salt, dk_hex = stored.split("$", 1)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), _ITERATIONS)
    return hmac.compare_digest(dk.hex(), dk_hex)


def hash_token(token: str) -> str:
    """Storage form of a refresh token."""
    return hashlib.sha256(token.encode()).hexdigest()


# ---- JWT (HS256, minimal) ----

_JWT_ALGO = "HS256"


def _now() -> int:
    return int(time.time())


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    s += "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s)


def _signature(signing_input: bytes) -> bytes:
    return hmac.new(settings.JWT_SECRET.encode(), signing_input, hashlib.sha256).digest()


def _sign(payload: dict) -> str:
    header = _b64url(json.dumps({"alg": _JWT_ALGO, "typ": "JWT"}).encode())
    body = _b64url(json.dumps(payload, separators=(",", ":")).encode())
    sig = _signature(f"{header}.{body}".encode())
    return f"{header}.{body}.{_b64url(sig)}"


def sign_access_token(payload: dict) -> str:
    """Short-lived token carrying the authorization claims (sub, role, isBound)."""
    now = _now()
    return _sign({
        "sub": payload["sub"],
        "role": payload["role"],
        "isBound": bool(payload["isBound"]),
        "type": "access",
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + settings.JWT_ACCESS_TTL_SECONDS,
    })


def sign_refresh_token(payload: dict) -> str:
    """Long-lived token carrying only the subject."""
    now = _now()
    return _sign({
        "sub": payload["sub"],
        "type": "refresh",
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + settings.JWT_REFRESH_TTL_SECONDS,
    })


def verify_token(token: str, expected_type: Optional[str] = None) -> dict:
    """Decode and check a token. Any failure raises InvalidToken."""
    parts = token.split(".") if token else []
    if len(parts) != 3:
        raise InvalidToken()
    try:
        header = json.loads(_b64url_decode(parts[0]))
        actual = _b64url_decode(parts[2])
        payload = json.loads(_b64url_decode(parts[1]))
    except (ValueError, TypeError):
        raise InvalidToken()
    if not isinstance(header, dict) or header.get("alg") != _JWT_ALGO:
        raise InvalidToken()
    expected = _signature(f"{parts[0]}.{parts[1]}".encode())
    if not hmac.compare_digest(expected, actual):
        raise InvalidToken()
    if not isinstance(payload, dict) or not payload.get("sub"):
        raise InvalidToken()
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or exp <= _now():
        raise InvalidToken()
    if expected_type and payload.get("type") != expected_type:
        raise InvalidToken()
    return payload


# ---- Request gating ----

@dataclass(frozen=True)
class Identity:
    """Who is calling, as asserted by the access token (no DB lookup)."""
    sub: str
    role: str
    is_bound: bool

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_claims(cls, payload: dict) -> "Identity":
        return cls(
            sub=payload["sub"],
            role=payload.get("role", "user"),
            is_bound=bool(payload.get("isBound", False)),
        )


_bearer = HTTPBearer(auto_error=False)


def _attach(request: Request, token: str) -> Identity:
    identity = Identity.from_claims(verify_token(token, expected_type="access"))
    request.state.identity = identity
    return identity


async def require_auth(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Identity:
    if not creds:
        raise Unauthorized("Missing bearer token")
    return _attach(request, creds.credentials)


async def require_bound(identity: Identity = Depends(require_auth)) -> Identity:
    if not identity.is_bound:
        raise Forbidden("Please bind your account (email and password) first")
    return identity


async def require_admin(identity: Identity = Depends(require_auth)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Admin privileges required")
    return identity


async def optional_auth(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[Identity]:
    """No header means anonymous; a header that fails verification is still a 401."""
    if not creds:
        return None
    return _attach(request, creds.credentials)


async def optional_identity(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[Identity]:
    """Lenient variant for public reads: a bad token is treated as anonymous."""
    if not creds:
        return None
    try:
        return _attach(request, creds.credentials)
    except InvalidToken:
        return None
