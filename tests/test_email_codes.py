"""Tests for verification code sending and checking."""
from __future__ import annotations

from datetime import timedelta

import pytest

from aistory.db.tables import utcnow
from aistory.services import email_codes
from config.settings import settings

EMAIL = "carol@example.com"


class Clock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(monkeypatch):
    c = Clock()
    monkeypatch.setattr(email_codes, "_now", c)
    return c


def _wrong(code: str) -> str:
    return f"{(int(code) + 1) % 1_000_000:06d}"


async def _register(client, code, email=EMAIL):
    return await client.post(
        "/v1/auth/register", json={"email": email, "password": "pw123456", "code": code}
    )


# ── Sending ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_send_code(client, mailer):
    resp = await client.post("/v1/auth/send-code", json={"email": " Carol@Example.com ", "purpose": "register"})
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "cooldownSeconds": settings.EMAIL_CODE_COOLDOWN_SECONDS,
        "ttlSeconds": settings.EMAIL_CODE_TTL_SECONDS,
    }
    assert len(mailer.outbox) == 1
    assert mailer.outbox[0]["to"] == EMAIL
    assert mailer.outbox[0]["subject"] == settings.MAIL_SUBJECT
    assert mailer.last_code(EMAIL).isdigit()


@pytest.mark.asyncio
async def test_invalid_email_rejected(client, mailer):
    resp = await client.post("/v1/auth/send-code", json={"email": "not-an-email", "purpose": "register"})
    assert resp.status_code == 400
    assert mailer.outbox == []


@pytest.mark.asyncio
async def test_cooldown(client, mailer, clock):
    assert (await client.post("/v1/auth/send-code", json={"email": EMAIL})).status_code == 200

    clock.advance(seconds=20)
    resp = await client.post("/v1/auth/send-code", json={"email": EMAIL})
    assert resp.status_code == 429
    assert "retry in 40 seconds" in resp.json()["error"]

    clock.advance(seconds=41)
    assert (await client.post("/v1/auth/send-code", json={"email": EMAIL})).status_code == 200
    assert len(mailer.outbox) == 2


@pytest.mark.asyncio
async def test_daily_limit_resets_next_day(client, mailer, clock, monkeypatch):
    monkeypatch.setattr(settings, "EMAIL_CODE_DAILY_LIMIT", 2)
    monkeypatch.setattr(settings, "EMAIL_CODE_COOLDOWN_SECONDS", 0)

    for _ in range(2):
        assert (await client.post("/v1/auth/send-code", json={"email": EMAIL})).status_code == 200
    resp = await client.post("/v1/auth/send-code", json={"email": EMAIL})
    assert resp.status_code == 429
    assert "Daily" in resp.json()["error"]

    clock.advance(days=1)
    assert (await client.post("/v1/auth/send-code", json={"email": EMAIL})).status_code == 200


@pytest.mark.asyncio
async def test_limits_are_per_email(client, mailer):
    assert (await client.post("/v1/auth/send-code", json={"email": EMAIL})).status_code == 200
    assert (await client.post("/v1/auth/send-code", json={"email": "dave@example.com"})).status_code == 200


@pytest.mark.asyncio
async def test_delivery_failure_releases_budget(client, mailer):
    mailer.fail = True
    resp = await client.post("/v1/auth/send-code", json={"email": EMAIL})
    assert resp.status_code == 502
    assert resp.json() == {"error": "Failed to deliver verification email"}

    # No cooldown was charged, so an immediate retry goes through
    mailer.fail = False
    assert (await client.post("/v1/auth/send-code", json={"email": EMAIL})).status_code == 200


@pytest.mark.asyncio
async def test_register_purpose_rejects_bound_email(api, client):
    await api.register(email=EMAIL)
    resp = await client.post("/v1/auth/send-code", json={"email": EMAIL, "purpose": "register"})
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_reset_purpose_requires_bound_email(client):
    resp = await client.post("/v1/auth/send-code", json={"email": EMAIL, "purpose": "reset"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_unknown_purpose_rejected(client):
    resp = await client.post("/v1/auth/send-code", json={"email": EMAIL, "purpose": "login"})
    assert resp.status_code == 400


# ── Verifying ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_code_is_single_use(api, client):
    code = await api.send_code(EMAIL)
    assert (await _register(client, code)).status_code == 200

    resp = await _register(client, code)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Verification code not found, please request a new one"


@pytest.mark.asyncio
async def test_no_code_sent(client):
    resp = await _register(client, "123456")
    assert resp.status_code == 400
    assert "not found" in resp.json()["error"]


@pytest.mark.asyncio
async def test_wrong_code_then_attempt_cap(api, client):
    code = await api.send_code(EMAIL)

    for _ in range(settings.EMAIL_CODE_MAX_ATTEMPTS):
        resp = await _register(client, _wrong(code))
        assert resp.status_code == 400
        assert resp.json()["error"] == "Verification code is incorrect"

    # Locked even for the right code
    resp = await _register(client, code)
    assert resp.status_code == 429
    assert "request a new code" in resp.json()["error"]


@pytest.mark.asyncio
async def test_expired_code(api, client, clock):
    code = await api.send_code(EMAIL)
    clock.advance(seconds=settings.EMAIL_CODE_TTL_SECONDS + 1)

    resp = await _register(client, code)
    assert resp.status_code == 400
    assert "expired" in resp.json()["error"]

    # The expired code is gone afterwards
    resp = await _register(client, code)
    assert "not found" in resp.json()["error"]


@pytest.mark.asyncio
async def test_resend_replaces_code(api, client, clock):
    first = await api.send_code(EMAIL)
    clock.advance(seconds=settings.EMAIL_CODE_COOLDOWN_SECONDS + 1)
    second = await api.send_code(EMAIL)

    if first != second:
        assert (await _register(client, first)).status_code == 400
    assert (await _register(client, second)).status_code == 200


def test_code_hash_is_bound_to_email():
    assert email_codes.hash_code("a@b.com", "123456") != email_codes.hash_code("c@d.com", "123456")
    assert email_codes.hash_code("A@B.com ", "123456") == email_codes.hash_code("a@b.com", "123456")


def test_generated_codes_are_six_digits():
    for _ in range(50):
        code = email_codes.generate_code()
        assert len(code) == 6 and code.isdigit()
