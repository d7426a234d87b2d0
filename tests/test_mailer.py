"""Tests for the SMTP mailer, with aiosmtplib's client swapped for a fake."""
from __future__ import annotations

import pytest

from aistory import mailer as mailer_mod
from aistory.errors import DeliveryFailed
from aistory.mailer import Mailer


class FakeSMTP:
    """Stands in for aiosmtplib.SMTP. ``stale`` mimics a connection the server closed."""

    instances: list["FakeSMTP"] = []
    always_stale = False

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.is_connected = False
        self.stale = FakeSMTP.always_stale
        self.closed = False
        self.sent = []
        FakeSMTP.instances.append(self)

    async def connect(self):
        self.is_connected = True

    async def login(self, user, password):
        self.user = user

    async def send_message(self, message):
        if self.stale:
            raise mailer_mod.aiosmtplib.SMTPServerDisconnected("Connection lost")
        self.sent.append(message)

    def close(self):
        self.closed = True
        self.is_connected = False


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.always_stale = False
    monkeypatch.setattr(mailer_mod.aiosmtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def _mailer() -> Mailer:
    return Mailer(host="smtp.example.com", port=465, user="bot", password="secret", sender="bot@example.com")


@pytest.mark.asyncio
async def test_connection_is_reused(smtp):
    m = _mailer()
    await m.send("a@example.com", "Code", "123456")
    await m.send("b@example.com", "Code", "654321")
    assert len(smtp.instances) == 1
    assert [msg["To"] for msg in smtp.instances[0].sent] == ["a@example.com", "b@example.com"]


@pytest.mark.asyncio
async def test_idle_disconnect_reconnects_once(smtp):
    m = _mailer()
    await m.send("a@example.com", "Code", "123456")
    first = smtp.instances[0]
    first.stale = True  # still reports is_connected

    await m.send("a@example.com", "Code", "654321")
    assert first.closed
    assert len(smtp.instances) == 2
    assert smtp.instances[1].sent[0]["To"] == "a@example.com"


@pytest.mark.asyncio
async def test_second_disconnect_fails_delivery(smtp):
    smtp.always_stale = True
    m = _mailer()
    with pytest.raises(DeliveryFailed):
        await m.send("a@example.com", "Code", "123456")
    assert len(smtp.instances) == 2
    assert all(i.closed for i in smtp.instances)


@pytest.mark.asyncio
async def test_unconfigured_mailer_refuses(smtp):
    m = Mailer(host="", port=465)
    with pytest.raises(DeliveryFailed):
        await m.send("a@example.com", "Code", "123456")
    assert smtp.instances == []
