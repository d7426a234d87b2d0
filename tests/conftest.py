"""Shared test fixtures — single test DB for all test modules."""
from __future__ import annotations

import re

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from aistory.db.tables import Base
from aistory.db.engine import enable_sqlite_foreign_keys, get_session
from aistory.errors import DeliveryFailed
from aistory.mailer import get_mailer
from config.settings import settings

# Use a shared in-memory DB with check_same_thread=False and StaticPool
# This ensures all connections see the same in-memory database.
from sqlalchemy.pool import StaticPool

TEST_DB_URL = "sqlite+aiosqlite:///file:aistory_test?mode=memory&cache=shared&uri=true"

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(test_engine)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)

settings.SCHEDULER_ENABLED = False
settings.RATE_LIMIT_AUTH_MAX = 10_000
settings.RATE_LIMIT_ADMIN_MAX = 10_000
settings.RATE_LIMIT_DEFAULT_MAX = 10_000


async def override_get_session():
    async with TestSession() as session:
        yield session


class FakeMailer:
    """Records outgoing mail instead of talking SMTP. Set ``fail`` to simulate an outage."""

    def __init__(self):
        self.outbox: list[dict] = []
        self.fail = False

    async def send(self, to: str, subject: str, text: str) -> None:
        if self.fail:
            raise DeliveryFailed()
        self.outbox.append({"to": to, "subject": subject, "text": text})

    def last_code(self, to: str) -> str:
        for message in reversed(self.outbox):
            if message["to"] == to:
                return re.search(r"(\d{6})", message["text"]).group(1)
        raise AssertionError(f"No mail sent to {to}")


fake_mailer = FakeMailer()

# Import app and override BEFORE any test module imports app
from aistory.api.main import app  # noqa: E402

app.dependency_overrides[get_session] = override_get_session
app.dependency_overrides[get_mailer] = lambda: fake_mailer

# Code that opens its own sessions (housekeeping, scripts) goes through the engine module
import aistory.db.engine as _engine_mod  # noqa: E402
_engine_mod.async_session = TestSession
_engine_mod.engine = test_engine


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after."""
    import aistory.db.user_tables  # noqa: F401
    import aistory.db.email_code_tables  # noqa: F401
    import aistory.db.report_tables  # noqa: F401

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    # Reset rate limiter between tests
    from aistory.middleware.rate_limit import reset_store
    reset_store()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def mailer():
    fake_mailer.outbox.clear()
    fake_mailer.fail = False
    return fake_mailer


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class Api:
    """Shortcuts for the multi-step flows most tests start from."""

    def __init__(self, client: AsyncClient, mailer: FakeMailer):
        self.client = client
        self.mailer = mailer

    @staticmethod
    def bearer(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    async def device_login(self, device_id: str = "device-0001") -> dict:
        resp = await self.client.post("/v1/auth/device-login", json={"deviceId": device_id})
        assert resp.status_code == 200, resp.text
        return resp.json()

    async def send_code(self, email: str, purpose: str = "register") -> str:
        resp = await self.client.post("/v1/auth/send-code", json={"email": email, "purpose": purpose})
        assert resp.status_code == 200, resp.text
        return self.mailer.last_code(email.strip().lower())

    async def register(
        self,
        email: str = "alice@example.com",
        password: str = "pw123456",
        nickname: str = "Alice",
        token: str | None = None,
        **extra,
    ) -> dict:
        code = await self.send_code(email)
        headers = self.bearer(token) if token else {}
        resp = await self.client.post(
            "/v1/auth/register",
            json={"email": email, "password": password, "code": code, "nickname": nickname, **extra},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    async def admin(self, email: str = "admin@example.com", password: str = "pw123456") -> dict:
        """A bound account promoted to admin, logged in again so the token carries the role."""
        from aistory.db.user_tables import UserRow

        await self.register(email=email, password=password, nickname="Admin")
        async with TestSession() as session:
            await session.execute(update(UserRow).where(UserRow.email == email).values(role="admin"))
            await session.commit()
        resp = await self.client.post("/v1/auth/login", json={"username": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()

    async def submit_prompt(self, token: str, **overrides) -> str:
        body = {
            "name": "Noir detective",
            "description": "Hard-boiled narration",
            "promptsJson": '{"system": "You narrate a noir story"}',
            "tags": ["noir"],
        }
        body.update(overrides)
        resp = await self.client.post("/v1/prompts", json=body, headers=self.bearer(token))
        assert resp.status_code == 201, resp.text
        return resp.json()["uuid"]

    async def submit_story(self, token: str, **overrides) -> str:
        body = {
            "title": "Lost Lighthouse",
            "premise": "A keeper wakes up to find the sea has vanished overnight.",
            "genre": "mystery",
            "protagonistName": "Lin",
            "tags": ["sea"],
        }
        body.update(overrides)
        resp = await self.client.post("/v1/stories", json=body, headers=self.bearer(token))
        assert resp.status_code == 201, resp.text
        return resp.json()["uuid"]

    async def approve(self, admin_token: str, kind: str, uuid: str) -> None:
        resp = await self.client.post(
            f"/v1/admin/review/{kind}/{uuid}/approve", headers=self.bearer(admin_token)
        )
        assert resp.status_code == 200, resp.text


@pytest.fixture
def api(client, mailer):
    return Api(client, mailer)
