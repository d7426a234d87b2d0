"""Tests for request ID tracing middleware."""
import logging

import pytest
from httpx import ASGITransport, AsyncClient

from aistory.api.main import app
from aistory.logging_config import JSONFormatter, RequestIDFilter
from aistory.middleware.request_id import request_id_var


@pytest.fixture
def client():
    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.asyncio
async def test_response_includes_request_id(client):
    """Every response should have X-Request-ID header."""
    resp = await client.get("/health")
    assert "x-request-id" in resp.headers
    # Should be a valid UUID4-ish string
    rid = resp.headers["x-request-id"]
    assert len(rid) == 36  # UUID format


@pytest.mark.asyncio
async def test_client_request_id_honored(client):
    """If client sends X-Request-ID, server should echo it back."""
    custom_id = "my-trace-12345"
    resp = await client.get("/health", headers={"X-Request-ID": custom_id})
    assert resp.headers["x-request-id"] == custom_id


@pytest.mark.asyncio
async def test_oversized_request_id_replaced(client):
    resp = await client.get("/health", headers={"X-Request-ID": "x" * 200})
    assert len(resp.headers["x-request-id"]) == 36


@pytest.mark.asyncio
async def test_unique_ids_per_request(client):
    """Each request gets a unique ID."""
    r1 = await client.get("/health")
    r2 = await client.get("/health")
    assert r1.headers["x-request-id"] != r2.headers["x-request-id"]


def test_log_records_carry_request_id():
    record = logging.LogRecord("aistory", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    token = request_id_var.set("trace-1")
    try:
        RequestIDFilter().filter(record)
    finally:
        request_id_var.reset(token)

    line = JSONFormatter().format(record)
    assert '"request_id": "trace-1"' in line
    assert '"message": "hello world"' in line
