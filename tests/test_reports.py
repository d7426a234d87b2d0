"""Tests for content reports."""
from __future__ import annotations

import pytest
import pytest_asyncio


@pytest_asyncio.fixture
async def scene(api):
    author = await api.register(email="author@example.com", nickname="Author")
    reporter = await api.device_login("reporter-device")
    admin = await api.admin()
    uuid = await api.submit_prompt(author["accessToken"])
    await api.approve(admin["accessToken"], "prompt", uuid)
    return {
        "uuid": uuid,
        "author": author["accessToken"],
        "reporter": reporter["accessToken"],
        "reporter_uuid": reporter["user"]["uuid"],
        "admin": admin["accessToken"],
    }


def _report(uuid: str, **overrides) -> dict:
    body = {"targetType": "prompt", "targetUuid": uuid, "reasonType": "spam", "reasonText": "Ads everywhere"}
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_report_and_admin_listing(api, client, scene):
    resp = await client.post("/v1/reports", json=_report(scene["uuid"]), headers=api.bearer(scene["reporter"]))
    assert resp.status_code == 201
    assert resp.json()["success"] is True

    resp = await client.get("/v1/admin/reports", headers=api.bearer(scene["admin"]))
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 1
    report = data["reports"][0]
    assert report["targetUuid"] == scene["uuid"]
    assert report["reasonType"] == "spam"
    assert report["reasonText"] == "Ads everywhere"
    assert report["reporter"]["uuid"] == scene["reporter_uuid"]


@pytest.mark.asyncio
async def test_duplicate_report_conflicts(api, client, scene):
    headers = api.bearer(scene["reporter"])
    assert (await client.post("/v1/reports", json=_report(scene["uuid"]), headers=headers)).status_code == 201

    resp = await client.post("/v1/reports", json=_report(scene["uuid"], reasonType="other"), headers=headers)
    assert resp.status_code == 409
    assert resp.json() == {"error": "You have already reported this content"}


@pytest.mark.asyncio
async def test_unapproved_target_not_found(api, client, scene):
    pending = await api.submit_prompt(scene["author"], name="Pending one")
    resp = await client.post("/v1/reports", json=_report(pending), headers=api.bearer(scene["reporter"]))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_wrong_target_type_not_found(api, client, scene):
    resp = await client.post(
        "/v1/reports", json=_report(scene["uuid"], targetType="story"), headers=api.bearer(scene["reporter"])
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_invalid_reason_rejected(api, client, scene):
    resp = await client.post(
        "/v1/reports", json=_report(scene["uuid"], reasonType="boring"), headers=api.bearer(scene["reporter"])
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_report_requires_auth(client, scene):
    resp = await client.post("/v1/reports", json=_report(scene["uuid"]))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_admin_listing_filters_by_type(api, client, scene):
    await client.post("/v1/reports", json=_report(scene["uuid"]), headers=api.bearer(scene["reporter"]))
    resp = await client.get(
        "/v1/admin/reports", params={"targetType": "story"}, headers=api.bearer(scene["admin"])
    )
    assert resp.json() == {"reports": [], "total": 0}
