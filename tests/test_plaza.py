"""Tests for the public plaza: listing, detail, authoring, likes and downloads."""
from __future__ import annotations

import pytest
import pytest_asyncio

from aistory.errors import BadRequest
from aistory.services.submissions import SubmissionService, _clean_tags


@pytest_asyncio.fixture
async def people(api):
    """An author, a second bound user and an admin."""
    author = await api.register(email="author@example.com", nickname="Author")
    other = await api.register(email="other@example.com", nickname="Other")
    admin = await api.admin()
    return {
        "author": author["accessToken"],
        "other": other["accessToken"],
        "admin": admin["accessToken"],
        "author_uuid": author["user"]["uuid"],
    }


async def _approved_prompt(api, people, **overrides) -> str:
    uuid = await api.submit_prompt(people["author"], **overrides)
    await api.approve(people["admin"], "prompt", uuid)
    return uuid


# ── Listing ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_only_approved_items_are_listed(api, client, people):
    approved = await _approved_prompt(api, people)
    await api.submit_prompt(people["author"], name="Still pending")

    resp = await client.get("/v1/prompts")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 1
    assert data["page"] == 1
    assert [item["uuid"] for item in data["items"]] == [approved]
    item = data["items"][0]
    assert item["author"]["uuid"] == people["author_uuid"]
    assert item["author"]["nickname"] == "Author"
    assert item["isLiked"] is False
    assert item["tags"] == ["noir"]


@pytest.mark.asyncio
async def test_search_and_tags(api, client, people):
    noir = await _approved_prompt(api, people)
    space = await _approved_prompt(
        api, people, name="Space opera", description="Starships", tags=["科幻", "space"]
    )

    resp = await client.get("/v1/prompts", params={"search": "opera"})
    assert [i["uuid"] for i in resp.json()["items"]] == [space]

    resp = await client.get("/v1/prompts", params={"tags": "科幻"})
    assert [i["uuid"] for i in resp.json()["items"]] == [space]

    resp = await client.get("/v1/prompts", params={"tags": "noir,space"})
    assert {i["uuid"] for i in resp.json()["items"]} == {noir, space}

    # LIKE wildcards in the search are literal
    resp = await client.get("/v1/prompts", params={"search": "%"})
    assert resp.json()["total"] == 0


@pytest.mark.asyncio
async def test_pagination_is_capped(api, client, people):
    await _approved_prompt(api, people)
    resp = await client.get("/v1/prompts", params={"limit": 500})
    assert resp.json()["limit"] == 50


@pytest.mark.asyncio
async def test_sort_popular(api, client, people):
    quiet = await _approved_prompt(api, people, name="Quiet")
    loved = await _approved_prompt(api, people, name="Loved")
    await client.post(f"/v1/prompts/{loved}/like", headers=api.bearer(people["other"]))

    resp = await client.get("/v1/prompts", params={"sort": "popular"})
    assert [i["uuid"] for i in resp.json()["items"]] == [loved, quiet]


@pytest.mark.asyncio
async def test_story_genre_filter_and_excerpt(api, client, people):
    long_premise = "A" * 150
    mystery = await api.submit_story(people["author"], premise=long_premise)
    await api.approve(people["admin"], "story", mystery)
    romance = await api.submit_story(people["author"], title="Letters", genre="romance")
    await api.approve(people["admin"], "story", romance)

    resp = await client.get("/v1/stories", params={"genre": "mystery"})
    items = resp.json()["items"]
    assert [i["uuid"] for i in items] == [mystery]
    assert items[0]["premise"] == "A" * 100 + "..."
    assert items[0]["difficulty"] == "普通"


# ── Detail ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_detail(api, client, people):
    uuid = await _approved_prompt(api, people)
    resp = await client.get(f"/v1/prompts/{uuid}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["promptsJson"] == '{"system": "You narrate a noir story"}'
    assert body["status"] == "approved"


@pytest.mark.asyncio
async def test_pending_detail_is_hidden(api, client, people):
    uuid = await api.submit_prompt(people["author"])
    resp = await client.get(f"/v1/prompts/{uuid}")
    assert resp.status_code == 404


# ── Authoring ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_validation(api, client, people):
    headers = api.bearer(people["author"])
    resp = await client.post("/v1/prompts", json={"name": "Bad", "promptsJson": "{not json"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "promptsJson is not valid JSON"

    resp = await client.post(
        "/v1/stories",
        json={"title": "Short", "premise": "too short", "genre": "x", "protagonistName": "Lin"},
        headers=headers,
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_create_lands_pending(api, client, people):
    resp = await client.post(
        "/v1/prompts",
        json={"name": "Fresh", "promptsJson": "[]"},
        headers=api.bearer(people["author"]),
    )
    assert resp.status_code == 201
    assert resp.json()["status"] == "pending"


@pytest.mark.asyncio
async def test_update_resubmits_for_review(api, client, people):
    uuid = await api.submit_prompt(people["author"])
    await client.post(
        f"/v1/admin/review/prompt/{uuid}/reject",
        json={"reason": "Needs more detail"},
        headers=api.bearer(people["admin"]),
    )

    resp = await client.put(
        f"/v1/prompts/{uuid}", json={"description": "Now with detail"}, headers=api.bearer(people["author"])
    )
    assert resp.status_code == 200
    assert resp.json() == {"uuid": uuid, "status": "pending"}

    mine = (await client.get("/v1/prompts/mine", headers=api.bearer(people["author"]))).json()
    assert mine[0]["description"] == "Now with detail"
    assert mine[0]["rejectReason"] is None

    # Back in the queue, so it can be reviewed again
    await api.approve(people["admin"], "prompt", uuid)


@pytest.mark.asyncio
async def test_only_owner_may_edit_or_delete(api, client, people):
    uuid = await api.submit_prompt(people["author"])
    headers = api.bearer(people["other"])
    assert (await client.put(f"/v1/prompts/{uuid}", json={"name": "Mine now"}, headers=headers)).status_code == 403
    assert (await client.delete(f"/v1/prompts/{uuid}", headers=headers)).status_code == 403


@pytest.mark.asyncio
async def test_approved_item_cannot_be_edited(api, client, people):
    uuid = await _approved_prompt(api, people)
    resp = await client.put(f"/v1/prompts/{uuid}", json={"name": "Changed"}, headers=api.bearer(people["author"]))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_delete(api, client, people):
    uuid = await _approved_prompt(api, people)
    await client.post(f"/v1/prompts/{uuid}/like", headers=api.bearer(people["other"]))

    resp = await client.delete(f"/v1/prompts/{uuid}", headers=api.bearer(people["author"]))
    assert resp.status_code == 200
    assert (await client.get(f"/v1/prompts/{uuid}")).status_code == 404
    assert (await client.get("/v1/prompts")).json()["total"] == 0


# ── Engagement ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_like_once(api, client, people):
    uuid = await _approved_prompt(api, people)
    headers = api.bearer(people["other"])

    resp = await client.post(f"/v1/prompts/{uuid}/like", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"liked": True, "likeCount": 1}

    resp = await client.post(f"/v1/prompts/{uuid}/like", headers=headers)
    assert resp.status_code == 409

    listed = (await client.get("/v1/prompts", headers=headers)).json()["items"][0]
    assert listed["isLiked"] is True
    assert listed["likeCount"] == 1


@pytest.mark.asyncio
async def test_anonymous_user_can_like(api, client, people):
    uuid = await _approved_prompt(api, people)
    anon = await api.device_login()
    resp = await client.post(f"/v1/prompts/{uuid}/like", headers=api.bearer(anon["accessToken"]))
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_cannot_like_pending_item(api, client, people):
    uuid = await api.submit_prompt(people["author"])
    resp = await client.post(f"/v1/prompts/{uuid}/like", headers=api.bearer(people["other"]))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_download_counted_once_per_user(api, client, people):
    uuid = await _approved_prompt(api, people)
    headers = api.bearer(people["other"])

    first = await client.post(f"/v1/prompts/{uuid}/download", headers=headers)
    assert first.status_code == 200
    assert first.json()["downloadCount"] == 1
    assert first.json()["promptsJson"]

    second = await client.post(f"/v1/prompts/{uuid}/download", headers=headers)
    assert second.status_code == 200
    assert second.json()["downloadCount"] == 1


@pytest.mark.asyncio
async def test_like_requires_auth(api, client, people):
    uuid = await _approved_prompt(api, people)
    assert (await client.post(f"/v1/prompts/{uuid}/like")).status_code == 401


# ── Tag cleaning ─────────────────────────────────────────────────────────


def test_clean_tags_dedupes_after_truncation():
    shared = "a" * 20
    assert _clean_tags([shared + "-one", shared + "-two", " noir ", "noir", ""]) == [shared, "noir"]


def test_clean_tags_caps_count_and_rejects_non_strings():
    assert len(_clean_tags([f"tag{i}" for i in range(15)])) == 10
    assert _clean_tags(None) == []
    with pytest.raises(BadRequest):
        _clean_tags(["ok", 3])
    with pytest.raises(BadRequest):
        _clean_tags("noir")


def test_submission_service_needs_kind_hooks():
    with pytest.raises(TypeError):
        SubmissionService(session=None)
