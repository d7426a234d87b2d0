"""Plaza submissions: community prompt presets and story settings.

Both kinds share one lifecycle (see ``aistory.services.moderation``): authors
create items as ``pending``, admins approve or reject them, and only approved
items show up in the public plaza. Like and download counters are bumped with
``col = col + 1`` behind the unique ``likes`` / ``downloads`` rows.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import Text, and_, cast, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aistory.db.tables import DownloadRow, LikeRow, PromptPresetRow, StorySettingRow, new_uuid
from aistory.db.user_tables import UserRow
from aistory.errors import BadRequest, Conflict, Forbidden, NotFound

logger = logging.getLogger(__name__)

SORTS = ("newest", "popular", "downloads")
MAX_PAGE_SIZE = 50
_UNKNOWN_AUTHOR = {"uuid": "", "nickname": "未知", "avatarSeed": ""}


def _escape_like(value: str) -> str:
    """Escape LIKE wildcard characters in user input."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _clean_tags(tags) -> list[str]:
    if tags is None:
        return []
    if not isinstance(tags, list):
        raise BadRequest("Tags must be a list of strings")
    cleaned = []
    for tag in tags:
        if not isinstance(tag, str):
            raise BadRequest("Tags must be a list of strings")
        tag = tag.strip()[:20]
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned[:10]


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


class SubmissionService(ABC):
    """Shared plaza operations. Subclasses describe one submission table."""

    model = None
    target_type = ""
    label = "Submission"
    search_columns: tuple[str, ...] = ()

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Per-kind hooks ───────────────────────────────────────────────────

    @abstractmethod
    def validate(self, data: dict, partial: bool = False) -> dict:
        ...

    @abstractmethod
    def summary(self, row) -> dict:
        ...

    @abstractmethod
    def detail_fields(self, row) -> dict:
        ...

    def extra_filters(self, **filters) -> list:
        return []

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _user_id(self, sub: str) -> int:
        result = await self.session.execute(select(UserRow.id).where(UserRow.uuid == sub))
        user_id = result.scalar_one_or_none()
        if user_id is None:
            raise NotFound("User not found")
        return user_id

    async def _optional_user_id(self, sub: Optional[str]) -> Optional[int]:
        if not sub:
            return None
        result = await self.session.execute(select(UserRow.id).where(UserRow.uuid == sub))
        return result.scalar_one_or_none()

    async def _get(self, uuid: str):
        result = await self.session.execute(select(self.model).where(self.model.uuid == uuid))
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFound(f"{self.label} not found")
        return row

    async def _get_approved(self, uuid: str):
        row = await self._get(uuid)
        if row.status != "approved":
            raise NotFound(f"{self.label} not found")
        return row

    async def _authors(self, author_ids) -> dict[int, dict]:
        ids = set(author_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(UserRow.id, UserRow.uuid, UserRow.nickname, UserRow.avatar_seed)
            .where(UserRow.id.in_(ids))
        )
        return {
            r.id: {"uuid": r.uuid, "nickname": r.nickname, "avatarSeed": r.avatar_seed}
            for r in result.all()
        }

    async def _liked_ids(self, user_id: Optional[int], target_ids) -> set[int]:
        ids = list(target_ids)
        if user_id is None or not ids:
            return set()
        result = await self.session.execute(
            select(LikeRow.target_id).where(
                LikeRow.user_id == user_id,
                LikeRow.target_type == self.target_type,
                LikeRow.target_id.in_(ids),
            )
        )
        return set(result.scalars().all())

    # ── Public plaza ─────────────────────────────────────────────────────

    async def list_public(
        self,
        page: int = 1,
        limit: int = 20,
        sort: str = "newest",
        search: Optional[str] = None,
        tags: Optional[list[str]] = None,
        viewer_sub: Optional[str] = None,
        **filters,
    ) -> dict:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        model = self.model

        conditions = [model.status == "approved"]
        if search:
            q = f"%{_escape_like(search.strip())}%"
            conditions.append(or_(*[
                getattr(model, col).ilike(q, escape="\\") for col in self.search_columns
            ]))
        if tags:
            # Tags are a JSON array; match the serialized element in its stored text.
            conditions.append(or_(*[
                cast(model.tags, Text).like(f"%{_escape_like(json.dumps(tag))}%", escape="\\")
                for tag in tags
            ]))
        conditions.extend(self.extra_filters(**filters))
        where = and_(*conditions)

        order_map = {
            "newest": model.created_at.desc(),
            "popular": model.like_count.desc(),
            "downloads": model.download_count.desc(),
        }
        stmt = (
            select(model)
            .where(where)
            .order_by(order_map.get(sort, model.created_at.desc()), model.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        total = (await self.session.execute(select(func.count(model.id)).where(where))).scalar() or 0

        viewer_id = await self._optional_user_id(viewer_sub)
        authors = await self._authors(r.author_id for r in rows)
        liked = await self._liked_ids(viewer_id, (r.id for r in rows))

        items = []
        for row in rows:
            item = self.summary(row)
            item.update({
                "tags": row.tags or [],
                "downloadCount": row.download_count,
                "likeCount": row.like_count,
                "isLiked": row.id in liked,
                "createdAt": _iso(row.created_at),
                "author": authors.get(row.author_id, _UNKNOWN_AUTHOR),
            })
            items.append(item)
        return {"items": items, "total": total, "page": page, "limit": limit}

    async def _detail(self, row, viewer_id: Optional[int]) -> dict:
        authors = await self._authors([row.author_id])
        liked = await self._liked_ids(viewer_id, [row.id])
        item = {"uuid": row.uuid}
        item.update(self.detail_fields(row))
        item.update({
            "tags": row.tags or [],
            "downloadCount": row.download_count,
            "likeCount": row.like_count,
            "isLiked": row.id in liked,
            "status": row.status,
            "createdAt": _iso(row.created_at),
            "author": authors.get(row.author_id, _UNKNOWN_AUTHOR),
        })
        return item

    async def get_detail(self, uuid: str, viewer_sub: Optional[str] = None) -> dict:
        row = await self._get_approved(uuid)
        return await self._detail(row, await self._optional_user_id(viewer_sub))

    # ── Author operations ────────────────────────────────────────────────

    async def create(self, author_sub: str, data: dict) -> dict:
        author_id = await self._user_id(author_sub)
        values = self.validate(data)
        values["tags"] = _clean_tags(data.get("tags"))
        row = self.model(uuid=new_uuid(), author_id=author_id, status="pending", **values)
        self.session.add(row)
        await self.session.commit()
        logger.info("New %s %s submitted for review", self.target_type, row.uuid)
        return {"uuid": row.uuid, "status": row.status}

    async def _owned(self, uuid: str, author_sub: str, action: str):
        row = await self._get(uuid)
        if row.author_id != await self._user_id(author_sub):
            raise Forbidden(f"You can only {action} your own submissions")
        return row

    async def update(self, uuid: str, author_sub: str, data: dict) -> dict:
        """Edit an own, not yet approved submission. It goes back into the review queue."""
        row = await self._owned(uuid, author_sub, "edit")
        if row.status == "approved":
            raise BadRequest("Approved submissions cannot be edited, please submit a new one")

        values = self.validate(data, partial=True)
        for key, value in values.items():
            setattr(row, key, value)
        if "tags" in data and data["tags"] is not None:
            row.tags = _clean_tags(data["tags"])
        row.status = "pending"
        row.reject_reason = None
        row.reviewed_at = None
        row.reviewed_by = None
        await self.session.commit()
        return {"uuid": row.uuid, "status": row.status}

    async def remove(self, uuid: str, author_sub: str) -> dict:
        row = await self._owned(uuid, author_sub, "delete")
        for table in (LikeRow, DownloadRow):
            await self.session.execute(
                delete(table).where(table.target_type == self.target_type, table.target_id == row.id)
            )
        await self.session.delete(row)
        await self.session.commit()
        return {"success": True}

    async def list_mine(self, author_sub: str) -> list[dict]:
        """Everything the author submitted, with review status and reject reason."""
        author_id = await self._user_id(author_sub)
        result = await self.session.execute(
            select(self.model)
            .where(self.model.author_id == author_id)
            .order_by(self.model.created_at.desc(), self.model.id.desc())
        )
        items = []
        for row in result.scalars().all():
            item = self.summary(row)
            item.update({
                "tags": row.tags or [],
                "status": row.status,
                "rejectReason": row.reject_reason,
                "downloadCount": row.download_count,
                "likeCount": row.like_count,
                "createdAt": _iso(row.created_at),
            })
            items.append(item)
        return items

    # ── Engagement ───────────────────────────────────────────────────────

    async def like(self, uuid: str, user_sub: str) -> dict:
        """Like an approved item once. A second like is a Conflict."""
        row = await self._get_approved(uuid)
        user_id = await self._user_id(user_sub)

        self.session.add(LikeRow(user_id=user_id, target_type=self.target_type, target_id=row.id))
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            raise Conflict("You have already liked this item")

        await self.session.execute(
            update(self.model)
            .where(self.model.id == row.id)
            .values(like_count=self.model.like_count + 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        like_count = (await self.session.execute(
            select(self.model.like_count).where(self.model.id == row.id)
        )).scalar_one()
        return {"liked": True, "likeCount": like_count}

    async def download(self, uuid: str, user_sub: str) -> dict:
        """Record a download (counted once per user) and return the full item."""
        row = await self._get_approved(uuid)
        row_id = row.id
        user_id = await self._user_id(user_sub)

        self.session.add(DownloadRow(user_id=user_id, target_type=self.target_type, target_id=row_id))
        try:
            await self.session.flush()
        except IntegrityError:
            # Already downloaded by this user; the counter stays as it is.
            await self.session.rollback()
        else:
            await self.session.execute(
                update(self.model)
                .where(self.model.id == row_id)
                .values(download_count=self.model.download_count + 1)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

        fresh = (await self.session.execute(
            select(self.model).where(self.model.id == row_id).execution_options(populate_existing=True)
        )).scalar_one()
        return await self._detail(fresh, user_id)


# ── Prompt presets ───────────────────────────────────────────────────────


class PromptService(SubmissionService):
    model = PromptPresetRow
    target_type = "prompt"
    label = "Prompt preset"
    search_columns = ("name", "description")

    def validate(self, data: dict, partial: bool = False) -> dict:
        values = {}
        if not partial or data.get("name") is not None:
            name = (data.get("name") or "").strip()
            if len(name) < 1 or len(name) > 50:
                raise BadRequest("Preset name must be 1-50 characters")
            values["name"] = name
        if data.get("description") is not None or not partial:
            values["description"] = (data.get("description") or "").strip()
        if not partial or data.get("promptsJson") is not None:
            prompts_json = data.get("promptsJson") or ""
            try:
                json.loads(prompts_json)
            except (TypeError, ValueError):
                raise BadRequest("promptsJson is not valid JSON")
            values["prompts_json"] = prompts_json
        return values

    def summary(self, row) -> dict:
        return {"uuid": row.uuid, "name": row.name, "description": row.description}

    def detail_fields(self, row) -> dict:
        return {"name": row.name, "description": row.description, "promptsJson": row.prompts_json}


# ── Story settings ───────────────────────────────────────────────────────


def _excerpt(text: str, size: int = 100) -> str:
    return f"{text[:size]}..." if len(text) > size else text


class StoryService(SubmissionService):
    model = StorySettingRow
    target_type = "story"
    label = "Story setting"
    search_columns = ("title", "premise")

    _optional_text = {
        "protagonistDescription": "protagonist_description",
        "protagonistAppearance": "protagonist_appearance",
        "extraDescription": "extra_description",
    }

    def validate(self, data: dict, partial: bool = False) -> dict:
        values = {}
        if not partial or data.get("title") is not None:
            title = (data.get("title") or "").strip()
            if len(title) < 1 or len(title) > 50:
                raise BadRequest("Title must be 1-50 characters")
            values["title"] = title
        if not partial or data.get("premise") is not None:
            premise = (data.get("premise") or "").strip()
            if len(premise) < 10:
                raise BadRequest("Premise needs at least 10 characters")
            values["premise"] = premise
        if not partial or data.get("genre") is not None:
            genre = (data.get("genre") or "").strip()
            if not genre:
                raise BadRequest("Genre is required")
            values["genre"] = genre
        if not partial or data.get("protagonistName") is not None:
            name = (data.get("protagonistName") or "").strip()
            if not name:
                raise BadRequest("Protagonist name is required")
            values["protagonist_name"] = name[:50]

        for key, column in self._optional_text.items():
            if data.get(key) is not None or not partial:
                values[column] = (data.get(key) or "").strip()
        if data.get("difficulty") or not partial:
            values["difficulty"] = data.get("difficulty") or "普通"
        if data.get("initialPacing") or not partial:
            values["initial_pacing"] = data.get("initialPacing") or "轻松"
        return values

    def extra_filters(self, genre: Optional[str] = None, **_) -> list:
        return [self.model.genre == genre] if genre else []

    def summary(self, row) -> dict:
        return {
            "uuid": row.uuid,
            "title": row.title,
            "premise": _excerpt(row.premise),
            "genre": row.genre,
            "protagonistName": row.protagonist_name,
            "difficulty": row.difficulty,
        }

    def detail_fields(self, row) -> dict:
        return {
            "title": row.title,
            "premise": row.premise,
            "genre": row.genre,
            "protagonistName": row.protagonist_name,
            "protagonistDescription": row.protagonist_description,
            "protagonistAppearance": row.protagonist_appearance,
            "difficulty": row.difficulty,
            "initialPacing": row.initial_pacing,
            "extraDescription": row.extra_description,
        }


SERVICES = {"prompt": PromptService, "story": StoryService}


def service_for(kind: str, session: AsyncSession) -> SubmissionService:
    """Look up the service for a kind ("prompt"/"prompts", "story"/"stories")."""
    key = {"prompts": "prompt", "stories": "story"}.get(kind, kind)
    if key not in SERVICES:
        raise NotFound(f"Unknown submission type: {kind}")
    return SERVICES[key](session)
