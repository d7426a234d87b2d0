"""Admin review of plaza submissions.

Each submission moves once: ``pending -> approved`` or ``pending -> rejected``.
Both transitions are a single ``UPDATE ... WHERE status = 'pending'``, so two
admins racing on the same item can't both win; the loser gets a Conflict.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aistory.db.tables import REVIEW_STATUSES, PromptPresetRow, StorySettingRow, utcnow
from aistory.db.user_tables import UserRow
from aistory.errors import BadRequest, Conflict, NotFound
from aistory.services.submissions import _escape_like, _iso, service_for

logger = logging.getLogger(__name__)

_KEYWORD_COLUMNS = {
    "prompt": ("name", "description"),
    "story": ("title", "premise", "protagonist_name"),
}


class ModerationService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _admin_id(self, admin_sub: str) -> Optional[int]:
        result = await self.session.execute(select(UserRow.id).where(UserRow.uuid == admin_sub))
        return result.scalar_one_or_none()

    async def stats(self) -> dict:
        """Item counts per status for each kind."""
        out = {}
        for kind, model in (("prompt", PromptPresetRow), ("story", StorySettingRow)):
            counts = {status: 0 for status in REVIEW_STATUSES}
            result = await self.session.execute(
                select(model.status, func.count(model.id)).group_by(model.status)
            )
            for status, count in result.all():
                if status in counts:
                    counts[status] = count
            out[kind] = counts
        return out

    async def list_queue(self, kind: str, status: str = "pending", keyword: Optional[str] = None) -> list[dict]:
        if status not in REVIEW_STATUSES:
            raise BadRequest(f"Status must be one of: {', '.join(REVIEW_STATUSES)}")
        service = service_for(kind, self.session)
        model = service.model

        stmt = (
            select(model, UserRow.uuid, UserRow.nickname, UserRow.username)
            .outerjoin(UserRow, UserRow.id == model.author_id)
            .where(model.status == status)
        )
        keyword = (keyword or "").strip()
        if keyword:
            q = f"%{_escape_like(keyword)}%"
            stmt = stmt.where(or_(*[
                getattr(model, col).ilike(q, escape="\\") for col in _KEYWORD_COLUMNS[service.target_type]
            ]))
        stmt = stmt.order_by(model.created_at.desc(), model.id.desc())

        items = []
        for row, author_uuid, nickname, username in (await self.session.execute(stmt)).all():
            item = {"uuid": row.uuid}
            item.update(service.detail_fields(row))
            item.update({
                "tags": row.tags or [],
                "status": row.status,
                "rejectReason": row.reject_reason,
                "reviewedAt": _iso(row.reviewed_at),
                "createdAt": _iso(row.created_at),
                "author": {
                    "uuid": author_uuid or "",
                    "nickname": nickname or "unknown",
                    "username": username,
                },
            })
            items.append(item)
        return items

    async def _transition(self, kind: str, uuid: str, admin_sub: str, target: str, reason: Optional[str]) -> dict:
        model = service_for(kind, self.session).model
        result = await self.session.execute(
            update(model)
            .where(model.uuid == uuid, model.status == "pending")
            .values(
                status=target,
                reject_reason=reason,
                reviewed_at=utcnow(),
                reviewed_by=await self._admin_id(admin_sub),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            current = (await self.session.execute(
                select(model.status).where(model.uuid == uuid)
            )).scalar_one_or_none()
            if current is None:
                raise NotFound("Submission not found")
            raise Conflict(f"Submission has already been reviewed ({current})")

        await self.session.commit()
        logger.info("Admin %s set %s %s to %s", admin_sub, kind, uuid, target)
        return {"success": True, "status": target}

    async def approve(self, kind: str, uuid: str, admin_sub: str) -> dict:
        return await self._transition(kind, uuid, admin_sub, "approved", None)

    async def reject(self, kind: str, uuid: str, reason: str, admin_sub: str) -> dict:
        reason = (reason or "").strip()
        if not reason or len(reason) > 500:
            raise BadRequest("Reject reason must be 1-500 characters")
        return await self._transition(kind, uuid, admin_sub, "rejected", reason)
