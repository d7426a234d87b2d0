"""Admin endpoints: review queue, approve/reject, content reports."""
from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from aistory.api.schemas import RejectRequest
from aistory.auth import Identity, require_admin
from aistory.db.engine import get_session
from aistory.services.moderation import ModerationService
from aistory.services.reports import ReportService
from config.settings import settings

router = APIRouter(
    prefix=f"{settings.API_PREFIX}/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


@router.get("/review/stats")
async def review_stats(session: AsyncSession = Depends(get_session)):
    return await ModerationService(session).stats()


@router.get("/review/{kind}")
async def review_queue(
    kind: Literal["prompts", "stories"],
    status: str = Query("pending", pattern="^(pending|approved|rejected)$"),
    keyword: Optional[str] = Query(None, min_length=1, max_length=100),
    session: AsyncSession = Depends(get_session),
):
    """Submissions of one kind in one status (pending by default), with author info."""
    return await ModerationService(session).list_queue(kind, status=status, keyword=keyword)


@router.post("/review/{kind}/{uuid}/approve")
async def approve(
    kind: Literal["prompt", "story"],
    uuid: str,
    identity: Identity = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await ModerationService(session).approve(kind, uuid, identity.sub)


@router.post("/review/{kind}/{uuid}/reject")
async def reject(
    kind: Literal["prompt", "story"],
    uuid: str,
    body: RejectRequest,
    identity: Identity = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await ModerationService(session).reject(kind, uuid, body.reason, identity.sub)


@router.get("/reports")
async def list_reports(
    target_type: Optional[Literal["prompt", "story"]] = Query(None, alias="targetType"),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
):
    return await ReportService(session).list_reports(target_type=target_type, offset=offset, limit=limit)
