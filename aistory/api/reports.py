"""Content reporting: users flag approved plaza items for admin review."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from aistory.api.schemas import ReportRequest
from aistory.auth import Identity, require_auth
from aistory.db.engine import get_session
from aistory.services.reports import ReportService
from config.settings import settings

router = APIRouter(prefix=settings.API_PREFIX, tags=["reports"])


@router.post("/reports", status_code=201)
async def submit_report(
    body: ReportRequest,
    identity: Identity = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
):
    """Report a prompt or story. One report per user and item; a repeat is a 409."""
    return await ReportService(session).create_report(
        reporter_sub=identity.sub,
        target_type=body.target_type,
        target_uuid=body.target_uuid,
        reason_type=body.reason_type,
        reason_text=body.reason_text,
    )
