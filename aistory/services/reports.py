"""Content reports against approved plaza items."""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aistory.db.report_tables import ContentReportRow
from aistory.db.tables import new_uuid
from aistory.db.user_tables import UserRow
from aistory.errors import BadRequest, Conflict, NotFound
from aistory.services.submissions import service_for

logger = logging.getLogger(__name__)

TARGET_TYPES = ("prompt", "story")
REASON_TYPES = ("illegal", "sexual", "abuse", "spam", "other")


class ReportService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_report(
        self,
        reporter_sub: str,
        target_type: str,
        target_uuid: str,
        reason_type: str,
        reason_text: Optional[str] = None,
    ) -> dict:
        if target_type not in TARGET_TYPES:
            raise BadRequest(f"Invalid target type. Must be: {', '.join(TARGET_TYPES)}")
        if reason_type not in REASON_TYPES:
            raise BadRequest(f"Invalid reason. Must be: {', '.join(REASON_TYPES)}")

        reporter_id = (await self.session.execute(
            select(UserRow.id).where(UserRow.uuid == reporter_sub)
        )).scalar_one_or_none()
        if reporter_id is None:
            raise BadRequest("Reporter not found")

        target_uuid = target_uuid.strip()
        model = service_for(target_type, self.session).model
        target = (await self.session.execute(
            select(model.id).where(model.uuid == target_uuid, model.status == "approved")
        )).scalar_one_or_none()
        if target is None:
            raise NotFound("Content does not exist or cannot be reported")

        report = ContentReportRow(
            uuid=new_uuid(),
            reporter_id=reporter_id,
            target_type=target_type,
            target_uuid=target_uuid,
            reason_type=reason_type,
            reason_text=(reason_text or "").strip(),
        )
        self.session.add(report)
        try:
            await self.session.commit()
        except IntegrityError:
            # The unique (reporter, target) index is the duplicate check.
            await self.session.rollback()
            raise Conflict("You have already reported this content")

        logger.info("Report %s filed against %s %s", report.uuid, target_type, target_uuid)
        return {"success": True, "uuid": report.uuid}

    async def list_reports(
        self,
        target_type: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> dict:
        """Admin listing, newest first."""
        query = select(ContentReportRow, UserRow.uuid, UserRow.nickname).outerjoin(
            UserRow, UserRow.id == ContentReportRow.reporter_id
        )
        count_query = select(func.count(ContentReportRow.id))
        if target_type:
            query = query.where(ContentReportRow.target_type == target_type)
            count_query = count_query.where(ContentReportRow.target_type == target_type)

        query = query.order_by(ContentReportRow.created_at.desc(), ContentReportRow.id.desc())
        result = await self.session.execute(query.offset(offset).limit(limit))
        total = (await self.session.execute(count_query)).scalar() or 0

        return {
            "reports": [
                {
                    "uuid": r.uuid,
                    "targetType": r.target_type,
                    "targetUuid": r.target_uuid,
                    "reasonType": r.reason_type,
                    "reasonText": r.reason_text,
                    "createdAt": r.created_at.isoformat() if r.created_at else None,
                    "reporter": {"uuid": reporter_uuid or "", "nickname": nickname or "unknown"},
                }
                for r, reporter_uuid, nickname in result.all()
            ],
            "total": total,
        }
