"""Content reporting tables."""
from __future__ import annotations

from sqlalchemy import (
    Column, String, Text, DateTime, Integer,
    ForeignKey, Index, UniqueConstraint
)

from aistory.db.tables import Base, new_uuid, utcnow


class ContentReportRow(Base):
    """User-submitted reports against plaza content."""
    __tablename__ = "content_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), nullable=False, unique=True, default=new_uuid)
    reporter_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    target_type = Column(String(10), nullable=False)  # prompt, story
    target_uuid = Column(String(128), nullable=False)
    reason_type = Column(String(20), nullable=False)  # illegal, sexual, abuse, spam, other
    reason_text = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("reporter_id", "target_type", "target_uuid", name="uq_content_reports_reporter_target"),
        Index("ix_content_reports_target", "target_type", "target_uuid"),
    )
