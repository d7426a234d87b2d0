"""SQLAlchemy ORM models for plaza submissions (prompt presets + story settings)."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Text, DateTime, JSON, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp. SQLite drops tzinfo, so naive UTC is stored everywhere."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> str:
    return str(uuid.uuid4())


REVIEW_STATUSES = ("pending", "approved", "rejected")


class _SubmissionColumns:
    """Columns shared by every moderated plaza submission."""

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), nullable=False, unique=True, default=new_uuid)

    @declared_attr
    def author_id(cls):
        return Column(Integer, ForeignKey("users.id"), nullable=False)

    tags = Column(JSON, default=list)

    # Moderation
    status = Column(String(20), nullable=False, default="pending")  # pending, approved, rejected
    reject_reason = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    @declared_attr
    def reviewed_by(cls):
        return Column(Integer, ForeignKey("users.id"), nullable=True)

    # Engagement
    download_count = Column(Integer, nullable=False, default=0)
    like_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class PromptPresetRow(_SubmissionColumns, Base):
    __tablename__ = "prompt_presets"

    name = Column(String(50), nullable=False)
    description = Column(Text, nullable=False, default="")
    prompts_json = Column(Text, nullable=False)

    __table_args__ = (
        Index("ix_prompt_presets_status", "status"),
        Index("ix_prompt_presets_author", "author_id"),
        Index("ix_prompt_presets_created", "created_at"),
        Index("ix_prompt_presets_likes", "like_count"),
        Index("ix_prompt_presets_downloads", "download_count"),
    )


class StorySettingRow(_SubmissionColumns, Base):
    __tablename__ = "story_settings"

    title = Column(String(100), nullable=False)
    premise = Column(Text, nullable=False)
    genre = Column(String(50), nullable=False)
    protagonist_name = Column(String(50), nullable=False)
    protagonist_description = Column(Text, nullable=False, default="")
    protagonist_appearance = Column(Text, nullable=False, default="")
    difficulty = Column(String(20), nullable=False, default="普通")
    initial_pacing = Column(String(20), nullable=False, default="轻松")
    extra_description = Column(Text, nullable=False, default="")

    __table_args__ = (
        Index("ix_story_settings_status", "status"),
        Index("ix_story_settings_author", "author_id"),
        Index("ix_story_settings_genre", "genre"),
        Index("ix_story_settings_created", "created_at"),
        Index("ix_story_settings_likes", "like_count"),
        Index("ix_story_settings_downloads", "download_count"),
    )


class LikeRow(Base):
    """One row per (user, target). The unique index stops double likes."""
    __tablename__ = "likes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    target_type = Column(String(10), nullable=False)  # prompt, story
    target_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "target_type", "target_id", name="uq_likes_user_target"),
        Index("ix_likes_target", "target_type", "target_id"),
    )


class DownloadRow(Base):
    __tablename__ = "downloads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    target_type = Column(String(10), nullable=False)
    target_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "target_type", "target_id", name="uq_downloads_user_target"),
        Index("ix_downloads_target", "target_type", "target_id"),
    )
