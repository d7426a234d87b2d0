"""Initial schema: users, refresh tokens, email codes, plaza submissions, reports.

Revision ID: 3f1c9a7be210
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "3f1c9a7be210"
down_revision = None
branch_labels = None
depends_on = None


def _submission_columns() -> list:
    return [
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(36), nullable=False, unique=True),
        sa.Column("author_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reject_reason", sa.Text, nullable=True),
        sa.Column("reviewed_at", sa.DateTime, nullable=True),
        sa.Column("reviewed_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("download_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("like_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(36), nullable=False, unique=True),
        sa.Column("device_id", sa.String(256), nullable=True, index=True),
        sa.Column("email", sa.String(254), nullable=True, unique=True),
        sa.Column("username", sa.String(254), nullable=True, unique=True),
        sa.Column("password_hash", sa.String(256), nullable=True),
        sa.Column("nickname", sa.String(20), nullable=False),
        sa.Column("avatar_seed", sa.String(128), nullable=False, server_default=""),
        sa.Column("role", sa.String(10), nullable=False, server_default="user"),
        sa.Column("is_bound", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("last_login_at", sa.DateTime, nullable=True),
    )
    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_uuid", sa.String(36), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_refresh_tokens_user", "refresh_tokens", ["user_uuid"])
    op.create_index("ix_refresh_tokens_expires", "refresh_tokens", ["expires_at"])

    op.create_table(
        "email_codes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("purpose", sa.String(10), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("email", "purpose", name="uq_email_codes_email_purpose"),
    )
    op.create_table(
        "email_send_counters",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("day", sa.Date, nullable=False),
        sa.Column("sent_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_sent_at", sa.DateTime, nullable=True),
        sa.UniqueConstraint("email", name="uq_email_send_counters_email"),
    )

    op.create_table(
        "prompt_presets",
        *_submission_columns(),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("prompts_json", sa.Text, nullable=False),
    )
    for name, cols in (
        ("ix_prompt_presets_status", ["status"]),
        ("ix_prompt_presets_author", ["author_id"]),
        ("ix_prompt_presets_created", ["created_at"]),
        ("ix_prompt_presets_likes", ["like_count"]),
        ("ix_prompt_presets_downloads", ["download_count"]),
    ):
        op.create_index(name, "prompt_presets", cols)

    op.create_table(
        "story_settings",
        *_submission_columns(),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("premise", sa.Text, nullable=False),
        sa.Column("genre", sa.String(50), nullable=False),
        sa.Column("protagonist_name", sa.String(50), nullable=False),
        sa.Column("protagonist_description", sa.Text, nullable=False, server_default=""),
        sa.Column("protagonist_appearance", sa.Text, nullable=False, server_default=""),
        sa.Column("difficulty", sa.String(20), nullable=False, server_default="普通"),
        sa.Column("initial_pacing", sa.String(20), nullable=False, server_default="轻松"),
        sa.Column("extra_description", sa.Text, nullable=False, server_default=""),
    )
    for name, cols in (
        ("ix_story_settings_status", ["status"]),
        ("ix_story_settings_author", ["author_id"]),
        ("ix_story_settings_genre", ["genre"]),
        ("ix_story_settings_created", ["created_at"]),
        ("ix_story_settings_likes", ["like_count"]),
        ("ix_story_settings_downloads", ["download_count"]),
    ):
        op.create_index(name, "story_settings", cols)

    for table in ("likes", "downloads"):
        op.create_table(
            table,
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
            sa.Column("target_type", sa.String(10), nullable=False),
            sa.Column("target_id", sa.Integer, nullable=False),
            sa.Column("created_at", sa.DateTime, nullable=False),
            sa.UniqueConstraint("user_id", "target_type", "target_id", name=f"uq_{table}_user_target"),
        )
        op.create_index(f"ix_{table}_target", table, ["target_type", "target_id"])

    op.create_table(
        "content_reports",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(36), nullable=False, unique=True),
        sa.Column("reporter_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("target_type", sa.String(10), nullable=False),
        sa.Column("target_uuid", sa.String(128), nullable=False),
        sa.Column("reason_type", sa.String(20), nullable=False),
        sa.Column("reason_text", sa.Text, nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint(
            "reporter_id", "target_type", "target_uuid", name="uq_content_reports_reporter_target"
        ),
    )
    op.create_index("ix_content_reports_target", "content_reports", ["target_type", "target_uuid"])


def downgrade() -> None:
    for table in (
        "content_reports", "downloads", "likes", "story_settings", "prompt_presets",
        "email_send_counters", "email_codes", "refresh_tokens", "users",
    ):
        op.drop_table(table)
