"""Periodic cleanup of expired verification codes and refresh tokens (APScheduler)."""
from __future__ import annotations

import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import delete

from aistory.db import engine as engine_mod
from aistory.db.email_code_tables import EmailCodeRow, EmailSendCounterRow
from aistory.db.tables import utcnow
from aistory.db.user_tables import RefreshTokenRow
from config.settings import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def purge_expired() -> dict:
    """Delete expired codes, expired refresh tokens and send counters idle for over a day."""
    now = utcnow()
    async with engine_mod.async_session() as session:
        codes = await session.execute(delete(EmailCodeRow).where(EmailCodeRow.expires_at <= now))
        tokens = await session.execute(delete(RefreshTokenRow).where(RefreshTokenRow.expires_at <= now))
        counters = await session.execute(
            delete(EmailSendCounterRow).where(
                EmailSendCounterRow.day < (now - timedelta(days=1)).date(),
                EmailSendCounterRow.last_sent_at.is_(None) | (EmailSendCounterRow.last_sent_at < now - timedelta(days=1)),
            )
        )
        await session.commit()

    purged = {"codes": codes.rowcount, "refreshTokens": tokens.rowcount, "sendCounters": counters.rowcount}
    logger.info("Purged expired rows: %s", purged)
    return purged


async def scheduled_purge():
    try:
        await purge_expired()
    except Exception:
        logger.exception("Scheduled purge failed")


def start_scheduler(interval_minutes: int | None = None):
    """Start the background scheduler for periodic cleanup."""
    interval = interval_minutes or settings.PURGE_INTERVAL_MINUTES
    scheduler.add_job(
        scheduled_purge,
        trigger=IntervalTrigger(minutes=interval),
        id="purge_expired",
        name="Purge expired codes and tokens",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started, purging every {interval}m")


def stop_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
