"""Check-in scheduler tasks.

- finalize_due_checkins_task: every minute, closes check-in for tournaments
  that have started and promotes their waitlists
- send_checkin_reminders_task: every minute, tells registrants that
  check-in has opened
"""

import asyncio
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourney.checkin.window import utcnow
from tourney.services.checkin import CheckinService
from tourney.services.notification import (
    NotificationSender,
    dispatch_notifications,
    finalization_notifications,
    standalone_sender,
)
from tourney.tasks.celery_app import celery_app
from tourney.utils.db import standalone_session_factory
from tourney.utils.errors import TransientError

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="tourney.tasks.checkin.finalize_due_checkins_task",
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(ConnectionError, TransientError),
    retry_backoff=True,
)
def finalize_due_checkins_task(self):
    """Finalize every tournament whose check-in window has closed.

    Returns:
        Summary dict with processing results
    """
    logger.info(f"Starting check-in finalization sweep (attempt {self.request.retries + 1})")
    result = asyncio.run(_run_finalize_sweep())
    logger.info(f"Check-in finalization sweep complete: {result}")
    return result


async def _run_finalize_sweep() -> dict:
    async with standalone_session_factory() as session_factory:
        async with standalone_sender() as sender:
            return await finalize_due_checkins(session_factory, sender, now=utcnow())


async def finalize_due_checkins(
    session_factory: async_sessionmaker[AsyncSession],
    sender: NotificationSender,
    *,
    now: datetime,
) -> dict:
    """Finalize due tournaments, each in its own session.

    One tournament failing is logged and counted; the others still run.
    """
    async with session_factory() as session:
        due = await CheckinService(session).tournaments_needing_finalization(now)

    summary = {
        "status": "success",
        "checked": len(due),
        "finalized": 0,
        "skipped": 0,
        "failed": 0,
        "promoted": 0,
        "disqualified": 0,
        "notifications_sent": 0,
        "notifications_failed": 0,
        "processed_at": now.isoformat(),
    }

    for tournament_id in due:
        try:
            async with session_factory() as session:
                result = await CheckinService(session).finalize(tournament_id, now=now)
        except Exception as e:
            summary["failed"] += 1
            logger.error(f"Failed to finalize check-in for tournament {tournament_id}: {e}")
            continue

        if not result.applied:
            summary["skipped"] += 1
            continue

        summary["finalized"] += 1
        summary["promoted"] += len(result.promoted)
        summary["disqualified"] += len(result.disqualified)

        report = await dispatch_notifications(sender, finalization_notifications(result))
        summary["notifications_sent"] += report.sent
        summary["notifications_failed"] += report.failed

        logger.info(
            f"Tournament {tournament_id} finalized: "
            f"{len(result.promoted)} promoted, {len(result.disqualified)} no-shows"
        )

    if summary["failed"]:
        summary["status"] = "partial"
    return summary


@celery_app.task(
    bind=True,
    name="tourney.tasks.checkin.send_checkin_reminders_task",
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(ConnectionError, TransientError),
    retry_backoff=True,
)
def send_checkin_reminders_task(self):
    """Remind confirmed and waitlisted registrants that check-in opened."""
    logger.info(f"Starting check-in reminder sweep (attempt {self.request.retries + 1})")
    result = asyncio.run(_run_reminder_sweep())
    logger.info(f"Check-in reminder sweep complete: {result}")
    return result


async def _run_reminder_sweep() -> dict:
    async with standalone_session_factory() as session_factory:
        async with standalone_sender() as sender:
            return await send_checkin_reminders(session_factory, sender, now=utcnow())


async def send_checkin_reminders(
    session_factory: async_sessionmaker[AsyncSession],
    sender: NotificationSender,
    *,
    now: datetime,
) -> dict:
    async with session_factory() as session:
        sent = await CheckinService(session).send_reminders(sender, now=now)
    return {
        "status": "success",
        "reminders_sent": sent,
        "processed_at": now.isoformat(),
    }
