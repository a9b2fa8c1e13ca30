"""Wallet maintenance tasks.

- expire_holds_task: hourly, releases balance holds past their expiry
- reconcile_wallets_task: daily report of cached balance drift; repairs
  only when called with ``apply=True``
"""

import asyncio
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourney.checkin.window import utcnow
from tourney.services.holds import HoldExpiryService
from tourney.services.reconciliation import LedgerReconciler
from tourney.tasks.celery_app import celery_app
from tourney.utils.db import standalone_session_factory
from tourney.utils.errors import TransientError

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="tourney.tasks.wallet.expire_holds_task",
    max_retries=3,
    default_retry_delay=300,  # 5 minutes
    autoretry_for=(ConnectionError, TransientError),
    retry_backoff=True,
)
def expire_holds_task(self):
    """Release every active hold whose expiry time has passed."""
    logger.info(f"Starting hold expiry (attempt {self.request.retries + 1})")
    result = asyncio.run(_run_expire_holds())
    logger.info(f"Hold expiry complete: {result}")
    return result


async def _run_expire_holds() -> dict:
    async with standalone_session_factory() as session_factory:
        return await expire_holds(session_factory, now=utcnow())


async def expire_holds(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    now: datetime,
) -> dict:
    async with session_factory() as session:
        report = await HoldExpiryService(session).expire_holds(now)
    return {
        "status": "success",
        "expired": report.expired_count,
        "total_released": str(report.total_released),
        "processed_at": now.isoformat(),
    }


@celery_app.task(
    name="tourney.tasks.wallet.reconcile_wallets_task",
)
def reconcile_wallets_task(user_id: str | None = None, apply: bool = False):
    """Report (and optionally repair) cached balance drift.

    Args:
        user_id: Limit to one user
        apply: Overwrite cached balances with the ledger values

    Returns:
        Summary dict with the discrepancies found and fixes applied
    """
    logger.info(f"Starting wallet reconciliation (user={user_id or 'all'}, apply={apply})")
    result = asyncio.run(_run_reconcile(user_id, apply))
    logger.info(
        f"Wallet reconciliation complete: {result['discrepancy_count']} discrepancy(ies)"
    )
    return result


async def _run_reconcile(user_id: str | None, apply: bool) -> dict:
    async with standalone_session_factory() as session_factory:
        return await reconcile_wallets(session_factory, user_id=user_id, apply=apply)


async def reconcile_wallets(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    user_id: str | None = None,
    apply: bool = False,
) -> dict:
    async with session_factory() as session:
        reconciler = LedgerReconciler(session)
        reports = await reconciler.reconcile(user_id)
        summary = {
            "status": "success",
            "discrepancy_count": len(reports),
            "discrepancies": [r.to_dict() for r in reports],
            "fixed": [],
            "failed": [],
        }
        if not apply or not reports:
            return summary

        if user_id is not None:
            fix = await reconciler.apply_reconciliation(user_id)
            summary["fixed"] = [fix.to_dict()]
        else:
            run = await reconciler.apply_all()
            summary["fixed"] = [f.to_dict() for f in run.fixed]
            summary["failed"] = run.failed
            if run.failed:
                summary["status"] = "partial"
    return summary
