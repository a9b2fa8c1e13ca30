"""Wallet ledger reconciliation.

The ledgers are authoritative:
- balance      = sum of completed wallet transactions (signed)
- hold balance = sum of active balance holds

``users.wallet_balance`` / ``users.hold_balance`` are caches. This service
reports where they drifted and overwrites them with the ledger-derived
values under a row lock on the user.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select, union
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.config import get_settings
from tourney.models.user import User
from tourney.models.wallet import (
    BalanceHold,
    HoldStatus,
    TransactionStatus,
    WalletTransaction,
)
from tourney.utils.db import transaction
from tourney.utils.errors import ServiceError, UserNotFoundError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


@dataclass(frozen=True)
class BalanceReport:
    """Cached vs ledger-derived balances for one user."""

    user_id: str
    username: str
    current_balance: Decimal
    calculated_balance: Decimal
    current_hold: Decimal
    calculated_hold: Decimal

    @property
    def balance_drift(self) -> Decimal:
        return self.calculated_balance - self.current_balance

    @property
    def hold_drift(self) -> Decimal:
        return self.calculated_hold - self.current_hold

    def has_discrepancy(self, epsilon: Decimal) -> bool:
        return abs(self.balance_drift) > epsilon or abs(self.hold_drift) > epsilon

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "current_balance": str(self.current_balance),
            "calculated_balance": str(self.calculated_balance),
            "balance_drift": str(self.balance_drift),
            "current_hold": str(self.current_hold),
            "calculated_hold": str(self.calculated_hold),
            "hold_drift": str(self.hold_drift),
        }


@dataclass(frozen=True)
class ReconciliationFix:
    """Balances before and after a repair."""

    user_id: str
    old_balance: Decimal
    new_balance: Decimal
    old_hold: Decimal
    new_hold: Decimal

    @property
    def changed(self) -> bool:
        return self.old_balance != self.new_balance or self.old_hold != self.new_hold

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "old_balance": str(self.old_balance),
            "new_balance": str(self.new_balance),
            "old_hold": str(self.old_hold),
            "new_hold": str(self.new_hold),
            "changed": self.changed,
        }


@dataclass
class ReconciliationRun:
    """Outcome of a population-wide repair."""

    fixed: list[ReconciliationFix]
    failed: list[str]


class LedgerReconciler:
    """Detect and repair drift between cached and ledger balances."""

    def __init__(self, session: AsyncSession, epsilon: Decimal | None = None):
        self.session = session
        self.epsilon = epsilon if epsilon is not None else get_settings().balance_drift_epsilon

    async def calculate_balance(self, user_id: str) -> Decimal:
        """Sum of completed transactions (credits positive, debits negative)."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(
                WalletTransaction.user_id == user_id,
                WalletTransaction.status == TransactionStatus.COMPLETED,
            )
        )
        return _to_decimal(result.scalar_one())

    async def calculate_hold(self, user_id: str) -> Decimal:
        """Sum of active holds."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(BalanceHold.amount), 0)).where(
                BalanceHold.user_id == user_id,
                BalanceHold.status == HoldStatus.ACTIVE,
            )
        )
        return _to_decimal(result.scalar_one())

    async def ledger_user_ids(self) -> list[str]:
        """Every user present in either ledger."""
        query = union(
            select(WalletTransaction.user_id),
            select(BalanceHold.user_id),
        )
        result = await self.session.execute(query)
        return sorted(row[0] for row in result.all())

    async def _report_for(self, user: User) -> BalanceReport:
        return BalanceReport(
            user_id=user.id,
            username=user.username,
            current_balance=_to_decimal(user.wallet_balance),
            calculated_balance=await self.calculate_balance(user.id),
            current_hold=_to_decimal(user.hold_balance),
            calculated_hold=await self.calculate_hold(user.id),
        )

    async def reconcile_user(self, user_id: str) -> BalanceReport:
        """Compare one user's cached balances with the ledger.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return await self._report_for(user)

    async def reconcile(self, user_id: str | None = None) -> list[BalanceReport]:
        """Report discrepancies.

        Args:
            user_id: Limit to one user. Without it, every user appearing in
                either ledger is checked; ledger rows whose user no longer
                exists are logged and skipped.

        Returns:
            Reports whose drift exceeds the epsilon. Empty when all
            balances agree.

        Raises:
            UserNotFoundError: If ``user_id`` is given and does not exist
        """
        if user_id is not None:
            report = await self.reconcile_user(user_id)
            return [report] if report.has_discrepancy(self.epsilon) else []

        discrepancies: list[BalanceReport] = []
        for ledger_user_id in await self.ledger_user_ids():
            user = await self.session.get(User, ledger_user_id)
            if user is None:
                logger.warning(f"Ledger references missing user {ledger_user_id}, skipping")
                continue
            report = await self._report_for(user)
            if report.has_discrepancy(self.epsilon):
                discrepancies.append(report)

        logger.info(f"Reconciliation found {len(discrepancies)} discrepancy(ies)")
        return discrepancies

    async def apply_reconciliation(self, user_id: str) -> ReconciliationFix:
        """Overwrite one user's cached balances with the ledger values.

        Locks the user row and re-derives both sums under the lock, so a
        concurrent ledger write cannot be lost between read and write.
        Commits on success.

        Raises:
            UserNotFoundError: If the user does not exist
            TransientError: Database connectivity or timeout failure
        """
        async with transaction(self.session, "apply_reconciliation"):
            result = await self.session.execute(
                select(User)
                .where(User.id == user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            user = result.scalar_one_or_none()
            if user is None:
                raise UserNotFoundError(user_id)

            old_balance = _to_decimal(user.wallet_balance)
            old_hold = _to_decimal(user.hold_balance)
            new_balance = await self.calculate_balance(user_id)
            new_hold = await self.calculate_hold(user_id)

            user.wallet_balance = new_balance
            user.hold_balance = new_hold

        fix = ReconciliationFix(
            user_id=user_id,
            old_balance=old_balance,
            new_balance=new_balance,
            old_hold=old_hold,
            new_hold=new_hold,
        )
        logger.info(
            f"Fixed balances for {user_id}: "
            f"balance {old_balance} -> {new_balance}, hold {old_hold} -> {new_hold}"
        )
        return fix

    async def apply_all(self) -> ReconciliationRun:
        """Repair every discrepancy, one commit per user.

        A failure for one user is logged and does not stop the others.
        """
        discrepancies = await self.reconcile()
        # Release the read transaction before taking per-user locks
        await self.session.rollback()

        run = ReconciliationRun(fixed=[], failed=[])
        for report in discrepancies:
            try:
                run.fixed.append(await self.apply_reconciliation(report.user_id))
            except ServiceError as e:
                logger.error(f"Failed to fix balances for {report.user_id}: {e.message}")
                run.failed.append(report.user_id)

        logger.info(f"Reconciliation applied: {len(run.fixed)} fixed, {len(run.failed)} failed")
        return run
