"""Balance hold expiry.

Active holds whose ``expires_at`` has passed are released and the cached
``users.hold_balance`` is decreased by the hold amount (never below zero).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.models.user import User
from tourney.models.wallet import BalanceHold, HoldStatus
from tourney.utils.db import transaction

logger = logging.getLogger(__name__)

EXPIRED_SUFFIX = " - Expired automatically"


@dataclass
class HoldExpiryReport:
    expired_ids: list[int] = field(default_factory=list)
    total_released: Decimal = Decimal("0.00")

    @property
    def expired_count(self) -> int:
        return len(self.expired_ids)


class HoldExpiryService:
    """Release holds past their expiry time."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_expired(self, now: datetime) -> list[BalanceHold]:
        result = await self.session.execute(
            select(BalanceHold)
            .where(
                BalanceHold.status == HoldStatus.ACTIVE,
                BalanceHold.expires_at.is_not(None),
                BalanceHold.expires_at < now,
            )
            .order_by(BalanceHold.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def expire_holds(self, now: datetime) -> HoldExpiryReport:
        """Release every expired hold in one transaction.

        Returns:
            Which holds were released and the total amount.
        """
        report = HoldExpiryReport()

        async with transaction(self.session, "expire_holds"):
            for hold in await self.find_expired(now):
                user_result = await self.session.execute(
                    select(User)
                    .where(User.id == hold.user_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                user = user_result.scalar_one_or_none()
                if user is not None:
                    user.hold_balance = max(
                        Decimal("0.00"),
                        Decimal(str(user.hold_balance)) - Decimal(str(hold.amount)),
                    )

                hold.status = HoldStatus.RELEASED
                hold.released_at = now
                hold.description = (hold.description or "") + EXPIRED_SUFFIX
                # The next hold may belong to the same user
                await self.session.flush()

                report.expired_ids.append(hold.id)
                report.total_released += Decimal(str(hold.amount))

        if report.expired_count:
            logger.info(
                f"Expired {report.expired_count} hold(s), released {report.total_released} total"
            )
        else:
            logger.debug("No expired holds found")
        return report
