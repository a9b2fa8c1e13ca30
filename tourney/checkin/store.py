"""Transactional check-in writes and the reads finalization depends on.

Nothing here commits. Callers own the unit of work (see
``tourney.utils.db.transaction``) so a check-in or a whole finalization is
one atomic commit.
"""

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.checkin.eligibility import (
    evaluate_eligibility,
    load_checkin_settings,
    load_registration,
    window_for,
)
from tourney.checkin.promotion import order_waitlist
from tourney.checkin.results import CheckinOutcome, CheckinResult, EligibilityReason
from tourney.logging_config import get_logger
from tourney.models.tournament import (
    OCCUPYING_STATUSES,
    Registration,
    RegistrationStatus,
    Tournament,
)

logger = get_logger(__name__)


def _is_checked_in(registration: Registration) -> bool:
    return (
        registration.status == RegistrationStatus.CHECKED_IN
        or registration.checked_in_at is not None
    )


class CheckinStore:
    """Row-locked check-in state changes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def perform_checkin(
        self,
        tournament_id: int,
        user_id: str,
        *,
        now: datetime,
    ) -> CheckinResult:
        """Check a confirmed registration in, exactly once.

        The registration row is locked, the settings row is re-read after
        the lock, eligibility is re-evaluated on that state, and the write
        is a conditional update that only
        matches a confirmed, not yet checked-in row. A repeat call returns
        ``ALREADY_CHECKED_IN`` with the stored timestamp untouched.
        """
        tournament = await self.session.get(Tournament, tournament_id)
        if tournament is None:
            return CheckinResult(
                CheckinOutcome.REJECTED,
                reason=EligibilityReason.TOURNAMENT_NOT_FOUND,
            )

        registration = await load_registration(
            self.session, tournament_id, user_id, for_update=True
        )
        # Read after the lock: a finalization may have committed while we waited
        checkin_settings = await load_checkin_settings(
            self.session, tournament_id, refresh=True
        )
        window = window_for(tournament, checkin_settings, now=now)

        if registration is not None and _is_checked_in(registration):
            return CheckinResult(
                CheckinOutcome.ALREADY_CHECKED_IN,
                registration=registration,
                window=window,
            )

        eligibility = evaluate_eligibility(
            tournament, checkin_settings, registration, now=now
        )
        if not eligibility.can_check_in:
            logger.info(
                "checkin_rejected",
                tournament_id=tournament_id,
                user_id=user_id,
                reason=eligibility.reason.value,
            )
            return CheckinResult(
                CheckinOutcome.REJECTED,
                registration=registration,
                reason=eligibility.reason,
                window=window,
            )

        result = await self.session.execute(
            update(Registration)
            .where(
                Registration.id == registration.id,
                Registration.status == RegistrationStatus.CONFIRMED,
                Registration.checked_in_at.is_(None),
            )
            .values(status=RegistrationStatus.CHECKED_IN, checked_in_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(registration)

        if result.rowcount == 0:
            # Another writer changed the row between our read and update
            if _is_checked_in(registration):
                return CheckinResult(
                    CheckinOutcome.ALREADY_CHECKED_IN,
                    registration=registration,
                    window=window,
                )
            retry = evaluate_eligibility(
                tournament, checkin_settings, registration, now=now
            )
            return CheckinResult(
                CheckinOutcome.REJECTED,
                registration=registration,
                reason=retry.reason or EligibilityReason.NOT_REGISTERED,
                window=window,
            )

        logger.info(
            "checkin_recorded",
            tournament_id=tournament_id,
            user_id=user_id,
            registration_id=registration.id,
            slot_number=registration.slot_number,
        )
        return CheckinResult(
            CheckinOutcome.CHECKED_IN,
            registration=registration,
            window=window,
        )

    async def lock_no_shows(self, tournament_id: int) -> list[Registration]:
        """Confirmed registrations that never checked in, by slot."""
        result = await self.session.execute(
            select(Registration)
            .where(
                Registration.tournament_id == tournament_id,
                Registration.status == RegistrationStatus.CONFIRMED,
                Registration.checked_in_at.is_(None),
            )
            .order_by(Registration.slot_number.asc(), Registration.id.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def mark_no_shows(
        self,
        no_shows: list[Registration],
        *,
        now: datetime,
    ) -> list[int]:
        """Disqualify no-shows and free their slots.

        Returns:
            The freed slot numbers, ascending.
        """
        freed: list[int] = []
        for registration in no_shows:
            if registration.slot_number is not None:
                freed.append(registration.slot_number)
            registration.status = RegistrationStatus.DISQUALIFIED
            registration.slot_number = None
            registration.disqualified_at = now

        # Slots must be released before anyone is promoted into them
        await self.session.flush()
        return sorted(freed)

    async def lock_waitlist(self, tournament_id: int) -> list[Registration]:
        """Waitlisted registrations in promotion order."""
        result = await self.session.execute(
            select(Registration)
            .where(
                Registration.tournament_id == tournament_id,
                Registration.status == RegistrationStatus.WAITLISTED,
            )
            .order_by(Registration.registered_at.asc(), Registration.id.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return order_waitlist(result.scalars().all())

    async def count_occupied(self, tournament_id: int) -> int:
        """Registrations currently holding a slot."""
        result = await self.session.execute(
            select(func.count(Registration.id)).where(
                Registration.tournament_id == tournament_id,
                Registration.status.in_(OCCUPYING_STATUSES),
            )
        )
        return result.scalar_one()

    async def list_registrations(self, tournament_id: int) -> list[Registration]:
        result = await self.session.execute(
            select(Registration)
            .where(Registration.tournament_id == tournament_id)
            .order_by(Registration.registered_at.asc(), Registration.id.asc())
        )
        return list(result.scalars().all())
