"""Check-in finalization.

Runs at most once per tournament: disqualifies confirmed registrations
that never checked in, promotes the waitlist into the freed slots and
stamps ``finalized_at``, all in one transaction under the tournament row
lock. A concurrent second caller blocks on the lock, then sees
``finalized_at`` set and returns ``ALREADY_FINALIZED``.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.checkin.eligibility import load_checkin_settings, window_for
from tourney.checkin.promotion import plan_promotions
from tourney.checkin.results import (
    DisqualifiedTeam,
    FinalizationOutcome,
    FinalizationResult,
    FinalizationState,
    PromotedTeam,
)
from tourney.checkin.store import CheckinStore
from tourney.checkin.window import CheckinWindow, WindowPhase
from tourney.logging_config import get_logger
from tourney.models.tournament import (
    CheckinSettings,
    RegistrationStatus,
    Tournament,
)
from tourney.utils.db import transaction
from tourney.utils.errors import TournamentNotFoundError

logger = get_logger(__name__)


def finalization_state(
    checkin_settings: CheckinSettings | None,
    window: CheckinWindow,
) -> FinalizationState:
    """Where a tournament sits in open -> closed_pending -> finalized.

    A window that has not opened yet counts as open: only a closed window
    (or an explicit force) makes a tournament finalizable.
    """
    if checkin_settings is not None and checkin_settings.finalized_at is not None:
        return FinalizationState.FINALIZED
    if window.phase is WindowPhase.CLOSED:
        return FinalizationState.CLOSED_PENDING
    return FinalizationState.OPEN


class FinalizationEngine:
    """Close check-in, disqualify no-shows, promote the waitlist."""

    def __init__(self, session: AsyncSession, store: CheckinStore | None = None):
        self.session = session
        self.store = store or CheckinStore(session)

    async def get_state(
        self,
        tournament_id: int,
        *,
        now: datetime,
    ) -> FinalizationState:
        tournament = await self.session.get(Tournament, tournament_id)
        if tournament is None:
            raise TournamentNotFoundError(tournament_id)
        checkin_settings = await load_checkin_settings(self.session, tournament_id)
        return finalization_state(
            checkin_settings, window_for(tournament, checkin_settings, now=now)
        )

    async def finalize(
        self,
        tournament_id: int,
        *,
        now: datetime,
        force: bool = False,
    ) -> FinalizationResult:
        """Finalize check-in for a tournament and commit.

        Args:
            tournament_id: Tournament to finalize
            now: Operation timestamp, used for every write
            force: Finalize even though the window has not closed

        Returns:
            FinalizationResult. ``ALREADY_FINALIZED``, ``WINDOW_STILL_OPEN``
            and ``WINDOW_NOT_OPEN`` leave every row untouched.

        Raises:
            TournamentNotFoundError: Unknown tournament
            TransientError: Database connectivity or timeout failure; the
                whole transaction was rolled back
        """
        async with transaction(self.session, "finalize_checkins"):
            result = await self._finalize_locked(tournament_id, now=now, force=force)

        if result.applied:
            logger.info(
                "checkin_finalized",
                tournament_id=tournament_id,
                promoted=len(result.promoted),
                disqualified=len(result.disqualified),
                forced=force,
            )
        else:
            logger.info(
                "checkin_finalize_skipped",
                tournament_id=tournament_id,
                outcome=result.outcome.value,
            )
        return result

    async def _finalize_locked(
        self,
        tournament_id: int,
        *,
        now: datetime,
        force: bool,
    ) -> FinalizationResult:
        locked = await self.session.execute(
            select(Tournament)
            .where(Tournament.id == tournament_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        tournament = locked.scalar_one_or_none()
        if tournament is None:
            raise TournamentNotFoundError(tournament_id)

        checkin_settings = await load_checkin_settings(
            self.session, tournament_id, refresh=True
        )
        window = window_for(tournament, checkin_settings, now=now)
        state = finalization_state(checkin_settings, window)

        if state is FinalizationState.FINALIZED:
            return FinalizationResult(
                FinalizationOutcome.ALREADY_FINALIZED,
                tournament_id=tournament_id,
                tournament_name=tournament.name,
                finalized_at=checkin_settings.finalized_at,
            )
        if state is FinalizationState.OPEN and not force:
            return FinalizationResult(
                FinalizationOutcome.WINDOW_NOT_OPEN
                if window.phase is WindowPhase.PENDING
                else FinalizationOutcome.WINDOW_STILL_OPEN,
                tournament_id=tournament_id,
                tournament_name=tournament.name,
            )

        if checkin_settings is None:
            checkin_settings = CheckinSettings(tournament_id=tournament_id)
            self.session.add(checkin_settings)

        no_shows = await self.store.lock_no_shows(tournament_id)
        freed_by = {
            registration.slot_number: registration.id
            for registration in no_shows
            if registration.slot_number is not None
        }
        disqualified = [
            DisqualifiedTeam(
                registration_id=registration.id,
                user_id=registration.user_id,
                display_name=registration.display_name,
                freed_slot=registration.slot_number,
            )
            for registration in no_shows
        ]
        freed_slots = await self.store.mark_no_shows(no_shows, now=now)

        waitlist = await self.store.lock_waitlist(tournament_id)
        occupied = await self.store.count_occupied(tournament_id)
        plan = plan_promotions(
            freed_slots,
            waitlist,
            capacity=tournament.max_teams - occupied,
        )

        promoted: list[PromotedTeam] = []
        for assignment in plan:
            registration = assignment.registration
            registration.status = RegistrationStatus.CONFIRMED
            registration.slot_number = assignment.slot_number
            registration.promoted_via_checkin = True
            registration.original_slot_holder_id = freed_by.get(assignment.slot_number)
            registration.promoted_at = now
            promoted.append(
                PromotedTeam(
                    registration_id=registration.id,
                    user_id=registration.user_id,
                    display_name=registration.display_name,
                    slot_number=assignment.slot_number,
                    original_slot_holder_id=registration.original_slot_holder_id,
                )
            )
        await self.session.flush()

        tournament.current_teams = await self.store.count_occupied(tournament_id)
        checkin_settings.finalized_at = now
        await self.session.flush()

        return FinalizationResult(
            FinalizationOutcome.FINALIZED,
            tournament_id=tournament_id,
            tournament_name=tournament.name,
            promoted=promoted,
            disqualified=disqualified,
            finalized_at=now,
        )
