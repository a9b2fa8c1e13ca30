"""Check-in eligibility.

``evaluate_eligibility`` is the single decision function. The gate runs it
on an unlocked read for status pages; the store runs it again on locked
rows right before writing.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.checkin.results import Eligibility, EligibilityReason
from tourney.checkin.window import CheckinWindow, WindowPhase, compute_window
from tourney.config import get_settings
from tourney.models.tournament import (
    CheckinSettings,
    Registration,
    RegistrationStatus,
    Tournament,
)

_STATUS_REASONS = {
    RegistrationStatus.CHECKED_IN: EligibilityReason.ALREADY_CHECKED_IN,
    RegistrationStatus.WAITLISTED: EligibilityReason.WAITLISTED,
    RegistrationStatus.DISQUALIFIED: EligibilityReason.DISQUALIFIED,
}


def resolve_window_minutes(
    checkin_settings: CheckinSettings | None,
    default: int | None = None,
) -> int:
    """Per-tournament window length, falling back to the configured default."""
    if checkin_settings is not None and checkin_settings.checkin_window_minutes:
        return checkin_settings.checkin_window_minutes
    if default is not None:
        return default
    return get_settings().checkin_window_minutes


def window_for(
    tournament: Tournament,
    checkin_settings: CheckinSettings | None,
    *,
    now: datetime,
) -> CheckinWindow:
    return compute_window(
        tournament.start_at,
        resolve_window_minutes(checkin_settings),
        now=now,
    )


def evaluate_eligibility(
    tournament: Tournament | None,
    checkin_settings: CheckinSettings | None,
    registration: Registration | None,
    *,
    now: datetime,
) -> Eligibility:
    """Decide whether ``registration`` may check in at ``now``.

    Checks run in a fixed order: tournament exists, not finalized, window
    open, registered, registration status. The first failure wins.
    """
    if tournament is None:
        return Eligibility(False, EligibilityReason.TOURNAMENT_NOT_FOUND)

    window = window_for(tournament, checkin_settings, now=now)

    if checkin_settings is not None and checkin_settings.finalized_at is not None:
        return Eligibility(False, EligibilityReason.ALREADY_FINALIZED, registration, window)

    if not window.is_open:
        reason = (
            EligibilityReason.WINDOW_NOT_OPEN
            if window.phase is WindowPhase.PENDING
            else EligibilityReason.WINDOW_CLOSED
        )
        return Eligibility(False, reason, registration, window)

    if registration is None:
        return Eligibility(False, EligibilityReason.NOT_REGISTERED, None, window)

    status_reason = _STATUS_REASONS.get(registration.status)
    if status_reason is not None:
        return Eligibility(False, status_reason, registration, window)

    if registration.checked_in_at is not None:
        return Eligibility(False, EligibilityReason.ALREADY_CHECKED_IN, registration, window)

    return Eligibility(True, None, registration, window)


async def load_checkin_settings(
    session: AsyncSession,
    tournament_id: int,
    *,
    refresh: bool = False,
) -> CheckinSettings | None:
    """Settings row of a tournament, if any.

    ``refresh`` overwrites an instance already in the session with the
    committed row, so ``finalized_at`` reflects a finalization that
    committed after the first read.
    """
    query = select(CheckinSettings).where(CheckinSettings.tournament_id == tournament_id)
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def load_registration(
    session: AsyncSession,
    tournament_id: int,
    user_id: str,
    *,
    for_update: bool = False,
) -> Registration | None:
    query = select(Registration).where(
        Registration.tournament_id == tournament_id,
        Registration.user_id == user_id,
    )
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    return result.scalar_one_or_none()


class EligibilityGate:
    """Read-only "may this user check in now" answers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def can_check_in(
        self,
        tournament_id: int,
        user_id: str,
        *,
        now: datetime,
    ) -> Eligibility:
        tournament = await self.session.get(Tournament, tournament_id)
        if tournament is None:
            return evaluate_eligibility(None, None, None, now=now)

        checkin_settings = await load_checkin_settings(self.session, tournament_id)
        registration = await load_registration(self.session, tournament_id, user_id)
        return evaluate_eligibility(tournament, checkin_settings, registration, now=now)
