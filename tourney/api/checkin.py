"""Tournament check-in API.

Endpoints:
- GET  /tournaments/{id}/checkin           - window, summary, caller's status
- POST /tournaments/{id}/checkin           - check in
- POST /tournaments/{id}/checkin/finalize  - close check-in, promote waitlist
- GET  /tournaments/{id}/checkin/teams     - check-in board (host/organizer/owner)
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, BackgroundTasks
from pydantic import BaseModel, Field

from tourney.api.deps import (
    CurrentCaller,
    CurrentUser,
    DbSession,
    OptionalUser,
    Sender,
    is_organizer,
)
from tourney.checkin.results import (
    REASON_MESSAGES,
    CheckinOutcome,
    EligibilityReason,
    FinalizationOutcome,
)
from tourney.checkin.window import utcnow
from tourney.models.user import User
from tourney.services.checkin import CheckinService
from tourney.services.notification import (
    checkin_confirmation_notification,
    dispatch_notifications,
    finalization_notifications,
)
from tourney.utils.errors import (
    AuthorizationError,
    ConflictError,
    RejectedError,
    TournamentNotFoundError,
)

router = APIRouter(prefix="/tournaments/{tournament_id}/checkin", tags=["Check-in"])

# Refusals that depend on the tournament clock rather than on the caller
CONFLICT_REASONS = {
    EligibilityReason.ALREADY_FINALIZED,
    EligibilityReason.WINDOW_NOT_OPEN,
    EligibilityReason.WINDOW_CLOSED,
}


# ============================================================================
# Request/Response Models
# ============================================================================


class CheckinWindowResponse(BaseModel):
    is_open: bool
    phase: str
    opens_at: datetime
    closes_at: datetime
    minutes_until_open: int
    minutes_until_close: int
    window_minutes: int


class CheckinSummaryResponse(BaseModel):
    tournament_id: int
    total_registered: int
    total_waitlisted: int
    checked_in: int
    pending_checkin: int
    open_slots: int
    max_teams: int
    is_finalized: bool
    finalized_at: datetime | None = None


class RegistrationStatusResponse(BaseModel):
    registration_id: int
    status: str
    slot_number: int | None = None
    checked_in_at: datetime | None = None


class CheckinStatusResponse(BaseModel):
    """Check-in page state."""

    tournament_id: int
    tournament_name: str
    window: CheckinWindowResponse
    summary: CheckinSummaryResponse
    registration: RegistrationStatusResponse | None = None
    can_check_in: bool
    reason: str | None = None
    message: str | None = None


class CheckinResponse(BaseModel):
    """Check-in result."""

    success: bool
    already_checked_in: bool
    message: str
    registration: RegistrationStatusResponse


class FinalizeRequest(BaseModel):
    force: bool = Field(
        default=False,
        description="Finalize before the window closes (owner or system only)",
    )


class TeamResult(BaseModel):
    registration_id: int
    user_id: str
    display_name: str
    slot_number: int | None = None


class FinalizeResponse(BaseModel):
    finalized: bool
    promoted_count: int
    disqualified_count: int
    promoted: list[TeamResult]
    disqualified: list[TeamResult]
    finalized_at: datetime | None = None
    message: str


class TeamCheckinStatusResponse(BaseModel):
    registration_id: int
    user_id: str
    display_name: str
    status: str
    slot_number: int | None = None
    waitlist_position: int | None = None
    checked_in: bool
    checked_in_at: datetime | None = None
    promoted_via_checkin: bool


class CheckinTeamsResponse(BaseModel):
    tournament_id: int
    items: list[TeamCheckinStatusResponse]


# ============================================================================
# API Endpoints
# ============================================================================


@router.get("", response_model=CheckinStatusResponse)
async def get_checkin_status(
    tournament_id: int,
    db: DbSession,
    user: OptionalUser,
) -> Any:
    """Check-in window and summary; the caller's own state when signed in."""
    service = CheckinService(db)
    return await service.get_status(
        tournament_id,
        user.id if user else None,
        now=utcnow(),
    )


@router.post("", response_model=CheckinResponse)
async def check_in(
    tournament_id: int,
    user: CurrentUser,
    db: DbSession,
    sender: Sender,
    background_tasks: BackgroundTasks,
) -> Any:
    """Check in for a tournament.

    - Only confirmed (slotted) registrations can check in
    - Open from the configured window before start until the start
    - Repeating a successful check-in is harmless: ``already_checked_in``
    """
    service = CheckinService(db)
    result = await service.check_in(tournament_id, user.id, now=utcnow())

    if result.outcome is CheckinOutcome.REJECTED:
        reason = result.reason
        if reason is EligibilityReason.TOURNAMENT_NOT_FOUND:
            raise TournamentNotFoundError(tournament_id)
        message = REASON_MESSAGES[reason]
        if reason in CONFLICT_REASONS:
            raise ConflictError(reason.value, message)
        raise RejectedError(reason.value, message)

    registration = result.registration
    already = result.outcome is CheckinOutcome.ALREADY_CHECKED_IN

    if not already:
        tournament = await service.get_tournament(tournament_id)
        background_tasks.add_task(
            dispatch_notifications,
            sender,
            [
                checkin_confirmation_notification(
                    user.id, tournament.id, tournament.name, registration.slot_number
                )
            ],
        )

    return CheckinResponse(
        success=True,
        already_checked_in=already,
        message="You have already checked in" if already else "Checked in successfully!",
        registration=RegistrationStatusResponse(
            registration_id=registration.id,
            status=registration.status.value,
            slot_number=registration.slot_number,
            checked_in_at=registration.checked_in_at,
        ),
    )


def _can_manage(user: User | None, host_id: str) -> bool:
    if user is None:
        return False
    return user.id == host_id or is_organizer(user.role)


@router.post("/finalize", response_model=FinalizeResponse)
async def finalize_checkin(
    tournament_id: int,
    caller: CurrentCaller,
    db: DbSession,
    sender: Sender,
    background_tasks: BackgroundTasks,
    body: FinalizeRequest | None = None,
) -> Any:
    """Close check-in, disqualify no-shows and promote the waitlist.

    Allowed for the tournament host, owners and the scheduler (X-API-Key).
    ``force`` is honored for owners and the scheduler only.
    """
    service = CheckinService(db)
    tournament = await service.get_tournament(tournament_id)

    is_host = caller.user is not None and caller.user.id == tournament.host_id
    if not (caller.is_system or is_host or caller.is_owner):
        raise AuthorizationError()

    force = bool(body and body.force) and caller.is_owner
    result = await service.finalize(tournament_id, now=utcnow(), force=force)

    if result.outcome is FinalizationOutcome.ALREADY_FINALIZED:
        raise ConflictError(
            "ALREADY_FINALIZED",
            "Check-ins have already been finalized",
            details={"finalizedAt": result.finalized_at},
        )
    if result.outcome is FinalizationOutcome.WINDOW_STILL_OPEN:
        raise ConflictError(
            "WINDOW_STILL_OPEN",
            "Cannot finalize check-ins while the check-in window is still open",
        )
    if result.outcome is FinalizationOutcome.WINDOW_NOT_OPEN:
        raise ConflictError(
            "WINDOW_NOT_OPEN",
            "Cannot finalize check-ins before the check-in window has opened and closed",
        )

    notifications = finalization_notifications(result)
    if notifications:
        background_tasks.add_task(dispatch_notifications, sender, notifications)

    return FinalizeResponse(
        finalized=True,
        promoted_count=len(result.promoted),
        disqualified_count=len(result.disqualified),
        promoted=[
            TeamResult(
                registration_id=p.registration_id,
                user_id=p.user_id,
                display_name=p.display_name,
                slot_number=p.slot_number,
            )
            for p in result.promoted
        ],
        disqualified=[
            TeamResult(
                registration_id=d.registration_id,
                user_id=d.user_id,
                display_name=d.display_name,
            )
            for d in result.disqualified
        ],
        finalized_at=result.finalized_at,
        message=(
            f"Check-ins finalized. {len(result.promoted)} teams promoted from "
            f"waitlist, {len(result.disqualified)} no-shows."
        ),
    )


@router.get("/teams", response_model=CheckinTeamsResponse)
async def list_checkin_teams(
    tournament_id: int,
    user: CurrentUser,
    db: DbSession,
) -> Any:
    """Per-registration check-in board for the host, organizers and owners."""
    service = CheckinService(db)
    tournament = await service.get_tournament(tournament_id)
    if not _can_manage(user, tournament.host_id):
        raise AuthorizationError()

    statuses = await service.list_statuses(tournament_id)
    return CheckinTeamsResponse(
        tournament_id=tournament_id,
        items=[TeamCheckinStatusResponse(**s.to_dict()) for s in statuses],
    )
