"""Tournament check-in service.

Facade over the check-in engine used by the API routers and the Celery
tasks: transaction boundaries, the status/summary read models and the
scheduler sweeps live here.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.checkin.eligibility import (
    EligibilityGate,
    load_checkin_settings,
    load_registration,
    resolve_window_minutes,
    window_for,
)
from tourney.checkin.finalization import FinalizationEngine
from tourney.checkin.promotion import order_waitlist
from tourney.checkin.results import CheckinResult, FinalizationResult
from tourney.checkin.store import CheckinStore
from tourney.checkin.window import WindowPhase, as_utc, compute_window
from tourney.config import get_settings
from tourney.logging_config import get_logger
from tourney.models.tournament import (
    OCCUPYING_STATUSES,
    CheckinSettings,
    Registration,
    RegistrationStatus,
    Tournament,
    TournamentStatus,
)
from tourney.services.notification import (
    NotificationSender,
    checkin_reminder_notification,
    dispatch_notifications,
)
from tourney.utils.db import transaction
from tourney.utils.errors import TournamentNotFoundError

logger = get_logger(__name__)

# Upper bound on a configurable window when scanning for reminders
MAX_WINDOW_MINUTES = 24 * 60

LIVE_STATUSES = (
    RegistrationStatus.CONFIRMED,
    RegistrationStatus.CHECKED_IN,
    RegistrationStatus.WAITLISTED,
)


@dataclass(frozen=True)
class CheckinSummary:
    tournament_id: int
    total_registered: int
    total_waitlisted: int
    checked_in: int
    pending_checkin: int
    open_slots: int
    max_teams: int
    is_finalized: bool
    finalized_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "tournament_id": self.tournament_id,
            "total_registered": self.total_registered,
            "total_waitlisted": self.total_waitlisted,
            "checked_in": self.checked_in,
            "pending_checkin": self.pending_checkin,
            "open_slots": self.open_slots,
            "max_teams": self.max_teams,
            "is_finalized": self.is_finalized,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
        }


@dataclass(frozen=True)
class TeamCheckinStatus:
    registration_id: int
    user_id: str
    display_name: str
    status: RegistrationStatus
    slot_number: int | None
    waitlist_position: int | None
    checked_in_at: datetime | None
    promoted_via_checkin: bool

    def to_dict(self) -> dict:
        return {
            "registration_id": self.registration_id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "status": self.status.value,
            "slot_number": self.slot_number,
            "waitlist_position": self.waitlist_position,
            "checked_in": self.checked_in_at is not None,
            "checked_in_at": self.checked_in_at.isoformat() if self.checked_in_at else None,
            "promoted_via_checkin": self.promoted_via_checkin,
        }


class CheckinService:
    """Check-in operations for one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = CheckinStore(db)
        self.gate = EligibilityGate(db)
        self.engine = FinalizationEngine(db, self.store)

    async def get_tournament(self, tournament_id: int) -> Tournament:
        tournament = await self.db.get(Tournament, tournament_id)
        if tournament is None:
            raise TournamentNotFoundError(tournament_id)
        return tournament

    async def get_status(
        self,
        tournament_id: int,
        user_id: str | None,
        *,
        now: datetime,
    ) -> dict:
        """Window, summary and (for a signed-in user) their own state."""
        tournament = await self.get_tournament(tournament_id)
        checkin_settings = await load_checkin_settings(self.db, tournament_id)
        window = window_for(tournament, checkin_settings, now=now)
        summary = await self.get_summary(tournament_id)

        status: dict = {
            "tournament_id": tournament_id,
            "tournament_name": tournament.name,
            "window": window.to_dict(),
            "summary": summary.to_dict(),
            "registration": None,
            "can_check_in": False,
            "reason": None,
            "message": None,
        }
        if user_id is None:
            return status

        eligibility = await self.gate.can_check_in(tournament_id, user_id, now=now)
        registration = eligibility.registration
        if registration is None:
            registration = await load_registration(self.db, tournament_id, user_id)
        if registration is not None:
            status["registration"] = {
                "registration_id": registration.id,
                "status": registration.status.value,
                "slot_number": registration.slot_number,
                "checked_in_at": (
                    registration.checked_in_at.isoformat()
                    if registration.checked_in_at
                    else None
                ),
            }
        status["can_check_in"] = eligibility.can_check_in
        status["reason"] = eligibility.reason.value if eligibility.reason else None
        status["message"] = eligibility.message
        return status

    async def check_in(
        self,
        tournament_id: int,
        user_id: str,
        *,
        now: datetime,
    ) -> CheckinResult:
        """Check a user in and commit."""
        async with transaction(self.db, "perform_checkin"):
            result = await self.store.perform_checkin(tournament_id, user_id, now=now)
        return result

    async def finalize(
        self,
        tournament_id: int,
        *,
        now: datetime,
        force: bool = False,
    ) -> FinalizationResult:
        return await self.engine.finalize(tournament_id, now=now, force=force)

    async def get_summary(self, tournament_id: int) -> CheckinSummary:
        tournament = await self.get_tournament(tournament_id)
        checkin_settings = await load_checkin_settings(self.db, tournament_id)
        registrations = await self.store.list_registrations(tournament_id)

        counts = {status: 0 for status in RegistrationStatus}
        for registration in registrations:
            counts[registration.status] += 1

        total_registered = (
            counts[RegistrationStatus.CONFIRMED] + counts[RegistrationStatus.CHECKED_IN]
        )
        finalized_at = checkin_settings.finalized_at if checkin_settings else None
        return CheckinSummary(
            tournament_id=tournament_id,
            total_registered=total_registered,
            total_waitlisted=counts[RegistrationStatus.WAITLISTED],
            checked_in=counts[RegistrationStatus.CHECKED_IN],
            pending_checkin=counts[RegistrationStatus.CONFIRMED] if finalized_at is None else 0,
            open_slots=max(tournament.max_teams - total_registered, 0),
            max_teams=tournament.max_teams,
            is_finalized=finalized_at is not None,
            finalized_at=as_utc(finalized_at) if finalized_at else None,
        )

    async def list_statuses(self, tournament_id: int) -> list[TeamCheckinStatus]:
        """Check-in board: slotted teams by slot, then the waitlist in order.

        Disqualified registrations are listed last.
        """
        await self.get_tournament(tournament_id)
        registrations = await self.store.list_registrations(tournament_id)

        slotted = sorted(
            (r for r in registrations if r.status in OCCUPYING_STATUSES),
            key=lambda r: (r.slot_number is None, r.slot_number or 0, r.id),
        )
        waitlist = order_waitlist(
            r for r in registrations if r.status == RegistrationStatus.WAITLISTED
        )
        disqualified = [r for r in registrations if r.status == RegistrationStatus.DISQUALIFIED]

        positions = {r.id: index for index, r in enumerate(waitlist, start=1)}
        return [
            TeamCheckinStatus(
                registration_id=r.id,
                user_id=r.user_id,
                display_name=r.display_name,
                status=r.status,
                slot_number=r.slot_number,
                waitlist_position=positions.get(r.id),
                checked_in_at=as_utc(r.checked_in_at) if r.checked_in_at else None,
                promoted_via_checkin=r.promoted_via_checkin,
            )
            for r in [*slotted, *waitlist, *disqualified]
        ]

    async def tournaments_needing_finalization(self, now: datetime) -> list[int]:
        """Tournaments the auto-finalize sweep should close.

        Started within the lookback period, auto-finalize on (or no settings
        row yet), not finalized, not completed or cancelled, and with at
        least one live registration.
        """
        lookback = timedelta(hours=get_settings().finalize_lookback_hours)
        has_live_registration = exists().where(
            Registration.tournament_id == Tournament.id,
            Registration.status.in_(LIVE_STATUSES),
        )
        result = await self.db.execute(
            select(Tournament.id)
            .outerjoin(CheckinSettings, CheckinSettings.tournament_id == Tournament.id)
            .where(
                Tournament.start_at <= now,
                Tournament.start_at >= now - lookback,
                Tournament.status.not_in(
                    [TournamentStatus.COMPLETED, TournamentStatus.CANCELLED]
                ),
                or_(
                    CheckinSettings.id.is_(None),
                    and_(
                        CheckinSettings.auto_finalize.is_(True),
                        CheckinSettings.finalized_at.is_(None),
                    ),
                ),
                has_live_registration,
            )
            .order_by(Tournament.start_at, Tournament.id)
        )
        return list(result.scalars().all())

    async def tournaments_due_for_reminder(self, now: datetime) -> list[Tournament]:
        """Published tournaments whose window opened within the reminder lead."""
        lead = timedelta(minutes=get_settings().reminder_lead_minutes)
        result = await self.db.execute(
            select(Tournament, CheckinSettings)
            .outerjoin(CheckinSettings, CheckinSettings.tournament_id == Tournament.id)
            .where(
                Tournament.status == TournamentStatus.PUBLISHED,
                Tournament.start_at > now,
                Tournament.start_at <= now + timedelta(minutes=MAX_WINDOW_MINUTES),
            )
            .order_by(Tournament.start_at, Tournament.id)
        )

        due: list[Tournament] = []
        for tournament, checkin_settings in result.all():
            if checkin_settings is not None and checkin_settings.finalized_at is not None:
                continue
            window = compute_window(
                tournament.start_at,
                resolve_window_minutes(checkin_settings),
                now=now,
            )
            if window.phase is WindowPhase.OPEN and as_utc(now) - lead <= window.opens_at:
                due.append(tournament)
        return due

    async def pending_reminders(self, tournament_id: int) -> list[Registration]:
        result = await self.db.execute(
            select(Registration)
            .where(
                Registration.tournament_id == tournament_id,
                Registration.status.in_(
                    [RegistrationStatus.CONFIRMED, RegistrationStatus.WAITLISTED]
                ),
                Registration.check_in_reminder_sent.is_(False),
            )
            .order_by(Registration.id)
        )
        return list(result.scalars().all())

    async def mark_reminders_sent(self, registration_ids: list[int]) -> None:
        if not registration_ids:
            return
        async with transaction(self.db, "mark_reminders_sent"):
            await self.db.execute(
                update(Registration)
                .where(Registration.id.in_(registration_ids))
                .values(check_in_reminder_sent=True)
                .execution_options(synchronize_session=False)
            )
        logger.info("checkin_reminders_marked", count=len(registration_ids))

    async def send_reminders(self, sender: NotificationSender, *, now: datetime) -> int:
        """Remind registrants that check-in opened.

        Each registration is reminded at most once; a failed delivery
        leaves its flag unset so the next sweep retries it.

        Returns:
            Number of reminders delivered.
        """
        delivered = 0
        for tournament in await self.tournaments_due_for_reminder(now):
            checkin_settings = await load_checkin_settings(self.db, tournament.id)
            window = window_for(tournament, checkin_settings, now=now)
            registrations = await self.pending_reminders(tournament.id)
            if not registrations:
                continue

            notifications = [
                checkin_reminder_notification(
                    r.user_id,
                    tournament.id,
                    tournament.name,
                    window.minutes_until_close,
                    waitlisted=r.status == RegistrationStatus.WAITLISTED,
                )
                for r in registrations
            ]
            report = await dispatch_notifications(sender, notifications)
            failed = set(report.failed_user_ids)
            await self.mark_reminders_sent(
                [r.id for r in registrations if r.user_id not in failed]
            )
            delivered += report.sent
            logger.info(
                "checkin_reminders_sent",
                tournament_id=tournament.id,
                sent=report.sent,
                failed=report.failed,
            )
        return delivered
