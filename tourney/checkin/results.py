"""Typed outcomes of the check-in engine.

Expected conflicts are values, not exceptions: the API layer maps them to
status codes and the schedulers simply log them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from tourney.checkin.window import CheckinWindow
from tourney.models.tournament import Registration


class EligibilityReason(str, Enum):
    """Why a check-in attempt was refused."""

    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"
    ALREADY_FINALIZED = "ALREADY_FINALIZED"
    WINDOW_NOT_OPEN = "WINDOW_NOT_OPEN"
    WINDOW_CLOSED = "WINDOW_CLOSED"
    NOT_REGISTERED = "NOT_REGISTERED"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    WAITLISTED = "WAITLISTED"
    DISQUALIFIED = "DISQUALIFIED"


REASON_MESSAGES: dict[EligibilityReason, str] = {
    EligibilityReason.TOURNAMENT_NOT_FOUND: "Tournament not found",
    EligibilityReason.ALREADY_FINALIZED: "Check-in has been finalized",
    EligibilityReason.WINDOW_NOT_OPEN: "Check-in is not open yet",
    EligibilityReason.WINDOW_CLOSED: "Check-in window has closed",
    EligibilityReason.NOT_REGISTERED: "You are not registered for this tournament",
    EligibilityReason.ALREADY_CHECKED_IN: "You have already checked in",
    EligibilityReason.WAITLISTED: "Waitlisted teams are promoted at finalization and cannot check in",
    EligibilityReason.DISQUALIFIED: "Registration was disqualified",
}


@dataclass(frozen=True)
class Eligibility:
    """Answer to "may this user check in now"."""

    can_check_in: bool
    reason: EligibilityReason | None = None
    registration: Registration | None = None
    window: CheckinWindow | None = None

    @property
    def message(self) -> str:
        if self.reason is None:
            return "Check-in is open"
        message = REASON_MESSAGES[self.reason]
        if (
            self.reason is EligibilityReason.WINDOW_NOT_OPEN
            and self.window is not None
            and self.window.minutes_until_open > 0
        ):
            message = f"Check-in opens in {self.window.minutes_until_open} minutes"
        return message


class CheckinOutcome(str, Enum):
    CHECKED_IN = "checked_in"
    ALREADY_CHECKED_IN = "already_checked_in"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CheckinResult:
    """Result of a check-in write."""

    outcome: CheckinOutcome
    registration: Registration | None = None
    reason: EligibilityReason | None = None
    window: CheckinWindow | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is not CheckinOutcome.REJECTED


class FinalizationState(str, Enum):
    """Per-tournament finalization lifecycle."""

    OPEN = "open"
    CLOSED_PENDING = "closed_pending"
    FINALIZED = "finalized"


class FinalizationOutcome(str, Enum):
    FINALIZED = "finalized"
    ALREADY_FINALIZED = "already_finalized"
    WINDOW_STILL_OPEN = "window_still_open"
    WINDOW_NOT_OPEN = "window_not_open"


@dataclass(frozen=True)
class PromotedTeam:
    registration_id: int
    user_id: str
    display_name: str
    slot_number: int
    original_slot_holder_id: int | None


@dataclass(frozen=True)
class DisqualifiedTeam:
    registration_id: int
    user_id: str
    display_name: str
    freed_slot: int | None


@dataclass(frozen=True)
class FinalizationResult:
    """What finalization did (or why it did nothing)."""

    outcome: FinalizationOutcome
    tournament_id: int
    tournament_name: str = ""
    promoted: list[PromotedTeam] = field(default_factory=list)
    disqualified: list[DisqualifiedTeam] = field(default_factory=list)
    finalized_at: datetime | None = None

    @property
    def applied(self) -> bool:
        return self.outcome is FinalizationOutcome.FINALIZED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "tournament_id": self.tournament_id,
            "promoted_count": len(self.promoted),
            "disqualified_count": len(self.disqualified),
            "promoted": [
                {
                    "registration_id": p.registration_id,
                    "user_id": p.user_id,
                    "display_name": p.display_name,
                    "slot_number": p.slot_number,
                }
                for p in self.promoted
            ],
            "disqualified": [
                {
                    "registration_id": d.registration_id,
                    "user_id": d.user_id,
                    "display_name": d.display_name,
                }
                for d in self.disqualified
            ],
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
        }
