"""Tournament check-in engine."""

from tourney.checkin.eligibility import EligibilityGate, evaluate_eligibility
from tourney.checkin.finalization import FinalizationEngine, finalization_state
from tourney.checkin.promotion import SlotAssignment, order_waitlist, plan_promotions
from tourney.checkin.results import (
    CheckinOutcome,
    CheckinResult,
    DisqualifiedTeam,
    Eligibility,
    EligibilityReason,
    FinalizationOutcome,
    FinalizationResult,
    FinalizationState,
    PromotedTeam,
)
from tourney.checkin.store import CheckinStore
from tourney.checkin.window import (
    CheckinWindow,
    WindowPhase,
    as_utc,
    compute_window,
    utcnow,
)

__all__ = [
    "CheckinWindow",
    "WindowPhase",
    "compute_window",
    "utcnow",
    "as_utc",
    "EligibilityGate",
    "evaluate_eligibility",
    "Eligibility",
    "EligibilityReason",
    "CheckinStore",
    "CheckinOutcome",
    "CheckinResult",
    "FinalizationEngine",
    "finalization_state",
    "FinalizationState",
    "FinalizationOutcome",
    "FinalizationResult",
    "PromotedTeam",
    "DisqualifiedTeam",
    "SlotAssignment",
    "order_waitlist",
    "plan_promotions",
]
