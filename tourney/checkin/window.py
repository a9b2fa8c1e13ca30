"""Check-in window computation.

The window opens ``window_minutes`` before the scheduled start and closes
exactly at the start. Everything here is pure: callers snapshot ``now``
once per operation and pass it in.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum


class WindowPhase(str, Enum):
    """Where ``now`` falls relative to the window."""

    PENDING = "pending"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class CheckinWindow:
    """Snapshot of a tournament's check-in window at a given instant."""

    is_open: bool
    phase: WindowPhase
    opens_at: datetime
    closes_at: datetime
    minutes_until_open: int
    minutes_until_close: int
    window_minutes: int

    def to_dict(self) -> dict:
        return {
            "is_open": self.is_open,
            "phase": self.phase.value,
            "opens_at": self.opens_at.isoformat(),
            "closes_at": self.closes_at.isoformat(),
            "minutes_until_open": self.minutes_until_open,
            "minutes_until_close": self.minutes_until_close,
            "window_minutes": self.window_minutes,
        }


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _whole_minutes(delta: timedelta) -> int:
    seconds = delta.total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // 60)


def compute_window(
    start_at: datetime,
    window_minutes: int,
    *,
    now: datetime,
) -> CheckinWindow:
    """Compute the check-in window for a tournament.

    Open iff ``opens_at <= now < closes_at``. Minute counters are floored
    and never negative.

    Raises:
        ValueError: If ``window_minutes`` is negative.
    """
    if window_minutes < 0:
        raise ValueError(f"window_minutes must be >= 0, got {window_minutes}")

    closes_at = as_utc(start_at)
    opens_at = closes_at - timedelta(minutes=window_minutes)
    now = as_utc(now)

    is_open = opens_at <= now < closes_at
    if is_open:
        phase = WindowPhase.OPEN
    elif now < opens_at:
        phase = WindowPhase.PENDING
    else:
        phase = WindowPhase.CLOSED

    minutes_until_open = _whole_minutes(opens_at - now)
    minutes_until_close = _whole_minutes(closes_at - now)

    return CheckinWindow(
        is_open=is_open,
        phase=phase,
        opens_at=opens_at,
        closes_at=closes_at,
        minutes_until_open=minutes_until_open,
        minutes_until_close=minutes_until_close,
        window_minutes=window_minutes,
    )
