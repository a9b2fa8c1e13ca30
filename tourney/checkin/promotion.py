"""Waitlist promotion planning.

Strict FIFO by signup time (ties broken by registration id), freed slots
filled lowest first, never more promotions than the remaining capacity.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from tourney.checkin.window import as_utc
from tourney.models.tournament import Registration


@dataclass(frozen=True)
class SlotAssignment:
    registration: Registration
    slot_number: int


def waitlist_key(registration: Registration) -> tuple:
    return (as_utc(registration.registered_at), registration.id)


def order_waitlist(registrations: Iterable[Registration]) -> list[Registration]:
    """Return waitlisted registrations in promotion order."""
    return sorted(registrations, key=waitlist_key)


def plan_promotions(
    freed_slots: Sequence[int],
    waitlist: Sequence[Registration],
    *,
    capacity: int,
) -> list[SlotAssignment]:
    """Pair freed slots (ascending) with the waitlist in FIFO order.

    Args:
        freed_slots: Slot numbers vacated by no-shows
        waitlist: Waitlisted registrations, any order
        capacity: Seats left under ``max_teams``

    Returns:
        One assignment per promoted registration. Empty when nothing was
        freed, nobody is waiting, or there is no capacity left.
    """
    limit = min(len(freed_slots), len(waitlist), max(capacity, 0))
    if limit == 0:
        return []

    slots = sorted(freed_slots)[:limit]
    queue = order_waitlist(waitlist)[:limit]
    return [
        SlotAssignment(registration=registration, slot_number=slot)
        for registration, slot in zip(queue, slots)
    ]
