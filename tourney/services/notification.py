"""Player notifications for check-in events.

Delivery is best effort. Notifications go out after the database commit,
each recipient independently: a failed send is logged and counted, never
raised into the caller.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

from redis.asyncio import Redis

from tourney.checkin.results import FinalizationResult
from tourney.config import get_settings
from tourney.utils.json_utils import json_dumps
from tourney.utils.redis_client import get_redis_context

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"


class NotificationCategory(str, Enum):
    TOURNAMENT = "tournament"
    WALLET = "wallet"


@dataclass(frozen=True)
class Notification:
    """A message for one user."""

    user_id: str
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    category: NotificationCategory = NotificationCategory.TOURNAMENT
    tournament_id: int | None = None
    tournament_name: str | None = None
    action_url: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type.value,
            "category": self.category.value,
            "tournamentId": self.tournament_id,
            "tournamentName": self.tournament_name,
            "actionUrl": self.action_url,
            "createdAt": self.created_at.isoformat(),
        }


class NotificationSender(Protocol):
    async def send(self, notification: Notification) -> None:
        ...


class RedisNotificationSender:
    """Stores each notification in the user's inbox list and publishes it.

    Connected clients subscribe to ``notifications:channel:{user_id}``.
    """

    INBOX_KEY = "notifications:user:{user_id}"
    CHANNEL = "notifications:channel:{user_id}"
    MAX_INBOX = 100
    INBOX_TTL = 86400 * 7  # 7 days

    def __init__(self, redis: Redis | None = None):
        self.redis = redis

    async def send(self, notification: Notification) -> None:
        if self.redis is None:
            async with get_redis_context() as redis:
                await self._deliver(redis, notification)
        else:
            await self._deliver(self.redis, notification)

    async def _deliver(self, redis: Redis, notification: Notification) -> None:
        payload = json_dumps(notification.to_dict())
        inbox = self.INBOX_KEY.format(user_id=notification.user_id)

        await redis.lpush(inbox, payload)
        await redis.ltrim(inbox, 0, self.MAX_INBOX - 1)
        await redis.expire(inbox, self.INBOX_TTL)
        await redis.publish(self.CHANNEL.format(user_id=notification.user_id), payload)


@asynccontextmanager
async def standalone_sender(redis_url: str | None = None) -> AsyncGenerator[RedisNotificationSender, None]:
    """Sender with its own Redis connection, closed on exit (Celery tasks, scripts)."""
    redis = Redis.from_url(redis_url or get_settings().redis_url, decode_responses=True)
    try:
        yield RedisNotificationSender(redis)
    finally:
        await redis.aclose()


@dataclass
class DispatchReport:
    sent: int = 0
    failed: int = 0
    failed_user_ids: list[str] = field(default_factory=list)


async def dispatch_notifications(
    sender: NotificationSender,
    notifications: list[Notification],
) -> DispatchReport:
    """Send every notification concurrently; one failure never affects others."""
    report = DispatchReport()
    if not notifications:
        return report

    results = await asyncio.gather(
        *(sender.send(n) for n in notifications),
        return_exceptions=True,
    )
    for notification, outcome in zip(notifications, results):
        # Includes CancelledError, which is not an Exception subclass
        if isinstance(outcome, BaseException):
            report.failed += 1
            report.failed_user_ids.append(notification.user_id)
            logger.warning(
                f"Notification to {notification.user_id} failed: "
                f"{type(outcome).__name__}: {outcome}"
            )
        else:
            report.sent += 1
    return report


def _tournament_url(tournament_id: int) -> str:
    return f"/tournaments/{tournament_id}"


def promotion_notification(
    user_id: str,
    tournament_id: int,
    tournament_name: str,
    slot_number: int,
) -> Notification:
    return Notification(
        user_id=user_id,
        title="You're In!",
        message=(
            f'Great news! Your team has been promoted from the waitlist to slot '
            f'#{slot_number} in "{tournament_name}".'
        ),
        type=NotificationType.SUCCESS,
        tournament_id=tournament_id,
        tournament_name=tournament_name,
        action_url=_tournament_url(tournament_id),
    )


def disqualification_notification(
    user_id: str,
    tournament_id: int,
    tournament_name: str,
) -> Notification:
    return Notification(
        user_id=user_id,
        title="Missed Check-in",
        message=(
            f'Your team did not check in for "{tournament_name}" before it '
            f"started, so your slot was given to the waitlist."
        ),
        type=NotificationType.WARNING,
        tournament_id=tournament_id,
        tournament_name=tournament_name,
        action_url=_tournament_url(tournament_id),
    )


def checkin_confirmation_notification(
    user_id: str,
    tournament_id: int,
    tournament_name: str,
    slot_number: int | None,
) -> Notification:
    slot = f" (slot #{slot_number})" if slot_number is not None else ""
    return Notification(
        user_id=user_id,
        title="Checked In",
        message=f'You are checked in for "{tournament_name}"{slot}. Good luck!',
        type=NotificationType.SUCCESS,
        tournament_id=tournament_id,
        tournament_name=tournament_name,
        action_url=_tournament_url(tournament_id),
    )


def checkin_reminder_notification(
    user_id: str,
    tournament_id: int,
    tournament_name: str,
    minutes_until_close: int,
    waitlisted: bool = False,
) -> Notification:
    if waitlisted:
        message = (
            f'Check-in for "{tournament_name}" is open. You are on the '
            f"waitlist and will be promoted if a registered team misses check-in."
        )
    else:
        message = (
            f'Check-in for "{tournament_name}" is open. Check in within '
            f"{minutes_until_close} minutes or your slot goes to the waitlist."
        )
    return Notification(
        user_id=user_id,
        title="Check-in is Open",
        message=message,
        type=NotificationType.INFO,
        tournament_id=tournament_id,
        tournament_name=tournament_name,
        action_url=_tournament_url(tournament_id),
    )


def finalization_notifications(result: FinalizationResult) -> list[Notification]:
    """Messages for every promoted and disqualified team of a finalization."""
    if not result.applied:
        return []

    notifications = [
        promotion_notification(
            team.user_id, result.tournament_id, result.tournament_name, team.slot_number
        )
        for team in result.promoted
    ]
    notifications.extend(
        disqualification_notification(
            team.user_id, result.tournament_id, result.tournament_name
        )
        for team in result.disqualified
    )
    return notifications
