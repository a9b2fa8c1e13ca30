"""API dependencies for authentication and common utilities."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.models.user import User, UserRole, UserStatus
from tourney.services.notification import NotificationSender, RedisNotificationSender
from tourney.utils.db import get_db
from tourney.utils.errors import AuthenticationError, AuthorizationError
from tourney.utils.security import (
    TokenError,
    verify_access_token,
    verify_internal_api_key,
)

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


def is_organizer(role: str | None) -> bool:
    """Organizers and owners may manage tournaments."""
    return role in (UserRole.ORGANIZER.value, UserRole.OWNER.value)


def is_owner(role: str | None) -> bool:
    return role == UserRole.OWNER.value


async def _user_from_token(db: AsyncSession, token: str) -> User:
    try:
        payload = verify_access_token(token)
    except TokenError as e:
        raise AuthenticationError(e.code, e.message)

    if not payload or not payload.get("sub"):
        raise AuthenticationError("AUTH_INVALID_TOKEN", "Invalid or expired token")

    user = await db.get(User, payload["sub"])
    if user is None:
        raise AuthenticationError("AUTH_USER_NOT_FOUND", "User not found")
    if user.status != UserStatus.ACTIVE.value:
        raise AuthorizationError(f"Account is {user.status}")
    return user


async def get_current_user_optional(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User | None:
    """Current user if a valid bearer token was sent, else None."""
    if not credentials:
        return None
    try:
        return await _user_from_token(db, credentials.credentials)
    except (AuthenticationError, AuthorizationError):
        return None


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Current user (required auth).

    Raises:
        AuthenticationError: Missing, invalid or expired token
        AuthorizationError: Account is not active
    """
    if not credentials:
        raise AuthenticationError("AUTH_REQUIRED", "Authentication required")
    return await _user_from_token(db, credentials.credentials)


@dataclass(frozen=True)
class Caller:
    """Who is calling: a signed-in user or the scheduler."""

    user: User | None
    is_system: bool = False

    @property
    def is_owner(self) -> bool:
        return self.is_system or (self.user is not None and is_owner(self.user.role))


async def get_caller(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
    x_api_key: Annotated[str | None, Header()] = None,
) -> Caller:
    """Resolve a user token or the internal API key.

    Raises:
        AuthenticationError: Wrong API key, or no credentials at all
    """
    if x_api_key is not None:
        if not verify_internal_api_key(x_api_key):
            raise AuthenticationError("AUTH_INVALID_API_KEY", "Invalid API key")
        return Caller(user=None, is_system=True)

    if not credentials:
        raise AuthenticationError("AUTH_REQUIRED", "Authentication required")
    return Caller(user=await _user_from_token(db, credentials.credentials))


async def require_owner(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    if not is_owner(user.role):
        raise AuthorizationError()
    return user


def get_notification_sender() -> NotificationSender:
    return RedisNotificationSender()


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
OptionalUser = Annotated[User | None, Depends(get_current_user_optional)]
OwnerUser = Annotated[User, Depends(require_owner)]
CurrentCaller = Annotated[Caller, Depends(get_caller)]
Sender = Annotated[NotificationSender, Depends(get_notification_sender)]
