"""Service error taxonomy.

Only failures are exceptions here. Expected conflicts (already checked in,
already finalized, window state mismatch) are returned as typed results by
the check-in engine; see ``tourney.checkin.results``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Validation errors
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    MISSING_FIELD = "MISSING_FIELD"

    # Lookup errors
    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"


class ServiceError(Exception):
    """Base exception for service failures.

    Attributes:
        code: Error code for programmatic handling
        message: User-facing error message
        details: Additional error details
        http_status: Status code used by the API layer
        recoverable: Whether retrying the same call may succeed
    """

    http_status: int = 500

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ):
        self.code = code if isinstance(code, str) else code.value
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ServiceError):
    """Missing or malformed input, reported per field."""

    http_status = 400

    def __init__(
        self,
        message: str = "Invalid request",
        fields: dict[str, str] | None = None,
    ):
        super().__init__(
            code=ErrorCode.INVALID_PAYLOAD,
            message=message,
            details={"fields": fields or {}},
        )


class AuthorizationError(ServiceError):
    """Role or ownership mismatch.

    The message never says whether the target resource exists.
    """

    http_status = 403

    def __init__(self, message: str = "Not allowed to perform this action"):
        super().__init__(code=ErrorCode.FORBIDDEN, message=message)


class AuthenticationError(ServiceError):
    """Missing or invalid credentials."""

    http_status = 401

    def __init__(
        self,
        code: ErrorCode | str = ErrorCode.UNAUTHORIZED,
        message: str = "Authentication required",
    ):
        super().__init__(code=code, message=message)


class NotFoundError(ServiceError):
    """Raised when a tournament, registration or user is absent."""

    http_status = 404


class TournamentNotFoundError(NotFoundError):
    """Raised when a tournament is not found."""

    def __init__(self, tournament_id: int):
        super().__init__(
            code=ErrorCode.TOURNAMENT_NOT_FOUND,
            message=f"Tournament not found: {tournament_id}",
            details={"tournamentId": tournament_id},
        )


class UserNotFoundError(NotFoundError):
    """Raised when a user is not found."""

    def __init__(self, user_id: str):
        super().__init__(
            code=ErrorCode.USER_NOT_FOUND,
            message=f"User not found: {user_id}",
            details={"userId": user_id},
        )


class TransientError(ServiceError):
    """Database or connectivity failure; safe to retry.

    End users only see a generic message. The cause is chained on the
    exception and logged where it is handled.
    """

    http_status = 503

    def __init__(self, operation: str):
        super().__init__(
            code=ErrorCode.SERVICE_UNAVAILABLE,
            message="Service temporarily unavailable, please retry",
            details={"operation": operation},
            recoverable=True,
        )
        self.operation = operation


class ConflictError(ServiceError):
    """Request conflicts with the current state (window closed, finalized)."""

    http_status = 409


class RejectedError(ServiceError):
    """Well-formed request the caller is not eligible to make."""

    http_status = 400
