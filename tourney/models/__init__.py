"""Database models."""

from tourney.models.base import Base, TimestampMixin
from tourney.models.tournament import (
    OCCUPYING_STATUSES,
    CheckinSettings,
    Registration,
    RegistrationStatus,
    Tournament,
    TournamentStatus,
)
from tourney.models.user import User, UserRole, UserStatus
from tourney.models.wallet import (
    BalanceHold,
    HoldStatus,
    HoldType,
    TransactionStatus,
    TransactionType,
    WalletTransaction,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # User
    "User",
    "UserRole",
    "UserStatus",
    # Tournament & check-in
    "Tournament",
    "TournamentStatus",
    "Registration",
    "RegistrationStatus",
    "OCCUPYING_STATUSES",
    "CheckinSettings",
    # Wallet ledger
    "WalletTransaction",
    "TransactionType",
    "TransactionStatus",
    "BalanceHold",
    "HoldType",
    "HoldStatus",
]
