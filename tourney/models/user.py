"""User model with the denormalized wallet cache."""

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tourney.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from tourney.models.wallet import BalanceHold, WalletTransaction


class UserStatus(str, Enum):
    """User account status."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class UserRole(str, Enum):
    """Platform role."""

    PLAYER = "player"
    ORGANIZER = "organizer"
    OWNER = "owner"


class User(Base, TimestampMixin):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    username: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(
        String(20),
        default=UserRole.PLAYER.value,
        nullable=False,
    )
    is_host: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=UserStatus.ACTIVE.value,
        nullable=False,
    )

    # Cached balances. The ledgers (wallet_transactions, balance_holds) are
    # authoritative; these are read shortcuts repaired by the reconciler.
    wallet_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Cached sum of completed wallet transactions",
    )
    hold_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Cached sum of active balance holds",
    )

    transactions: Mapped[list["WalletTransaction"]] = relationship(
        "WalletTransaction",
        back_populates="user",
        order_by="desc(WalletTransaction.created_at)",
    )
    holds: Mapped[list["BalanceHold"]] = relationship(
        "BalanceHold",
        back_populates="user",
    )

    def __repr__(self) -> str:
        return f"<User {self.username}>"
