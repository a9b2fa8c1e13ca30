"""Wallet ledger models.

- WalletTransaction: append-only money movements (signed amounts)
- BalanceHold: funds earmarked but not yet debited or credited

Both are immutable facts. The cached ``users.wallet_balance`` and
``users.hold_balance`` are derived from them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tourney.models.base import Base, TimestampMixin, enum_values
from tourney.models.user import User


class TransactionType(str, Enum):
    """Transaction types for wallet operations."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    ENTRY_FEE = "entry_fee"
    PRIZE = "prize"
    REFUND = "refund"
    ADMIN_ADJUST = "admin_adjust"


class TransactionStatus(str, Enum):
    """Transaction status. Only completed rows count toward the balance."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class HoldType(str, Enum):
    """Why funds are held."""

    WAITLIST_ENTRY_FEE = "waitlist_entry_fee"
    PENDING_WITHDRAWAL = "pending_withdrawal"
    DISPUTE = "dispute"


class HoldStatus(str, Enum):
    """Hold status. Only active holds count toward the hold balance."""

    ACTIVE = "active"
    RELEASED = "released"
    CONSUMED = "consumed"


class WalletTransaction(Base):
    """Wallet transaction record (+credit / -debit)."""

    __tablename__ = "wallet_transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Signed amount (+credit/-debit)",
    )
    tx_type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, name="transaction_type", values_callable=enum_values),
        nullable=False,
    )
    status: Mapped[TransactionStatus] = mapped_column(
        SQLEnum(TransactionStatus, name="transaction_status", values_callable=enum_values),
        default=TransactionStatus.COMPLETED,
        nullable=False,
        index=True,
    )
    tournament_id: Mapped[int | None] = mapped_column(
        ForeignKey("tournaments.id", ondelete="SET NULL"),
        nullable=True,
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    user: Mapped[User] = relationship("User", back_populates="transactions")

    __table_args__ = (
        Index("ix_wallet_tx_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<WalletTransaction {self.id} user={self.user_id[:8]}... "
            f"amount={self.amount} status={self.status.value}>"
        )


class BalanceHold(Base, TimestampMixin):
    """Funds earmarked for a pending operation."""

    __tablename__ = "balance_holds"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    hold_type: Mapped[HoldType] = mapped_column(
        SQLEnum(HoldType, name="hold_type", values_callable=enum_values),
        nullable=False,
    )
    status: Mapped[HoldStatus] = mapped_column(
        SQLEnum(HoldStatus, name="hold_status", values_callable=enum_values),
        default=HoldStatus.ACTIVE,
        nullable=False,
    )
    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Active holds past this time are released by the expiry job",
    )
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("wallet_transactions.id", ondelete="SET NULL"),
        nullable=True,
    )

    user: Mapped[User] = relationship("User", back_populates="holds")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_balance_hold_amount_positive"),
        Index("ix_balance_hold_user_status", "user_id", "status"),
        Index("ix_balance_hold_reference", "reference_type", "reference_id"),
    )

    def __repr__(self) -> str:
        return f"<BalanceHold {self.id} user={self.user_id[:8]}... amount={self.amount} {self.status.value}>"
