"""Tournament, registration and check-in settings models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tourney.models.base import Base, TimestampMixin, enum_values
from tourney.models.user import User


class TournamentStatus(str, Enum):
    """Tournament publication status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RegistrationStatus(str, Enum):
    """Registration lifecycle.

    confirmed -> checked_in            (check-in)
    confirmed -> disqualified          (no-show at finalization)
    waitlisted -> confirmed + slot     (promotion at finalization)
    """

    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    CHECKED_IN = "checked_in"
    DISQUALIFIED = "disqualified"


# Registrations that hold a slot and count toward current_teams
OCCUPYING_STATUSES = (RegistrationStatus.CONFIRMED, RegistrationStatus.CHECKED_IN)


class Tournament(Base, TimestampMixin):
    """Tournament with a scheduled start and a team capacity."""

    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    host_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    start_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        comment="Scheduled start; the check-in window closes here",
    )
    max_teams: Mapped[int] = mapped_column(Integer, nullable=False)
    current_teams: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[TournamentStatus] = mapped_column(
        SQLEnum(
            TournamentStatus,
            name="tournament_status",
            values_callable=enum_values,
        ),
        default=TournamentStatus.PUBLISHED,
        nullable=False,
    )

    host: Mapped[User] = relationship("User", lazy="raise")
    checkin_settings: Mapped["CheckinSettings | None"] = relationship(
        "CheckinSettings",
        back_populates="tournament",
        uselist=False,
        lazy="raise",
    )

    __table_args__ = (
        CheckConstraint("max_teams > 0", name="ck_tournament_max_teams_positive"),
        CheckConstraint("current_teams >= 0", name="ck_tournament_current_teams_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Tournament {self.id} {self.name!r} {self.current_teams}/{self.max_teams}>"


class Registration(Base):
    """A user's (or team's) entry in a tournament."""

    __tablename__ = "tournament_registrations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    team_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Null while waitlisted and after disqualification
    slot_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[RegistrationStatus] = mapped_column(
        SQLEnum(
            RegistrationStatus,
            name="registration_status",
            values_callable=enum_values,
        ),
        nullable=False,
    )
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Signup time; waitlist promotion order",
    )
    checked_in_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    check_in_reminder_sent: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Finalization audit trail
    promoted_via_checkin: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Got a slot because a registered team missed check-in",
    )
    original_slot_holder_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Registration that forfeited the slot",
    )
    promoted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    disqualified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    user: Mapped[User] = relationship("User", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="uq_registration_tournament_user"),
        UniqueConstraint("tournament_id", "slot_number", name="uq_registration_tournament_slot"),
        Index("ix_registration_tournament_status", "tournament_id", "status"),
        Index("ix_registration_waitlist_order", "tournament_id", "registered_at", "id"),
    )

    @property
    def display_name(self) -> str:
        """Team name, falling back to the username."""
        if self.team_name:
            return self.team_name
        return self.user.username if self.user else self.user_id

    def __repr__(self) -> str:
        return (
            f"<Registration {self.id} t={self.tournament_id} "
            f"status={self.status.value} slot={self.slot_number}>"
        )


class CheckinSettings(Base, TimestampMixin):
    """Per-tournament check-in configuration and the finalization marker."""

    __tablename__ = "tournament_checkin_settings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    checkin_window_minutes: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Minutes before start when check-in opens; null uses the configured default",
    )
    auto_finalize: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    # Set exactly once. Finalization never runs again after this is set.
    finalized_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    tournament: Mapped[Tournament] = relationship(
        "Tournament",
        back_populates="checkin_settings",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<CheckinSettings t={self.tournament_id} finalized_at={self.finalized_at}>"
