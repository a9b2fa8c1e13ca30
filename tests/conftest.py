"""Shared test fixtures.

Every test gets its own SQLite file database with the full schema. Rows
are built through the ``make_*`` factory fixtures; timestamps are always
explicit UTC so ordering never depends on the wall clock.
"""

import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from uuid import uuid4

# Settings are read at import time by the application modules
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'tourney-import.db')}",
)
os.environ.setdefault("JWT_SECRET_KEY", "tourney-test-signing-key-not-for-production-use")
os.environ.setdefault("INTERNAL_API_KEY", "scheduler-test-api-key")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("APP_DEBUG", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tourney.models import (
    BalanceHold,
    Base,
    CheckinSettings,
    HoldStatus,
    HoldType,
    Registration,
    RegistrationStatus,
    Tournament,
    TournamentStatus,
    TransactionStatus,
    TransactionType,
    User,
    UserRole,
    WalletTransaction,
)
from tourney.services.notification import Notification

# Scheduled start used by the clock-driven tests
START = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """File-backed SQLite engine with fresh tables for each test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
        future=True,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the application's."""
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_user(db_session):
    """Create and commit a user."""

    async def _make(
        username: str | None = None,
        role: UserRole = UserRole.PLAYER,
        wallet_balance: Decimal = Decimal("0.00"),
        hold_balance: Decimal = Decimal("0.00"),
        **kwargs,
    ) -> User:
        user = User(
            id=str(uuid4()),
            username=username or f"user_{uuid4().hex[:8]}",
            role=role.value,
            wallet_balance=wallet_balance,
            hold_balance=hold_balance,
            **kwargs,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def make_tournament(db_session, make_user):
    """Create and commit a tournament, with a check-in settings row if asked."""

    async def _make(
        start_at: datetime = START,
        max_teams: int = 4,
        host: User | None = None,
        name: str = "Spring Cup",
        status: TournamentStatus = TournamentStatus.PUBLISHED,
        window_minutes: int | None = None,
        auto_finalize: bool = True,
        finalized_at: datetime | None = None,
        with_settings: bool = True,
    ) -> Tournament:
        if host is None:
            host = await make_user(role=UserRole.ORGANIZER)
        tournament = Tournament(
            name=name,
            host_id=host.id,
            start_at=start_at,
            max_teams=max_teams,
            status=status,
        )
        db_session.add(tournament)
        await db_session.flush()
        if with_settings:
            db_session.add(
                CheckinSettings(
                    tournament_id=tournament.id,
                    checkin_window_minutes=window_minutes,
                    auto_finalize=auto_finalize,
                    finalized_at=finalized_at,
                )
            )
        await db_session.commit()
        return tournament

    return _make


@pytest.fixture
def make_registration(db_session, make_user):
    """Create and commit a registration.

    Without an explicit ``registered_at`` each call is one second after the
    previous one, so creation order is signup order.
    """
    sequence = count()

    async def _make(
        tournament: Tournament,
        user: User | None = None,
        status: RegistrationStatus = RegistrationStatus.CONFIRMED,
        slot_number: int | None = None,
        registered_at: datetime | None = None,
        checked_in_at: datetime | None = None,
        team_name: str | None = None,
    ) -> Registration:
        if user is None:
            user = await make_user()
        if registered_at is None:
            registered_at = START - timedelta(days=7) + timedelta(seconds=next(sequence))
        registration = Registration(
            tournament_id=tournament.id,
            user_id=user.id,
            status=status,
            slot_number=slot_number,
            registered_at=registered_at,
            checked_in_at=checked_in_at,
            team_name=team_name,
        )
        db_session.add(registration)
        await db_session.commit()
        return registration

    return _make


@pytest.fixture
def make_transaction(db_session):
    async def _make(
        user: User,
        amount: str,
        tx_type: TransactionType = TransactionType.DEPOSIT,
        status: TransactionStatus = TransactionStatus.COMPLETED,
    ) -> WalletTransaction:
        tx = WalletTransaction(
            user_id=user.id,
            amount=Decimal(amount),
            tx_type=tx_type,
            status=status,
        )
        db_session.add(tx)
        await db_session.commit()
        return tx

    return _make


@pytest.fixture
def make_hold(db_session):
    async def _make(
        user: User,
        amount: str,
        status: HoldStatus = HoldStatus.ACTIVE,
        expires_at: datetime | None = None,
        description: str | None = None,
        hold_type: HoldType = HoldType.WAITLIST_ENTRY_FEE,
    ) -> BalanceHold:
        hold = BalanceHold(
            user_id=user.id,
            amount=Decimal(amount),
            hold_type=hold_type,
            status=status,
            expires_at=expires_at,
            description=description,
        )
        db_session.add(hold)
        await db_session.commit()
        return hold

    return _make


# =============================================================================
# Notification Fixtures
# =============================================================================


class RecordingSender:
    """Notification sender that records instead of delivering.

    User ids listed in ``fail_for`` raise on send.
    """

    def __init__(self, fail_for: set[str] | None = None):
        self.sent: list[Notification] = []
        self.fail_for = fail_for or set()

    async def send(self, notification: Notification) -> None:
        if notification.user_id in self.fail_for:
            raise ConnectionError("redis unavailable")
        self.sent.append(notification)

    def for_user(self, user_id: str) -> list[Notification]:
        return [n for n in self.sent if n.user_id == user_id]


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def make_sender():
    """The sender class, for tests that need failing recipients."""
    return RecordingSender
