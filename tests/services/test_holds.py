"""Tests for HoldExpiryService."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tourney.checkin.window import as_utc
from tourney.models import BalanceHold, HoldStatus, User
from tourney.services.holds import EXPIRED_SUFFIX, HoldExpiryService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestExpireHolds:
    @pytest.mark.asyncio
    async def test_expired_hold_is_released(self, db_session, make_user, make_hold):
        user = await make_user(hold_balance=Decimal("30.00"))
        hold = await make_hold(
            user, "30.00", expires_at=NOW - timedelta(minutes=1), description="Waitlist fee"
        )

        report = await HoldExpiryService(db_session).expire_holds(NOW)

        assert report.expired_ids == [hold.id]
        assert report.total_released == Decimal("30.00")
        stored = await db_session.get(BalanceHold, hold.id, populate_existing=True)
        assert stored.status is HoldStatus.RELEASED
        assert as_utc(stored.released_at) == NOW
        assert stored.description == "Waitlist fee" + EXPIRED_SUFFIX
        owner = await db_session.get(User, user.id, populate_existing=True)
        assert owner.hold_balance == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_unexpired_and_open_ended_holds_stay(self, db_session, make_user, make_hold):
        user = await make_user(hold_balance=Decimal("15.00"))
        future = await make_hold(user, "10.00", expires_at=NOW + timedelta(hours=1))
        open_ended = await make_hold(user, "5.00")

        report = await HoldExpiryService(db_session).expire_holds(NOW)

        assert report.expired_count == 0
        for hold_id in (future.id, open_ended.id):
            stored = await db_session.get(BalanceHold, hold_id, populate_existing=True)
            assert stored.status is HoldStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_released_holds_are_ignored(self, db_session, make_user, make_hold):
        user = await make_user()
        await make_hold(user, "10.00", status=HoldStatus.RELEASED, expires_at=NOW - timedelta(days=1))

        report = await HoldExpiryService(db_session).expire_holds(NOW)

        assert report.expired_ids == []

    @pytest.mark.asyncio
    async def test_hold_balance_never_negative(self, db_session, make_user, make_hold):
        user = await make_user(hold_balance=Decimal("4.00"))
        await make_hold(user, "10.00", expires_at=NOW - timedelta(minutes=5))

        await HoldExpiryService(db_session).expire_holds(NOW)

        owner = await db_session.get(User, user.id, populate_existing=True)
        assert owner.hold_balance == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_several_holds_of_one_user(self, db_session, make_user, make_hold):
        user = await make_user(hold_balance=Decimal("50.00"))
        await make_hold(user, "10.00", expires_at=NOW - timedelta(minutes=5))
        await make_hold(user, "15.00", expires_at=NOW - timedelta(minutes=1))
        await make_hold(user, "25.00")

        report = await HoldExpiryService(db_session).expire_holds(NOW)

        assert report.expired_count == 2
        assert report.total_released == Decimal("25.00")
        owner = await db_session.get(User, user.id, populate_existing=True)
        assert owner.hold_balance == Decimal("25.00")
