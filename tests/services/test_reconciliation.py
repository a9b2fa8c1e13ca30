"""Tests for LedgerReconciler."""

from decimal import Decimal

import pytest

from tourney.models import HoldStatus, TransactionStatus, TransactionType, User
from tourney.services.reconciliation import BalanceReport, LedgerReconciler
from tourney.utils.errors import TransientError, UserNotFoundError


async def seed_ledger(make_transaction, user):
    """+500, -200, +50 completed and +1000 pending: balance 350."""
    await make_transaction(user, "500.00")
    await make_transaction(user, "-200.00", tx_type=TransactionType.ENTRY_FEE)
    await make_transaction(user, "50.00", tx_type=TransactionType.PRIZE)
    await make_transaction(user, "1000.00", status=TransactionStatus.PENDING)


class TestBalanceReport:
    def test_drift_within_epsilon_is_not_a_discrepancy(self):
        report = BalanceReport(
            user_id="u1",
            username="alice",
            current_balance=Decimal("100.00"),
            calculated_balance=Decimal("100.01"),
            current_hold=Decimal("0.00"),
            calculated_hold=Decimal("0.00"),
        )

        assert report.balance_drift == Decimal("0.01")
        assert not report.has_discrepancy(Decimal("0.01"))
        assert report.has_discrepancy(Decimal("0.001"))

    def test_to_dict_serializes_decimals_as_strings(self):
        report = BalanceReport("u1", "alice", Decimal("1.00"), Decimal("3.50"), Decimal("0"), Decimal("0"))

        data = report.to_dict()

        assert data["calculated_balance"] == "3.50"
        assert data["balance_drift"] == "2.50"


class TestCalculate:
    @pytest.mark.asyncio
    async def test_balance_counts_completed_only(self, db_session, make_user, make_transaction):
        user = await make_user()
        await seed_ledger(make_transaction, user)

        balance = await LedgerReconciler(db_session).calculate_balance(user.id)

        assert balance == Decimal("350.00")

    @pytest.mark.asyncio
    async def test_empty_ledger_is_zero(self, db_session, make_user):
        user = await make_user()
        reconciler = LedgerReconciler(db_session)

        assert await reconciler.calculate_balance(user.id) == Decimal("0.00")
        assert await reconciler.calculate_hold(user.id) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_hold_counts_active_only(self, db_session, make_user, make_hold):
        user = await make_user()
        await make_hold(user, "25.00")
        await make_hold(user, "15.50")
        await make_hold(user, "99.00", status=HoldStatus.RELEASED)
        await make_hold(user, "10.00", status=HoldStatus.CONSUMED)

        assert await LedgerReconciler(db_session).calculate_hold(user.id) == Decimal("40.50")


class TestReconcile:
    @pytest.mark.asyncio
    async def test_reports_drifted_user(self, db_session, make_user, make_transaction):
        user = await make_user(username="drifter", wallet_balance=Decimal("400.00"))
        await seed_ledger(make_transaction, user)

        reports = await LedgerReconciler(db_session).reconcile()

        assert len(reports) == 1
        report = reports[0]
        assert report.user_id == user.id
        assert report.username == "drifter"
        assert report.current_balance == Decimal("400.00")
        assert report.calculated_balance == Decimal("350.00")
        assert report.balance_drift == Decimal("-50.00")

    @pytest.mark.asyncio
    async def test_consistent_users_are_not_reported(
        self, db_session, make_user, make_transaction, make_hold
    ):
        user = await make_user(wallet_balance=Decimal("350.00"), hold_balance=Decimal("20.00"))
        await seed_ledger(make_transaction, user)
        await make_hold(user, "20.00")

        assert await LedgerReconciler(db_session).reconcile() == []

    @pytest.mark.asyncio
    async def test_hold_drift_is_reported(self, db_session, make_user, make_hold):
        user = await make_user(hold_balance=Decimal("5.00"))
        await make_hold(user, "30.00")

        reports = await LedgerReconciler(db_session).reconcile()

        assert [r.hold_drift for r in reports] == [Decimal("25.00")]

    @pytest.mark.asyncio
    async def test_single_user(self, db_session, make_user, make_transaction):
        drifted = await make_user(wallet_balance=Decimal("1.00"))
        other = await make_user(wallet_balance=Decimal("9.00"))
        await make_transaction(drifted, "2.00")
        await make_transaction(other, "3.00")

        reports = await LedgerReconciler(db_session).reconcile(drifted.id)

        assert [r.user_id for r in reports] == [drifted.id]

    @pytest.mark.asyncio
    async def test_single_user_without_drift(self, db_session, make_user):
        user = await make_user()

        assert await LedgerReconciler(db_session).reconcile(user.id) == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(UserNotFoundError):
            await LedgerReconciler(db_session).reconcile("missing-user")

    @pytest.mark.asyncio
    async def test_custom_epsilon(self, db_session, make_user, make_transaction):
        user = await make_user(wallet_balance=Decimal("10.00"))
        await make_transaction(user, "10.50")

        assert await LedgerReconciler(db_session, epsilon=Decimal("1.00")).reconcile() == []
        assert len(await LedgerReconciler(db_session).reconcile()) == 1


class TestApply:
    @pytest.mark.asyncio
    async def test_apply_overwrites_cache(self, db_session, make_user, make_transaction, make_hold):
        user = await make_user(wallet_balance=Decimal("400.00"), hold_balance=Decimal("0.00"))
        await seed_ledger(make_transaction, user)
        await make_hold(user, "12.00")

        fix = await LedgerReconciler(db_session).apply_reconciliation(user.id)

        assert fix.old_balance == Decimal("400.00")
        assert fix.new_balance == Decimal("350.00")
        assert fix.old_hold == Decimal("0.00")
        assert fix.new_hold == Decimal("12.00")
        assert fix.changed
        stored = await db_session.get(User, user.id, populate_existing=True)
        assert stored.wallet_balance == Decimal("350.00")
        assert stored.hold_balance == Decimal("12.00")

    @pytest.mark.asyncio
    async def test_reconcile_after_apply_reports_nothing(
        self, db_session, make_user, make_transaction
    ):
        user = await make_user(wallet_balance=Decimal("400.00"))
        await seed_ledger(make_transaction, user)
        reconciler = LedgerReconciler(db_session)

        await reconciler.apply_reconciliation(user.id)

        assert await reconciler.reconcile() == []

    @pytest.mark.asyncio
    async def test_apply_without_drift_is_unchanged(self, db_session, make_user, make_transaction):
        user = await make_user(wallet_balance=Decimal("5.00"))
        await make_transaction(user, "5.00")

        fix = await LedgerReconciler(db_session).apply_reconciliation(user.id)

        assert not fix.changed

    @pytest.mark.asyncio
    async def test_apply_unknown_user(self, db_session):
        with pytest.raises(UserNotFoundError):
            await LedgerReconciler(db_session).apply_reconciliation("missing-user")

    @pytest.mark.asyncio
    async def test_apply_all(self, db_session, make_user, make_transaction):
        first = await make_user(wallet_balance=Decimal("0.00"))
        second = await make_user(wallet_balance=Decimal("70.00"))
        fine = await make_user(wallet_balance=Decimal("8.00"))
        await make_transaction(first, "100.00")
        await make_transaction(second, "20.00")
        await make_transaction(fine, "8.00")
        drifted_ids = {first.id, second.id}
        reconciler = LedgerReconciler(db_session)

        run = await reconciler.apply_all()

        assert {f.user_id for f in run.fixed} == drifted_ids
        assert run.failed == []
        assert await reconciler.reconcile() == []

    @pytest.mark.asyncio
    async def test_apply_all_continues_after_failure(
        self, db_session, make_user, make_transaction, monkeypatch
    ):
        broken = await make_user(wallet_balance=Decimal("0.00"))
        healthy = await make_user(wallet_balance=Decimal("0.00"))
        await make_transaction(broken, "10.00")
        await make_transaction(healthy, "20.00")
        broken_id, healthy_id = broken.id, healthy.id
        reconciler = LedgerReconciler(db_session)
        apply_one = reconciler.apply_reconciliation

        async def flaky(user_id):
            if user_id == broken_id:
                raise TransientError("apply_reconciliation")
            return await apply_one(user_id)

        monkeypatch.setattr(reconciler, "apply_reconciliation", flaky)

        run = await reconciler.apply_all()

        assert run.failed == [broken_id]
        assert [f.user_id for f in run.fixed] == [healthy_id]
