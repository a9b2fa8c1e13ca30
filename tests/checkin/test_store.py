"""Tests for CheckinStore: check-in writes and finalization reads."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from tourney.checkin.eligibility import load_registration
from tourney.checkin.finalization import FinalizationEngine
from tourney.checkin.results import CheckinOutcome, EligibilityReason
from tourney.checkin.store import CheckinStore
from tourney.checkin.window import as_utc
from tourney.models import Registration, RegistrationStatus

START = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)
OPEN_NOW = START - timedelta(minutes=10)


class TestPerformCheckin:
    @pytest.mark.asyncio
    async def test_confirmed_registration_checks_in(
        self, db_session, make_tournament, make_registration
    ):
        tournament = await make_tournament()
        registration = await make_registration(tournament, slot_number=1)

        result = await CheckinStore(db_session).perform_checkin(
            tournament.id, registration.user_id, now=OPEN_NOW
        )
        await db_session.commit()

        assert result.outcome is CheckinOutcome.CHECKED_IN
        assert result.succeeded
        assert result.registration.status is RegistrationStatus.CHECKED_IN
        assert as_utc(result.registration.checked_in_at) == OPEN_NOW
        assert result.registration.slot_number == 1

    @pytest.mark.asyncio
    async def test_second_checkin_keeps_first_timestamp(
        self, db_session, make_tournament, make_registration
    ):
        tournament = await make_tournament()
        registration = await make_registration(tournament, slot_number=1)
        store = CheckinStore(db_session)

        await store.perform_checkin(tournament.id, registration.user_id, now=OPEN_NOW)
        await db_session.commit()
        later = OPEN_NOW + timedelta(minutes=3)
        result = await store.perform_checkin(tournament.id, registration.user_id, now=later)
        await db_session.commit()

        assert result.outcome is CheckinOutcome.ALREADY_CHECKED_IN
        assert result.succeeded
        assert as_utc(result.registration.checked_in_at) == OPEN_NOW

    @pytest.mark.asyncio
    async def test_already_checked_in_reported_after_window_closes(
        self, db_session, make_tournament, make_registration
    ):
        tournament = await make_tournament()
        registration = await make_registration(
            tournament,
            status=RegistrationStatus.CHECKED_IN,
            slot_number=1,
            checked_in_at=OPEN_NOW,
        )

        result = await CheckinStore(db_session).perform_checkin(
            tournament.id, registration.user_id, now=START + timedelta(minutes=5)
        )

        assert result.outcome is CheckinOutcome.ALREADY_CHECKED_IN

    @pytest.mark.asyncio
    async def test_rejected_before_window(self, db_session, make_tournament, make_registration):
        tournament = await make_tournament()
        registration = await make_registration(tournament, slot_number=1)

        result = await CheckinStore(db_session).perform_checkin(
            tournament.id, registration.user_id, now=START - timedelta(hours=1)
        )

        assert result.outcome is CheckinOutcome.REJECTED
        assert result.reason is EligibilityReason.WINDOW_NOT_OPEN
        await db_session.refresh(registration)
        assert registration.status is RegistrationStatus.CONFIRMED
        assert registration.checked_in_at is None

    @pytest.mark.asyncio
    async def test_rejected_at_start(self, db_session, make_tournament, make_registration):
        tournament = await make_tournament()
        registration = await make_registration(tournament, slot_number=1)

        result = await CheckinStore(db_session).perform_checkin(
            tournament.id, registration.user_id, now=START
        )

        assert result.reason is EligibilityReason.WINDOW_CLOSED

    @pytest.mark.asyncio
    async def test_waitlisted_cannot_check_in(
        self, db_session, make_tournament, make_registration
    ):
        tournament = await make_tournament()
        registration = await make_registration(tournament, status=RegistrationStatus.WAITLISTED)

        result = await CheckinStore(db_session).perform_checkin(
            tournament.id, registration.user_id, now=OPEN_NOW
        )

        assert result.reason is EligibilityReason.WAITLISTED

    @pytest.mark.asyncio
    async def test_rejected_when_finalized(self, db_session, make_tournament, make_registration):
        tournament = await make_tournament(finalized_at=OPEN_NOW - timedelta(minutes=1))
        registration = await make_registration(tournament, slot_number=1)

        result = await CheckinStore(db_session).perform_checkin(
            tournament.id, registration.user_id, now=OPEN_NOW
        )

        assert result.reason is EligibilityReason.ALREADY_FINALIZED

    @pytest.mark.asyncio
    async def test_unknown_tournament(self, db_session, make_user):
        user = await make_user()

        result = await CheckinStore(db_session).perform_checkin(404, user.id, now=OPEN_NOW)

        assert result.reason is EligibilityReason.TOURNAMENT_NOT_FOUND
        assert result.registration is None

    @pytest.mark.asyncio
    async def test_not_registered(self, db_session, make_tournament, make_user):
        tournament = await make_tournament()
        user = await make_user()

        result = await CheckinStore(db_session).perform_checkin(tournament.id, user.id, now=OPEN_NOW)

        assert result.reason is EligibilityReason.NOT_REGISTERED


class TestConcurrentWriters:
    """Another session commits between our first reads and the write."""

    @pytest.mark.asyncio
    async def test_finalization_committed_before_row_lock(
        self, db_session, session_factory, make_tournament, make_registration, monkeypatch
    ):
        tournament = await make_tournament(max_teams=1)
        await make_registration(tournament, slot_number=1)
        waiting = await make_registration(tournament, status=RegistrationStatus.WAITLISTED)
        tournament_id, user_id = tournament.id, waiting.user_id

        async def finalize_then_load(session, *args, **kwargs):
            async with session_factory() as other:
                await FinalizationEngine(other).finalize(tournament_id, now=OPEN_NOW, force=True)
            return await load_registration(session, *args, **kwargs)

        monkeypatch.setattr("tourney.checkin.store.load_registration", finalize_then_load)

        result = await CheckinStore(db_session).perform_checkin(
            tournament_id, user_id, now=OPEN_NOW
        )

        assert result.outcome is CheckinOutcome.REJECTED
        assert result.reason is EligibilityReason.ALREADY_FINALIZED
        # Promoted by the finalization, but not checked in
        assert result.registration.status is RegistrationStatus.CONFIRMED
        assert result.registration.slot_number == 1
        assert result.registration.checked_in_at is None

    @pytest.mark.asyncio
    async def test_lost_race_to_another_checkin(
        self, db_session, session_factory, make_tournament, make_registration, monkeypatch
    ):
        tournament = await make_tournament()
        registration = await make_registration(tournament, slot_number=1)
        tournament_id, user_id, registration_id = (
            tournament.id,
            registration.user_id,
            registration.id,
        )
        first_checkin = OPEN_NOW - timedelta(minutes=2)

        async def load_then_checkin_elsewhere(session, *args, **kwargs):
            loaded = await load_registration(session, *args, **kwargs)
            async with session_factory() as other:
                await other.execute(
                    update(Registration)
                    .where(Registration.id == registration_id)
                    .values(status=RegistrationStatus.CHECKED_IN, checked_in_at=first_checkin)
                )
                await other.commit()
            return loaded

        monkeypatch.setattr("tourney.checkin.store.load_registration", load_then_checkin_elsewhere)

        result = await CheckinStore(db_session).perform_checkin(
            tournament_id, user_id, now=OPEN_NOW
        )

        assert result.outcome is CheckinOutcome.ALREADY_CHECKED_IN
        assert as_utc(result.registration.checked_in_at) == first_checkin

    @pytest.mark.asyncio
    async def test_lost_race_to_disqualification(
        self, db_session, session_factory, make_tournament, make_registration, monkeypatch
    ):
        tournament = await make_tournament()
        registration = await make_registration(tournament, slot_number=1)
        tournament_id, user_id, registration_id = (
            tournament.id,
            registration.user_id,
            registration.id,
        )

        async def load_then_disqualify_elsewhere(session, *args, **kwargs):
            loaded = await load_registration(session, *args, **kwargs)
            async with session_factory() as other:
                await other.execute(
                    update(Registration)
                    .where(Registration.id == registration_id)
                    .values(status=RegistrationStatus.DISQUALIFIED, slot_number=None)
                )
                await other.commit()
            return loaded

        monkeypatch.setattr(
            "tourney.checkin.store.load_registration", load_then_disqualify_elsewhere
        )

        result = await CheckinStore(db_session).perform_checkin(
            tournament_id, user_id, now=OPEN_NOW
        )

        assert result.outcome is CheckinOutcome.REJECTED
        assert result.reason is EligibilityReason.DISQUALIFIED
        assert result.registration.checked_in_at is None


class TestNoShows:
    @pytest.mark.asyncio
    async def test_lock_no_shows_returns_unchecked_confirmed_by_slot(
        self, db_session, make_tournament, make_registration
    ):
        tournament = await make_tournament()
        late = await make_registration(tournament, slot_number=3)
        await make_registration(
            tournament, status=RegistrationStatus.CHECKED_IN, slot_number=2, checked_in_at=OPEN_NOW
        )
        early = await make_registration(tournament, slot_number=1)
        await make_registration(tournament, status=RegistrationStatus.WAITLISTED)

        no_shows = await CheckinStore(db_session).lock_no_shows(tournament.id)

        assert [r.id for r in no_shows] == [early.id, late.id]

    @pytest.mark.asyncio
    async def test_mark_no_shows_frees_slots(self, db_session, make_tournament, make_registration):
        tournament = await make_tournament()
        await make_registration(tournament, slot_number=4)
        await make_registration(tournament, slot_number=2)
        store = CheckinStore(db_session)

        no_shows = await store.lock_no_shows(tournament.id)
        freed = await store.mark_no_shows(no_shows, now=START)
        await db_session.commit()

        assert freed == [2, 4]
        for registration in no_shows:
            await db_session.refresh(registration)
            assert registration.status is RegistrationStatus.DISQUALIFIED
            assert registration.slot_number is None
            assert as_utc(registration.disqualified_at) == START
        assert await store.count_occupied(tournament.id) == 0


class TestReads:
    @pytest.mark.asyncio
    async def test_lock_waitlist_in_signup_order(
        self, db_session, make_tournament, make_registration
    ):
        tournament = await make_tournament()
        same_time = START - timedelta(days=2)
        second = await make_registration(
            tournament, status=RegistrationStatus.WAITLISTED, registered_at=same_time
        )
        third = await make_registration(
            tournament, status=RegistrationStatus.WAITLISTED, registered_at=same_time
        )
        first = await make_registration(
            tournament,
            status=RegistrationStatus.WAITLISTED,
            registered_at=same_time - timedelta(hours=1),
        )

        waitlist = await CheckinStore(db_session).lock_waitlist(tournament.id)

        assert [r.id for r in waitlist] == [first.id, second.id, third.id]

    @pytest.mark.asyncio
    async def test_count_occupied(self, db_session, make_tournament, make_registration):
        tournament = await make_tournament()
        await make_registration(tournament, slot_number=1)
        await make_registration(
            tournament, status=RegistrationStatus.CHECKED_IN, slot_number=2, checked_in_at=OPEN_NOW
        )
        await make_registration(tournament, status=RegistrationStatus.WAITLISTED)
        await make_registration(tournament, status=RegistrationStatus.DISQUALIFIED)

        assert await CheckinStore(db_session).count_occupied(tournament.id) == 2

    @pytest.mark.asyncio
    async def test_list_registrations(self, db_session, make_tournament, make_registration):
        tournament = await make_tournament()
        other = await make_tournament(name="Other Cup")
        first = await make_registration(tournament, slot_number=1)
        second = await make_registration(tournament, status=RegistrationStatus.WAITLISTED)
        await make_registration(other, slot_number=1)

        registrations = await CheckinStore(db_session).list_registrations(tournament.id)

        assert [r.id for r in registrations] == [first.id, second.id]
        assert all(isinstance(r, Registration) for r in registrations)
