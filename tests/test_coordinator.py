"""
tests/test_coordinator.py — Session Action Coordinator Tests
=============================================================

Drives the coordinator end-to-end against SQLite.  The notifier and the
progress tracker are mocks so the tests can count calls and inject
failures; their real implementations have their own tests.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import ALICE_ID, BOB_ID, CAROL_ID, FUTURE, LEADER_ID, SQUAD_ID, make_session
from sqlalchemy import func, select

from squadplanner.database.models import SessionCheckin, SessionRsvp, SessionStatus
from squadplanner.engine.cache import SessionCache, notify_payload
from squadplanner.engine.lifecycle import AutoConfirmPolicy
from squadplanner.errors import NotFound, StorageError, Unauthenticated, ValidationError
from squadplanner.services.coordinator import SessionActionCoordinator
from squadplanner.services.identity import Actor, StaticIdentity
from squadplanner.services.session_service import SessionQueries

NOW = datetime(2029, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def progress():
    return MagicMock()


@pytest.fixture
def cache():
    return SessionCache()


@pytest.fixture
def coordinator(db_engine, squad, cache, notifier, progress):
    return SessionActionCoordinator(
        db_engine,
        StaticIdentity(Actor(ALICE_ID, "Alice")),
        cache,
        notifier=notifier,
        progress=progress,
        clock=lambda: NOW,
    )


def as_user(coordinator, user_id, name=None):
    return coordinator.for_identity(StaticIdentity(Actor(user_id, name)))


def count_rows(session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


# ===========================================================================
# RSVP
# ===========================================================================
class TestUpdateRsvp:
    def test_records_rsvp_and_notifies(self, db_engine, coordinator, notifier, progress):
        make_session(db_engine)
        result = asyncio.run(coordinator.update_rsvp("session-1", "present"))

        assert result.error is None
        assert result.ok
        assert coordinator.rsvps.find("session-1", ALICE_ID).response == "present"
        notifier.send_rsvp_message.assert_called_once_with(
            SQUAD_ID, "Alice", "Raid Night", "present", session_id="session-1",
        )
        keys = sorted(c.args[1] for c in progress.track_progress.call_args_list)
        assert keys == ["daily_rsvp", "rsvp"]

    def test_non_present_answer_skips_progress(self, db_engine, coordinator, progress):
        make_session(db_engine)
        result = asyncio.run(coordinator.update_rsvp("session-1", "maybe"))
        assert result.error is None
        progress.track_progress.assert_not_called()

    def test_third_present_confirms_exactly_once(self, db_engine, coordinator, notifier):
        make_session(db_engine, threshold=3)

        for user_id in (ALICE_ID, BOB_ID):
            result = asyncio.run(as_user(coordinator, user_id).update_rsvp("session-1", "present"))
            assert result.session.status == SessionStatus.PROPOSED
        notifier.send_session_confirmed_message.assert_not_called()

        result = asyncio.run(as_user(coordinator, CAROL_ID).update_rsvp("session-1", "present"))
        assert result.error is None
        assert result.session.status == SessionStatus.CONFIRMED
        notifier.send_session_confirmed_message.assert_called_once_with(
            SQUAD_ID, "Raid Night", FUTURE, session_id="session-1",
        )

        # A fourth present answer must not re-announce
        asyncio.run(as_user(coordinator, LEADER_ID).update_rsvp("session-1", "present"))
        assert notifier.send_session_confirmed_message.call_count == 1

    def test_manual_policy_never_auto_confirms(self, db_engine, squad, cache, notifier):
        make_session(db_engine, threshold=1)
        manual = SessionActionCoordinator(
            db_engine,
            StaticIdentity(Actor(ALICE_ID)),
            cache,
            notifier=notifier,
            policy=AutoConfirmPolicy.MANUAL,
        )
        result = asyncio.run(manual.update_rsvp("session-1", "present"))
        assert result.session.status == SessionStatus.PROPOSED
        notifier.send_session_confirmed_message.assert_not_called()

    def test_cancelled_session_is_not_revived(self, db_engine, coordinator):
        make_session(db_engine, status="cancelled", threshold=1)
        result = asyncio.run(coordinator.update_rsvp("session-1", "present"))
        assert result.error is None
        assert result.session.status == SessionStatus.CANCELLED

    def test_invalid_response_writes_nothing(self, db_engine, db_session, coordinator, notifier):
        make_session(db_engine)
        result = asyncio.run(coordinator.update_rsvp("session-1", "perhaps"))
        assert isinstance(result.error, ValidationError)
        assert count_rows(db_session, SessionRsvp) == 0
        notifier.send_rsvp_message.assert_not_called()

    def test_unknown_session(self, coordinator):
        result = asyncio.run(coordinator.update_rsvp("missing", "present"))
        assert isinstance(result.error, NotFound)

    def test_refetches_detail_into_cache(self, db_engine, coordinator, cache):
        make_session(db_engine)
        asyncio.run(coordinator.update_rsvp("session-1", "present"))
        detail = cache.get_detail("session-1", ALICE_ID)
        assert detail is not None
        assert detail.summary.counts.present == 1
        assert detail.my_rsvp == "present"

    def test_falls_back_to_display_name(self, db_engine, coordinator, notifier):
        make_session(db_engine)
        ghost = as_user(coordinator, "no-profile", "Ghost")
        asyncio.run(ghost.update_rsvp("session-1", "absent"))
        assert notifier.send_rsvp_message.call_args.args[1] == "Ghost"


# ===========================================================================
# Side-effect isolation
# ===========================================================================
class TestSideEffectFailures:
    def test_notifier_failure_does_not_fail_the_action(
        self, db_engine, coordinator, notifier, progress, cache,
    ):
        make_session(db_engine)
        notifier.send_rsvp_message.side_effect = RuntimeError("chat down")

        result = asyncio.run(coordinator.update_rsvp("session-1", "present"))

        assert result.error is None
        assert [f.step for f in result.failures] == ["notify_rsvp"]
        assert progress.track_progress.call_count == 2
        assert cache.get_detail("session-1", ALICE_ID) is not None

    def test_progress_failure_is_isolated(self, db_engine, coordinator, notifier, progress):
        make_session(db_engine)
        progress.track_progress.side_effect = RuntimeError("boom")
        result = asyncio.run(coordinator.update_rsvp("session-1", "present"))
        assert result.error is None
        assert {f.step for f in result.failures} == {"progress:rsvp", "progress:daily_rsvp"}
        notifier.send_rsvp_message.assert_called_once()

    def test_ui_cue_receives_action_name(self, db_engine, squad, cache):
        make_session(db_engine)
        cue = MagicMock()
        coordinator = SessionActionCoordinator(
            db_engine, StaticIdentity(Actor(ALICE_ID)), cache, ui_cue=cue,
        )
        asyncio.run(coordinator.checkin("session-1", "late"))
        cue.trigger.assert_called_once_with("checkin")

    def test_async_notifier_is_awaited(self, db_engine, squad, cache):
        make_session(db_engine)
        notifier = MagicMock()
        notifier.send_rsvp_message = AsyncMock()
        coordinator = SessionActionCoordinator(
            db_engine, StaticIdentity(Actor(ALICE_ID)), cache, notifier=notifier,
        )
        asyncio.run(coordinator.update_rsvp("session-1", "maybe"))
        notifier.send_rsvp_message.assert_awaited_once()


# ===========================================================================
# Authentication & in-flight guard
# ===========================================================================
class TestUnauthenticated:
    @pytest.fixture
    def anonymous(self, coordinator):
        return coordinator.for_identity(StaticIdentity(None))

    @pytest.mark.parametrize(
        "call",
        [
            lambda c: c.update_rsvp("session-1", "present"),
            lambda c: c.checkin("session-1", "present"),
            lambda c: c.confirm_session("session-1"),
            lambda c: c.cancel_session("session-1"),
            lambda c: c.create_session(SQUAD_ID, FUTURE, title="x"),
        ],
    )
    def test_every_action_rejected_without_writes(
        self, db_engine, db_session, anonymous, notifier, progress, call,
    ):
        make_session(db_engine)
        result = asyncio.run(call(anonymous))

        assert isinstance(result.error, Unauthenticated)
        assert count_rows(db_session, SessionRsvp) == 0
        assert count_rows(db_session, SessionCheckin) == 0
        assert anonymous.sessions.get("session-1").status == SessionStatus.PROPOSED
        assert len(anonymous.sessions.list_by_squad(SQUAD_ID)) == 1
        notifier.send_rsvp_message.assert_not_called()
        progress.track_progress.assert_not_called()


class TestInFlightGuard:
    def test_duplicate_action_is_rejected_while_running(self, db_engine, squad, cache):
        make_session(db_engine)
        nested = []
        notifier = MagicMock()

        async def resubmit(*args, **kwargs):
            nested.append(await coordinator.update_rsvp("session-1", "present"))

        notifier.send_rsvp_message = AsyncMock(side_effect=resubmit)
        coordinator = SessionActionCoordinator(
            db_engine, StaticIdentity(Actor(ALICE_ID)), cache, notifier=notifier,
        )

        result = asyncio.run(coordinator.update_rsvp("session-1", "present"))

        assert result.error is None
        assert isinstance(nested[0].error, ValidationError)
        assert "in flight" in str(nested[0].error)
        # Guard is released afterwards
        notifier.send_rsvp_message = MagicMock()
        assert asyncio.run(coordinator.update_rsvp("session-1", "absent")).error is None

    def test_different_actions_do_not_block_each_other(self, db_engine, coordinator):
        make_session(db_engine)
        coordinator._in_flight.add((ALICE_ID, "session-1", "rsvp"))
        assert asyncio.run(coordinator.checkin("session-1", "present")).error is None


# ===========================================================================
# Check-in, confirm, cancel
# ===========================================================================
class TestCheckin:
    def test_upserts_status(self, db_engine, coordinator, cache):
        make_session(db_engine)
        asyncio.run(coordinator.checkin("session-1", "present"))
        result = asyncio.run(coordinator.checkin("session-1", "late"))
        assert result.error is None
        assert coordinator.checkins.find("session-1", ALICE_ID).status == "late"
        assert cache.get_detail("session-1", ALICE_ID).checkin_counts.late == 1

    def test_invalid_status(self, db_engine, coordinator):
        make_session(db_engine)
        result = asyncio.run(coordinator.checkin("session-1", "absent"))
        assert isinstance(result.error, ValidationError)


class TestConfirmAndCancel:
    def test_confirm_notifies_once(self, db_engine, coordinator, notifier):
        make_session(db_engine)
        first = asyncio.run(coordinator.confirm_session("session-1"))
        second = asyncio.run(coordinator.confirm_session("session-1"))
        assert first.session.status == SessionStatus.CONFIRMED
        assert second.error is None
        notifier.send_session_confirmed_message.assert_called_once()

    def test_confirm_cancelled_is_rejected(self, db_engine, coordinator):
        make_session(db_engine, status="cancelled")
        result = asyncio.run(coordinator.confirm_session("session-1"))
        assert isinstance(result.error, ValidationError)
        assert coordinator.sessions.get("session-1").status == SessionStatus.CANCELLED

    @pytest.mark.parametrize("status", ["proposed", "confirmed"])
    def test_cancel_from_any_status(self, db_engine, coordinator, notifier, status):
        make_session(db_engine, status=status)
        result = asyncio.run(coordinator.cancel_session("session-1"))
        assert result.session.status == SessionStatus.CANCELLED
        notifier.send_session_confirmed_message.assert_not_called()

    def test_cancel_twice_is_noop(self, db_engine, coordinator):
        make_session(db_engine)
        asyncio.run(coordinator.cancel_session("session-1"))
        result = asyncio.run(coordinator.cancel_session("session-1"))
        assert result.error is None
        assert result.session.status == SessionStatus.CANCELLED


# ===========================================================================
# Create
# ===========================================================================
class TestCreateSession:
    def test_creator_is_rsvped_present(self, db_engine, coordinator):
        result = asyncio.run(coordinator.create_session(
            SQUAD_ID, NOW + timedelta(days=1), title="Ranked", game="Valorant",
        ))
        assert result.error is None
        session = result.session
        assert session.status == SessionStatus.PROPOSED
        assert session.created_by == ALICE_ID
        assert session.duration_minutes == 120
        assert session.auto_confirm_threshold == 3
        assert coordinator.rsvps.find(session.id, ALICE_ID).response == "present"

    def test_threshold_of_one_confirms_immediately(self, db_engine, coordinator, notifier):
        result = asyncio.run(coordinator.create_session(
            SQUAD_ID, NOW + timedelta(days=1), auto_confirm_threshold=1,
        ))
        assert result.session.status == SessionStatus.CONFIRMED
        notifier.send_session_confirmed_message.assert_called_once()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"duration_minutes": 0},
            {"auto_confirm_threshold": 0},
        ],
    )
    def test_invalid_parameters(self, coordinator, kwargs):
        result = asyncio.run(coordinator.create_session(SQUAD_ID, NOW + timedelta(days=1), **kwargs))
        assert isinstance(result.error, ValidationError)

    def test_past_date_rejected(self, coordinator):
        result = asyncio.run(coordinator.create_session(SQUAD_ID, NOW - timedelta(minutes=1)))
        assert isinstance(result.error, ValidationError)
        assert coordinator.sessions.list_by_squad(SQUAD_ID) == []

    def test_creator_rsvp_failure_keeps_session(self, db_engine, coordinator):
        coordinator.rsvps.upsert = MagicMock(side_effect=RuntimeError("down"))
        result = asyncio.run(coordinator.create_session(SQUAD_ID, NOW + timedelta(days=1)))
        assert result.error is None
        assert len(coordinator.sessions.list_by_squad(SQUAD_ID)) == 1

    def test_auto_confirm_failure_after_insert_is_not_an_error(
        self, db_engine, coordinator, notifier,
    ):
        coordinator.rsvps.list_for_session = MagicMock(side_effect=StorageError("db down"))
        result = asyncio.run(coordinator.create_session(
            SQUAD_ID, NOW + timedelta(days=1), auto_confirm_threshold=1,
        ))
        assert result.error is None
        [session] = coordinator.sessions.list_by_squad(SQUAD_ID)
        assert session.status == SessionStatus.PROPOSED
        notifier.send_session_confirmed_message.assert_not_called()


# ===========================================================================
# Cross-process invalidation
# ===========================================================================
class TestCrossProcessInvalidation:
    def test_write_in_one_process_clears_the_other_processes_views(
        self, db_engine, coordinator, monkeypatch,
    ):
        """The bot's RSVP reaches the API's cache through the NOTIFY channel."""
        make_session(db_engine)
        api_cache = SessionCache()
        api_queries = SessionQueries(db_engine, api_cache)
        assert api_queries.get_detail("session-1", ALICE_ID).summary.counts.present == 0

        def deliver(engine, session_id, squad_id, origin=None):
            api_cache.handle_notify(notify_payload(session_id, squad_id, origin))
            return True

        monkeypatch.setattr("squadplanner.services.coordinator.send_notify", deliver)
        result = asyncio.run(coordinator.update_rsvp("session-1", "present"))

        assert result.error is None
        assert api_queries.get_detail("session-1", ALICE_ID).summary.counts.present == 1

    def test_broadcast_failure_is_a_side_effect_failure(
        self, db_engine, coordinator, monkeypatch,
    ):
        make_session(db_engine)
        monkeypatch.setattr(
            "squadplanner.services.coordinator.send_notify",
            MagicMock(side_effect=RuntimeError("pg down")),
        )
        result = asyncio.run(coordinator.update_rsvp("session-1", "present"))
        assert result.error is None
        assert [f.step for f in result.failures] == ["broadcast_invalidation"]
