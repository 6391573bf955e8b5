"""
tests/test_cache.py — SessionCache Unit Tests
==============================================

Per-viewer storage, the invalidation points used by the coordinator and
the NOTIFY payloads that carry invalidation to other processes.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from squadplanner.engine.cache import NOTIFY_CHANNEL, SessionCache, notify_payload, send_notify


def detail(session_id: str):
    return SimpleNamespace(session=SimpleNamespace(id=session_id))


class TestSessionCache:
    @pytest.fixture
    def cache(self):
        return SessionCache()

    def test_detail_is_per_viewer(self, cache):
        d = detail("s1")
        cache.store_detail(d, "alice")
        assert cache.get_detail("s1", "alice") is d
        assert cache.get_detail("s1", "bob") is None

    def test_lists_are_copies(self, cache):
        views = ["v1", "v2"]
        cache.store_list("squad", "alice", views)
        views.append("v3")
        got = cache.get_list("squad", "alice")
        assert got == ["v1", "v2"]
        got.append("x")
        assert cache.get_list("squad", "alice") == ["v1", "v2"]

    def test_invalidate_drops_session_squad_and_upcoming(self, cache):
        cache.store_detail(detail("s1"), "alice")
        cache.store_detail(detail("s1"), "bob")
        cache.store_detail(detail("s2"), "alice")
        cache.store_list("squad-a", "alice", ["v"])
        cache.store_list("squad-b", "alice", ["v"])
        cache.store_upcoming("alice", ["v"])

        cache.invalidate("s1", "squad-a")

        assert cache.get_detail("s1", "alice") is None
        assert cache.get_detail("s1", "bob") is None
        assert cache.get_detail("s2", "alice") is not None
        assert cache.get_list("squad-a", "alice") is None
        assert cache.get_list("squad-b", "alice") == ["v"]
        assert cache.get_upcoming("alice") is None

    def test_invalidate_squad_only(self, cache):
        cache.store_detail(detail("s1"), "alice")
        cache.store_list("squad-a", "alice", ["v"])
        cache.invalidate(None, "squad-a")
        assert cache.get_detail("s1", "alice") is not None
        assert cache.get_list("squad-a", "alice") is None

    def test_clear_and_len(self, cache):
        cache.store_detail(detail("s1"), "alice")
        cache.store_upcoming("alice", [])
        assert len(cache) == 2
        cache.clear()
        assert len(cache) == 0


# ---------------------------------------------------------------------------
# Cross-process invalidation via NOTIFY
# ---------------------------------------------------------------------------
def pg_engine():
    engine = MagicMock()
    engine.dialect.name = "postgresql"
    return engine


class TestHandleNotify:
    @pytest.fixture
    def cache(self):
        cache = SessionCache()
        cache.store_detail(detail("s1"), "alice")
        cache.store_list("squad-a", "alice", ["v"])
        cache.store_upcoming("alice", ["v"])
        return cache

    def test_payload_from_another_process_invalidates(self, cache):
        cache.handle_notify(notify_payload("s1", "squad-a", origin="other-process"))
        assert cache.get_detail("s1", "alice") is None
        assert cache.get_list("squad-a", "alice") is None
        assert cache.get_upcoming("alice") is None

    def test_own_payload_is_ignored(self, cache):
        cache.handle_notify(notify_payload("s1", "squad-a", origin=cache.origin))
        assert cache.get_detail("s1", "alice") is not None

    @pytest.mark.parametrize("payload", ["", "not json", "[1, 2]"])
    def test_malformed_payload_is_ignored(self, cache, payload):
        cache.handle_notify(payload)
        assert len(cache) == 3

    def test_origins_are_unique_per_cache(self):
        assert SessionCache().origin != SessionCache().origin


class TestSendNotify:
    def test_non_postgres_backend_is_a_noop(self, db_engine):
        assert send_notify(db_engine, "s1", "squad-a") is False

    def test_payload_is_bound_not_interpolated(self):
        engine = pg_engine()
        assert send_notify(engine, "s1'; --", "squad-a", origin="o") is True

        conn = engine.connect.return_value.__enter__.return_value
        statement, params = conn.execute.call_args.args
        assert "pg_notify" in str(statement)
        assert params["channel"] == NOTIFY_CHANNEL
        assert json.loads(params["payload"]) == {
            "session_id": "s1'; --", "squad_id": "squad-a", "origin": "o",
        }
        conn.commit.assert_called_once()


class TestListenerHealth:
    def test_initially_unhealthy(self):
        cache = SessionCache()
        assert cache.listener_healthy is False
        assert cache.listener_failed is False

    def test_start_on_non_postgres_backend_is_a_noop(self, db_engine):
        cache = SessionCache()
        cache.start_listener(db_engine)
        assert cache._listener_thread is None
        cache.stop_listener()

    def test_failed_listener_stops_serving_reads(self):
        cache = SessionCache()
        cache.store_detail(detail("s1"), "alice")
        cache.store_list("squad-a", "alice", ["v"])
        cache.store_upcoming("alice", ["v"])

        cache._listener_failed = True

        assert cache.get_detail("s1", "alice") is None
        assert cache.get_list("squad-a", "alice") is None
        assert cache.get_upcoming("alice") is None
