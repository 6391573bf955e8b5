"""
tests/test_attendance.py — RSVP & Check-in Aggregation Tests
=============================================================

Pure reductions over ``SimpleNamespace`` rows (no database).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from squadplanner.database.models import RsvpResponse
from squadplanner.engine.attendance import (
    RsvpCounts,
    aggregate,
    aggregate_checkins,
    aggregate_many,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def rsvp(session_id, user_id, response, minutes=0):
    return SimpleNamespace(
        session_id=session_id,
        user_id=user_id,
        response=response,
        responded_at=T0 + timedelta(minutes=minutes),
    )


def checkin(session_id, user_id, status):
    return SimpleNamespace(session_id=session_id, user_id=user_id, status=status, checked_at=T0)


class TestAggregate:
    def test_counts_and_mine(self):
        rows = [
            rsvp("s1", "a", "present"),
            rsvp("s1", "b", "present"),
            rsvp("s1", "c", "maybe"),
            rsvp("s1", "d", "absent"),
        ]
        summary = aggregate("s1", rows, "c")
        assert summary.counts == RsvpCounts(present=2, absent=1, maybe=1)
        assert summary.mine == RsvpResponse.MAYBE

    def test_mine_is_none_when_viewer_has_not_answered(self):
        summary = aggregate("s1", [rsvp("s1", "a", "present")], "z")
        assert summary.mine is None

    def test_mine_is_none_for_anonymous_viewer(self):
        summary = aggregate("s1", [rsvp("s1", "a", "present")], None)
        assert summary.mine is None

    def test_ignores_other_sessions(self):
        rows = [rsvp("s1", "a", "present"), rsvp("s2", "b", "present"), rsvp("s2", "a", "absent")]
        summary = aggregate("s1", rows, "a")
        assert summary.counts.as_dict() == {"present": 1, "absent": 0, "maybe": 0}
        assert summary.mine == RsvpResponse.PRESENT

    def test_latest_answer_wins_for_duplicate_user(self):
        rows = [rsvp("s1", "a", "present", minutes=0), rsvp("s1", "a", "absent", minutes=5)]
        summary = aggregate("s1", rows, "a")
        assert summary.counts == RsvpCounts(absent=1)
        assert summary.mine == RsvpResponse.ABSENT

    def test_empty(self):
        summary = aggregate("s1", [], "a")
        assert summary.counts.total == 0
        assert summary.mine is None

    @pytest.mark.parametrize("n_users", [1, 3, 10])
    def test_total_equals_distinct_users(self, n_users):
        values = ["present", "absent", "maybe"]
        rows = []
        for i in range(n_users):
            rows.append(rsvp("s1", f"u{i}", values[i % 3], minutes=i))
            rows.append(rsvp("s1", f"u{i}", values[(i + 1) % 3], minutes=i + 100))
        assert aggregate("s1", rows, None).counts.total == n_users


class TestAggregateMany:
    def test_groups_by_session_with_same_reduction(self):
        rows = [
            rsvp("s1", "a", "present"),
            rsvp("s2", "a", "absent"),
            rsvp("s2", "b", "present"),
        ]
        result = aggregate_many(["s1", "s2", "s3"], rows, "a")
        assert result["s1"] == aggregate("s1", rows, "a")
        assert result["s2"].counts == RsvpCounts(present=1, absent=1)
        assert result["s2"].mine == RsvpResponse.ABSENT
        assert result["s3"].counts.total == 0


class TestCheckins:
    def test_counts_per_status(self):
        rows = [
            checkin("s1", "a", "present"),
            checkin("s1", "b", "late"),
            checkin("s1", "c", "noshow"),
            checkin("s1", "d", "late"),
            checkin("s2", "a", "noshow"),
        ]
        counts = aggregate_checkins("s1", rows)
        assert counts.as_dict() == {"present": 1, "late": 2, "noshow": 1}
        assert counts.total == 4
