"""
tests/test_lifecycle.py — Session Status State Machine Tests
=============================================================
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from squadplanner.database.models import SessionStatus
from squadplanner.engine.attendance import RsvpCounts
from squadplanner.engine.lifecycle import (
    SessionState,
    cancel,
    confirm,
    maybe_auto_confirm,
)
from squadplanner.errors import ValidationError


def state(status: SessionStatus, threshold: int = 3) -> SessionState:
    return SessionState(id="s1", status=status, auto_confirm_threshold=threshold)


class TestConfirm:
    def test_proposed_becomes_confirmed(self):
        assert confirm(state(SessionStatus.PROPOSED)).status == SessionStatus.CONFIRMED

    def test_confirmed_is_noop(self):
        s = state(SessionStatus.CONFIRMED)
        assert confirm(s) == s

    def test_cancelled_is_rejected(self):
        with pytest.raises(ValidationError):
            confirm(state(SessionStatus.CANCELLED))


class TestCancel:
    @pytest.mark.parametrize("status", [SessionStatus.PROPOSED, SessionStatus.CONFIRMED])
    def test_any_live_status_cancels(self, status):
        assert cancel(state(status)).status == SessionStatus.CANCELLED

    def test_already_cancelled_is_noop(self):
        s = state(SessionStatus.CANCELLED)
        assert cancel(s) == s


class TestMaybeAutoConfirm:
    def test_threshold_reached_confirms(self):
        result = maybe_auto_confirm(state(SessionStatus.PROPOSED), RsvpCounts(present=3))
        assert result.status == SessionStatus.CONFIRMED

    def test_below_threshold_unchanged(self):
        s = state(SessionStatus.PROPOSED)
        assert maybe_auto_confirm(s, RsvpCounts(present=2, maybe=5)) == s

    @pytest.mark.parametrize("present", [0, 3, 100])
    def test_never_revives_cancelled(self, present):
        s = state(SessionStatus.CANCELLED)
        assert maybe_auto_confirm(s, RsvpCounts(present=present)).status == SessionStatus.CANCELLED

    def test_confirmed_unchanged(self):
        s = state(SessionStatus.CONFIRMED)
        assert maybe_auto_confirm(s, RsvpCounts(present=10)) == s


class TestSessionState:
    def test_of_reads_row_like_object(self):
        row = SimpleNamespace(id="s9", status="confirmed", auto_confirm_threshold="4")
        s = SessionState.of(row)
        assert s == SessionState(id="s9", status=SessionStatus.CONFIRMED, auto_confirm_threshold=4)
