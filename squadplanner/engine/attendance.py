"""
squadplanner.engine.attendance — RSVP & Check-in Aggregation
=============================================================

Pure reductions over response rows.  Works on anything exposing
``session_id``, ``user_id`` and the value attribute (``response`` for RSVPs,
``status`` for check-ins) — ORM rows, dataclasses or ``SimpleNamespace``.

The per-session reduction is the same whether one session detail or a
whole squad list is being built: :func:`aggregate_many` groups once and
calls the same tally for every session.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from squadplanner.database.models import CheckinStatus, RsvpResponse

__all__ = [
    "AttendanceSummary",
    "CheckinCounts",
    "RsvpCounts",
    "aggregate",
    "aggregate_checkins",
    "aggregate_many",
]


@dataclass(frozen=True, slots=True)
class RsvpCounts:
    present: int = 0
    absent: int = 0
    maybe: int = 0

    @property
    def total(self) -> int:
        return self.present + self.absent + self.maybe

    def as_dict(self) -> dict[str, int]:
        return {"present": self.present, "absent": self.absent, "maybe": self.maybe}


@dataclass(frozen=True, slots=True)
class CheckinCounts:
    present: int = 0
    late: int = 0
    noshow: int = 0

    @property
    def total(self) -> int:
        return self.present + self.late + self.noshow

    def as_dict(self) -> dict[str, int]:
        return {"present": self.present, "late": self.late, "noshow": self.noshow}


@dataclass(frozen=True, slots=True)
class AttendanceSummary:
    """Counts per RSVP category plus the requesting member's own answer."""

    counts: RsvpCounts
    mine: RsvpResponse | None = None


# ---------------------------------------------------------------------------
# Core tally
# ---------------------------------------------------------------------------
def _timestamp(row: Any, field: str) -> datetime | None:
    return getattr(row, field, None)


def _current_by_user(
    rows: Iterable[Any], value_field: str, time_field: str
) -> dict[Any, str]:
    """Collapse rows to one value per user; the latest timestamp wins."""
    latest: dict[Any, tuple[datetime | None, str]] = {}
    for row in rows:
        stamp = _timestamp(row, time_field)
        seen = latest.get(row.user_id)
        if seen is None or _is_newer(stamp, seen[0]):
            latest[row.user_id] = (stamp, str(getattr(row, value_field)))
    return {user_id: value for user_id, (_, value) in latest.items()}


def _is_newer(candidate: datetime | None, current: datetime | None) -> bool:
    if current is None:
        return True
    if candidate is None:
        return False
    try:
        return candidate >= current
    except TypeError:
        # Mixed naive/aware stamps from different sources; keep arrival order.
        return True


def _tally(values: Iterable[str], categories: Sequence[str]) -> dict[str, int]:
    counts = dict.fromkeys(categories, 0)
    for value in values:
        if value in counts:
            counts[value] += 1
    return counts


def _summarize(rows: Sequence[Any], requesting_user_id: Any | None) -> AttendanceSummary:
    current = _current_by_user(rows, "response", "responded_at")
    counts = _tally(current.values(), [r.value for r in RsvpResponse])
    mine_raw = current.get(requesting_user_id) if requesting_user_id is not None else None
    return AttendanceSummary(
        counts=RsvpCounts(**counts),
        mine=RsvpResponse(mine_raw) if mine_raw in counts else None,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def aggregate(
    session_id: Any,
    responses: Iterable[Any],
    requesting_user_id: Any | None,
) -> AttendanceSummary:
    """Reduce the RSVPs of one session.

    Rows belonging to other sessions are ignored, so callers may pass a
    batch fetched for many sessions.
    """
    rows = [r for r in responses if r.session_id == session_id]
    return _summarize(rows, requesting_user_id)


def aggregate_many(
    session_ids: Iterable[Any],
    responses: Iterable[Any],
    requesting_user_id: Any | None,
) -> dict[Any, AttendanceSummary]:
    """Aggregate a batch of sessions in one pass over *responses*."""
    grouped: dict[Any, list[Any]] = defaultdict(list)
    for row in responses:
        grouped[row.session_id].append(row)
    return {
        sid: _summarize(grouped.get(sid, []), requesting_user_id)
        for sid in session_ids
    }


def aggregate_checkins(session_id: Any, checkins: Iterable[Any]) -> CheckinCounts:
    """Count check-in outcomes for one session."""
    rows = [c for c in checkins if c.session_id == session_id]
    current = _current_by_user(rows, "status", "checked_at")
    return CheckinCounts(**_tally(current.values(), [c.value for c in CheckinStatus]))
