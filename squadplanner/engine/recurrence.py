"""
squadplanner.engine.recurrence — Weekly Recurrence Rules
=========================================================

Pure date arithmetic.  No DB I/O, no clock reads: every function takes
``now`` explicitly so callers (and tests) control time.

Weekdays are **Monday-first** (0 = Monday … 6 = Sunday), the same indexing
as :meth:`datetime.weekday`.  Day lists coming from a Sunday-first source
must go through :func:`sunday_to_monday` before use.

Rule text form::

    weekly:<d,d,...>:<HH>:<MM>      e.g.  weekly:0,4:21:00  (Mon + Fri, 21:00)
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta

from squadplanner.constants import WEEKDAY_NAMES
from squadplanner.errors import ValidationError

__all__ = [
    "RecurrenceRule",
    "next_occurrence",
    "normalize_weekdays",
    "sunday_to_monday",
    "to_utc",
]

RULE_PREFIX = "weekly"


def sunday_to_monday(day: int) -> int:
    """Convert a Sunday-first weekday index (0 = Sunday) to Monday-first."""
    return (day - 1) % 7


def normalize_weekdays(weekdays: Iterable[int], hour: int, minute: int) -> tuple[int, ...]:
    """Validate a weekly rule's parts; return the sorted, de-duplicated days.

    Raises
    ------
    ValidationError
        Empty weekday set, a day outside 0–6, hour outside 0–23 or minute
        outside 0–59.
    """
    raw = list(weekdays)
    if not raw:
        raise ValidationError("Recurrence rule needs at least one weekday")
    for day in raw:
        if not _is_int(day) or not 0 <= day <= 6:
            raise ValidationError(f"Invalid weekday {day!r}; expected 0 (Mon) to 6 (Sun)")
    if not _is_int(hour) or not 0 <= hour <= 23:
        raise ValidationError(f"Invalid hour {hour!r}; expected 0-23")
    if not _is_int(minute) or not 0 <= minute <= 59:
        raise ValidationError(f"Invalid minute {minute!r}; expected 0-59")
    return tuple(sorted(set(raw)))


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def next_occurrence(
    weekdays: Iterable[int],
    hour: int,
    minute: int,
    now: datetime,
) -> datetime:
    """Return the first configured slot strictly after *now*.

    The slot is computed in *now*'s timezone (wall-clock), so a 21:00 rule
    stays at 21:00 local time across DST changes.  "After" is decided on
    the absolute instant, never on wall-clock fields:

    * a slot inside a repeated autumn hour is its first occurrence
      (``fold=0``);
    * a slot inside a skipped spring hour resolves with the pre-transition
      offset, i.e. one hour later on the new clock.

    Resolution:
      1. Today, if today is configured and the slot is still ahead of *now*.
      2. The nearest later configured weekday this week.
      3. The earliest configured weekday next week.  A single weekday whose
         slot already passed today wraps a full 7 days.
    """
    days = normalize_weekdays(weekdays, hour, minute)
    instant = _instant(now)
    slot = time(hour, minute)

    # Offset 7 is today's weekday next week, always later than now.
    for offset in range(8):
        day = now.date() + timedelta(days=offset)
        if day.weekday() not in days:
            continue
        candidate = datetime.combine(day, slot, tzinfo=now.tzinfo)
        if _instant(candidate) > instant:
            return candidate
    raise AssertionError("unreachable: a configured weekday recurs within 7 days")


def _instant(value: datetime) -> datetime:
    # Same-zone aware datetimes compare by wall clock; UTC compares instants.
    return value if value.tzinfo is None else value.astimezone(UTC)


def to_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime.  Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# RecurrenceRule — parsed, validated weekly rule
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    """A validated weekly rule.  Construction normalizes and validates."""

    weekdays: tuple[int, ...]
    hour: int
    minute: int

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "weekdays", normalize_weekdays(self.weekdays, self.hour, self.minute)
        )

    @classmethod
    def parse(cls, text: str, *, sunday_first: bool = False) -> RecurrenceRule:
        """Parse ``weekly:0,4:21:00``.

        Set *sunday_first* for rules written with 0 = Sunday.
        """
        parts = (text or "").strip().split(":", 2)
        if len(parts) != 3 or parts[0] != RULE_PREFIX:
            raise ValidationError(f"Invalid recurrence rule format: {text!r}")

        try:
            days = [int(d) for d in parts[1].split(",") if d.strip()]
            hour_s, minute_s = parts[2].split(":")
            hour, minute = int(hour_s), int(minute_s)
        except ValueError:
            raise ValidationError(f"Invalid recurrence rule format: {text!r}") from None

        if sunday_first:
            days = [sunday_to_monday(d) if 0 <= d <= 6 else d for d in days]
        return cls(tuple(days), hour, minute)

    def format(self) -> str:
        days = ",".join(str(d) for d in self.weekdays)
        return f"{RULE_PREFIX}:{days}:{self.hour:02d}:{self.minute:02d}"

    def describe(self) -> str:
        """Human-readable form, e.g. ``"Mon, Fri at 21:00"``."""
        labels = ", ".join(WEEKDAY_NAMES[d] for d in self.weekdays)
        return f"{labels} at {self.hour:02d}:{self.minute:02d}"

    def next_after(self, now: datetime) -> datetime:
        return next_occurrence(self.weekdays, self.hour, self.minute, now)

    def __str__(self) -> str:
        return self.format()
