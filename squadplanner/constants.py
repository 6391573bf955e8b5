"""
squadplanner.constants — Shared Constants & Helpers
====================================================

Single source of truth for scheduling defaults, response labels and the
gamification counter keys.  Import from here instead of duplicating in
services, routes and cogs.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Session defaults
# ---------------------------------------------------------------------------
DEFAULT_DURATION_MINUTES = 120
DEFAULT_AUTO_CONFIRM_THRESHOLD = 3
UPCOMING_SESSIONS_LIMIT = 20

# ---------------------------------------------------------------------------
# Gamification progress counters fired on a "present" RSVP
# ---------------------------------------------------------------------------
PROGRESS_RSVP = "rsvp"
PROGRESS_DAILY_RSVP = "daily_rsvp"
PRESENT_RSVP_COUNTERS: tuple[str, ...] = (PROGRESS_RSVP, PROGRESS_DAILY_RSVP)

# ---------------------------------------------------------------------------
# Presentation (chat notices, embeds)
# ---------------------------------------------------------------------------
RSVP_LABELS: dict[str, str] = {
    "present": "Present",
    "absent": "Absent",
    "maybe": "Maybe",
}

CHECKIN_LABELS: dict[str, str] = {
    "present": "On time",
    "late": "Late",
    "noshow": "No-show",
}

STATUS_EMOJI: dict[str, str] = {
    "proposed": "\U0001f5d3",   # 🗓
    "confirmed": "✅",      # ✅
    "cancelled": "❌",      # ❌
}

# Monday-first, matching ``datetime.weekday()``
WEEKDAY_NAMES: list[str] = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def rsvp_label(response: str) -> str:
    """Human label for an RSVP value; unknown values pass through."""
    return RSVP_LABELS.get(str(response), str(response))
