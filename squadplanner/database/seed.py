"""
squadplanner.database.seed — Default Challenge Seeder
======================================================

Baseline challenges seeded on first startup so "present" RSVPs advance
something out of the box.

Idempotent — only inserts titles that don't already exist.  Challenges
edited or added later are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from squadplanner.constants import PROGRESS_DAILY_RSVP, PROGRESS_RSVP
from squadplanner.database.models import Challenge

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default challenge catalogue
# ---------------------------------------------------------------------------
DEFAULT_CHALLENGES: dict[str, tuple[str, int, int, str]] = {
    "Reliable Teammate": (PROGRESS_RSVP, 5, 50, "Answer Present to 5 sessions"),
    "Squad Pillar": (PROGRESS_RSVP, 25, 250, "Answer Present to 25 sessions"),
    "Daily Check": (PROGRESS_DAILY_RSVP, 1, 10, "Answer Present to a session today"),
}
"""Each entry maps ``title`` → ``(counter_key, count, xp_reward, description)``."""


def seed_default_challenges(engine: Engine) -> int:
    """Insert any missing default challenges.  Returns the number inserted."""
    with Session(engine) as session:
        existing = set(session.scalars(select(Challenge.title)).all())
        inserted = 0
        for title, (counter_key, count, xp_reward, description) in DEFAULT_CHALLENGES.items():
            if title in existing:
                continue
            session.add(Challenge(
                title=title,
                description=description,
                requirements={"type": counter_key, "count": count},
                xp_reward=xp_reward,
                is_active=True,
            ))
            inserted += 1
        session.commit()

    if inserted:
        logger.info("Seeded %d default challenges.", inserted)
    return inserted
