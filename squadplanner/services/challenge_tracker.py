"""
squadplanner.services.challenge_tracker — Gamification Progress
================================================================

Advances every active challenge whose ``requirements["type"]`` matches a
counter key.  Progress is capped at the target; the row is stamped
``completed_at`` once the target is reached and never touched again.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from squadplanner.database.engine import get_session
from squadplanner.database.models import Challenge, UserChallenge

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _target_of(challenge: Challenge) -> int:
    try:
        count = int((challenge.requirements or {}).get("count") or 1)
    except (TypeError, ValueError):
        count = 1
    return max(count, 1)


def _advance(session: Session, user_id: str, challenge: Challenge, now: datetime) -> bool:
    """Advance one challenge for *user_id*.  Returns True if a row changed."""
    row = session.scalar(
        select(UserChallenge).where(
            UserChallenge.user_id == user_id,
            UserChallenge.challenge_id == challenge.id,
        )
    )
    if row is None:
        target = _target_of(challenge)
        row = UserChallenge(
            user_id=user_id,
            challenge_id=challenge.id,
            progress=1,
            target=target,
            completed_at=now if target <= 1 else None,
        )
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(row)
                session.flush()
            return True
        except IntegrityError:
            # Another request created it first; advance that row instead.
            row = session.scalar(
                select(UserChallenge).where(
                    UserChallenge.user_id == user_id,
                    UserChallenge.challenge_id == challenge.id,
                )
            )
            if row is None:
                raise

    if row.completed_at is not None:
        return False

    row.progress = min(row.progress + 1, row.target)
    row.updated_at = now
    if row.progress >= row.target:
        row.completed_at = now
        logger.info("User %s completed challenge %r", user_id, challenge.title)
    return True


class ChallengeTracker:
    """ProgressTracker over ``challenges`` / ``user_challenges``."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def track_progress(self, user_id: str, counter_key: str) -> int:
        """Bump every active challenge keyed by *counter_key*.

        Returns the number of challenges advanced.
        """
        now = datetime.now(UTC)
        advanced = 0
        with get_session(self._engine) as session:
            challenges = session.scalars(
                select(Challenge).where(Challenge.is_active.is_(True))
            ).all()
            for challenge in challenges:
                if (challenge.requirements or {}).get("type") != counter_key:
                    continue
                if _advance(session, user_id, challenge, now):
                    advanced += 1
        logger.debug("Progress '%s' for %s advanced %d challenges", counter_key, user_id, advanced)
        return advanced
