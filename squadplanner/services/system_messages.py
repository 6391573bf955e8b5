"""
squadplanner.services.system_messages — Squad Chat System Notices
==================================================================

Writes ``messages`` rows flagged ``is_system_message`` into a squad's chat
when a member answers an RSVP or a session gets confirmed.

Formats::

    Alice answered Present for Raid Night
    Alice answered Maybe for the session          (untitled session)
    Raid Night confirmed for Fri 14 Mar at 21:00
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from squadplanner.constants import rsvp_label
from squadplanner.database.engine import get_session
from squadplanner.database.models import Message

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TITLE = "Session"


def format_rsvp_message(actor_name: str, session_title: str | None, response: str) -> str:
    target = session_title or "the session"
    return f"{actor_name} answered {rsvp_label(response)} for {target}"


def format_confirmed_message(session_title: str | None, scheduled_at: datetime) -> str:
    when = scheduled_at.strftime("%a %d %b at %H:%M")
    return f"{session_title or DEFAULT_SESSION_TITLE} confirmed for {when}"


class SystemMessageNotifier:
    """Notifier backed by the squad's chat table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _post(self, squad_id: str, content: str, session_id: str | None) -> Message:
        msg = Message(
            squad_id=squad_id,
            session_id=session_id,
            sender_id=None,
            content=content,
            is_system_message=True,
        )
        with get_session(self._engine) as session:
            session.add(msg)
        logger.debug("System message posted to squad %s: %s", squad_id, content)
        return msg

    def send_rsvp_message(
        self,
        squad_id: str,
        actor_name: str,
        session_title: str | None,
        response: str,
        session_id: str | None = None,
    ) -> Message:
        return self._post(
            squad_id, format_rsvp_message(actor_name, session_title, response), session_id
        )

    def send_session_confirmed_message(
        self,
        squad_id: str,
        session_title: str | None,
        scheduled_at: datetime,
        session_id: str | None = None,
    ) -> Message:
        return self._post(
            squad_id, format_confirmed_message(session_title, scheduled_at), session_id
        )
