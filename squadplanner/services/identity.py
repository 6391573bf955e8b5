"""
squadplanner.services.identity — Acting Member Resolution
==========================================================

The coordinator never reads auth state itself; it asks an :class:`Identity`
for the current actor.  The API builds one per request from the bearer
token, the bot builds one per interaction from the linked profile.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class Actor:
    """The member performing an action."""

    id: str
    display_name: str | None = None


class Identity(Protocol):
    def current_actor(self) -> Actor | None: ...


class StaticIdentity:
    """Identity fixed at construction time; ``None`` means anonymous."""

    def __init__(self, actor: Actor | None) -> None:
        self._actor = actor

    def current_actor(self) -> Actor | None:
        return self._actor

    def __repr__(self) -> str:
        return f"<StaticIdentity actor={self._actor!r}>"
