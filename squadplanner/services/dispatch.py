"""
squadplanner.services.dispatch — Best-Effort Side-Effect Fan-Out
=================================================================

After a state-changing action succeeds, the coordinator fires chat
notifications, gamification progress and a UI cue.  None of them may undo
or fail the action, so each runs behind its own guard:

* synchronous callables go to a worker thread via ``run_db``;
* coroutine functions are awaited directly;
* any exception is logged with the step name and swallowed.

:meth:`BestEffortDispatcher.fan_out` issues a batch concurrently with
``asyncio.gather`` — one failure never prevents the others.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from squadplanner.database.engine import run_db
from squadplanner.errors import SideEffectError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SideEffect:
    """One deferred call: ``func(*args, **kwargs)`` labelled *step*."""

    step: str
    func: Callable[..., Any]
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)


async def call_maybe_async(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Await *func* if it is a coroutine function, else run it on a thread."""
    if inspect.iscoroutinefunction(func):
        return await func(*args, **kwargs)
    result = await run_db(func, *args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


class BestEffortDispatcher:
    """Runs side effects and records which ones failed."""

    def __init__(self) -> None:
        self.failures: list[SideEffectError] = []

    async def run(self, step: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> bool:
        """Invoke one side effect.  Returns ``True`` on success."""
        try:
            await call_maybe_async(func, *args, **kwargs)
        except Exception as exc:
            self.failures.append(SideEffectError(step, exc))
            logger.exception("Side effect '%s' failed", step, extra={"step": step})
            return False
        return True

    async def fan_out(self, effects: list[SideEffect]) -> list[bool]:
        """Run *effects* concurrently; one outcome per effect, in order."""
        if not effects:
            return []
        return list(await asyncio.gather(
            *(self.run(e.step, e.func, *e.args, **e.kwargs) for e in effects)
        ))
