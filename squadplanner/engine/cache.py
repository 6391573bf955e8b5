"""
squadplanner.engine.cache — In-Memory Session View Cache with PG LISTEN/NOTIFY
===============================================================================

Holds the read models the API and the bot serve: a session's detail, a
squad's session list and a member's upcoming sessions.  All three carry the
requesting member's own RSVP, so every entry is keyed by viewer too.

Invalidation points are explicit: the action coordinator calls
:meth:`SessionCache.invalidate` after every successful write and then
stores a freshly fetched detail.  There is no TTL.

The API, the bot and every uvicorn worker hold their own cache, so each
write is also published with :func:`send_notify` on the ``session_changed``
PostgreSQL channel.  Every process runs :meth:`SessionCache.start_listener`
and drops the same views when the NOTIFY arrives.  If the listener gives up
reconnecting, the cache stops serving reads until it is restarted.
"""

from __future__ import annotations

import json
import logging
import random
import select as _select
import threading
import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# The PG channel name used for session view invalidation
NOTIFY_CHANNEL = "session_changed"


def _is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"


class SessionCache:
    """Thread-safe cache for session views.

    Usage:
        cache = SessionCache()
        cache.start_listener(engine)

        cache.store_detail(detail, viewer_id)
        cache.get_detail(session_id, viewer_id)
        cache.invalidate(session_id, squad_id)
        send_notify(engine, session_id, squad_id, origin=cache.origin)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        # (session_id, viewer_id) → SessionDetail
        self._details: dict[tuple[Any, Any], Any] = {}
        # (squad_id, viewer_id) → list[SessionView]
        self._lists: dict[tuple[Any, Any], list[Any]] = {}
        # viewer_id → list[SessionView]
        self._upcoming: dict[Any, list[Any]] = {}

        # Tags our own NOTIFYs so the listener can skip them.
        self.origin = uuid.uuid4().hex

        self._listener_healthy: bool = False
        self._listener_failed: bool = False
        self._listener_thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    # -------------------------------------------------------------------
    # Session detail
    # -------------------------------------------------------------------
    def store_detail(self, detail: Any, viewer_id: Any) -> None:
        with self._lock:
            self._details[(detail.session.id, viewer_id)] = detail

    def get_detail(self, session_id: Any, viewer_id: Any) -> Any | None:
        if self._listener_failed:
            return None
        with self._lock:
            return self._details.get((session_id, viewer_id))

    # -------------------------------------------------------------------
    # Squad session lists
    # -------------------------------------------------------------------
    def store_list(self, squad_id: Any, viewer_id: Any, views: list[Any]) -> None:
        with self._lock:
            self._lists[(squad_id, viewer_id)] = list(views)

    def get_list(self, squad_id: Any, viewer_id: Any) -> list[Any] | None:
        if self._listener_failed:
            return None
        with self._lock:
            views = self._lists.get((squad_id, viewer_id))
            return list(views) if views is not None else None

    # -------------------------------------------------------------------
    # Upcoming sessions across a member's squads
    # -------------------------------------------------------------------
    def store_upcoming(self, viewer_id: Any, views: list[Any]) -> None:
        with self._lock:
            self._upcoming[viewer_id] = list(views)

    def get_upcoming(self, viewer_id: Any) -> list[Any] | None:
        if self._listener_failed:
            return None
        with self._lock:
            views = self._upcoming.get(viewer_id)
            return list(views) if views is not None else None

    # -------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------
    def invalidate(self, session_id: Any | None, squad_id: Any | None) -> None:
        """Drop every view that can contain *session_id* or *squad_id*.

        Upcoming lists span squads, so they are all dropped.
        """
        with self._lock:
            if session_id is not None:
                for key in [k for k in self._details if k[0] == session_id]:
                    del self._details[key]
            if squad_id is not None:
                for key in [k for k in self._lists if k[0] == squad_id]:
                    del self._lists[key]
            self._upcoming.clear()
        logger.debug("Session cache invalidated: session=%s squad=%s", session_id, squad_id)

    def clear(self) -> None:
        with self._lock:
            self._details.clear()
            self._lists.clear()
            self._upcoming.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._details) + len(self._lists) + len(self._upcoming)

    # -------------------------------------------------------------------
    # Cross-process invalidation via NOTIFY
    # -------------------------------------------------------------------
    def handle_notify(self, payload: str) -> None:
        """Invalidate the views named by a ``session_changed`` payload."""
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid session NOTIFY payload (not JSON): %s", payload)
            return
        if not isinstance(data, dict):
            logger.warning("Invalid session NOTIFY payload: %s", payload)
            return
        if data.get("origin") == self.origin:
            return
        self.invalidate(data.get("session_id"), data.get("squad_id"))

    @property
    def listener_healthy(self) -> bool:
        """Return True if the LISTEN thread is alive and connected."""
        return self._listener_healthy and not self._listener_failed

    @property
    def listener_failed(self) -> bool:
        """Return True if the listener exhausted reconnect attempts."""
        return self._listener_failed

    def stop_listener(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_thread.join(timeout=5)
            logger.info("PG NOTIFY listener thread stopped")

    def start_listener(self, engine: Engine) -> None:
        """Start a background thread that LISTENs on :data:`NOTIFY_CHANNEL`.

        Only PostgreSQL has LISTEN; on any other backend this is a no-op
        and the cache stays process-local.  The thread reconnects with
        exponential backoff + jitter if the connection drops.
        """
        if not _is_postgres(engine):
            logger.info("Session NOTIFY listener skipped (%s backend)", engine.dialect.name)
            return

        import psycopg2

        max_backoff = 60.0
        base_backoff = 1.0
        max_reconnect_attempts = 10

        def _listen_thread() -> None:
            # str(engine.url) masks the password; psycopg2 needs the real one.
            raw_url = engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {NOTIFY_CHANNEL};")
                    logger.info("PG LISTEN started on channel '%s'", NOTIFY_CHANNEL)

                    # Anything written while we were disconnected was missed.
                    self.clear()
                    attempt = 0
                    self._listener_healthy = True

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            logger.debug("NOTIFY received: %s", notify.payload)
                            self.handle_notify(notify.payload or "")

                except Exception:
                    self._listener_healthy = False
                    attempt += 1

                    if attempt >= max_reconnect_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. "
                            "Session cache disabled.",
                            max_reconnect_attempts,
                        )
                        self._listener_failed = True
                        self.clear()
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). "
                        "Reconnecting in %.1fs…",
                        attempt, max_reconnect_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except psycopg2.Error:
                            logger.debug("Closing the LISTEN connection failed", exc_info=True)

        thread = threading.Thread(target=_listen_thread, daemon=True, name="pg-notify-listener")
        self._listener_thread = thread
        thread.start()
        logger.info("PG NOTIFY listener thread started")


def notify_payload(session_id: Any | None, squad_id: Any | None, origin: str | None = None) -> str:
    return json.dumps({"session_id": session_id, "squad_id": squad_id, "origin": origin})


def send_notify(
    engine: Engine,
    session_id: Any | None,
    squad_id: Any | None,
    origin: str | None = None,
) -> bool:
    """Publish a session change on :data:`NOTIFY_CHANNEL`.

    Returns ``False`` without touching the database on backends that have
    no NOTIFY.  The payload is passed as a bind parameter to ``pg_notify``.
    """
    if not _is_postgres(engine):
        return False
    with engine.connect() as conn:
        conn.execute(
            text("SELECT pg_notify(:channel, :payload)"),
            {"channel": NOTIFY_CHANNEL, "payload": notify_payload(session_id, squad_id, origin)},
        )
        conn.commit()
    return True
