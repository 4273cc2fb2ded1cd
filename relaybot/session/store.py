"""Thread sessions: time-boxed follow-up windows keyed by (channel, thread)."""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

DEFAULT_SESSION_TTL = 180.0


@dataclass
class ThreadSession:
    """
    One active thread conversation.

    `router` is whatever object should receive follow-ups for this thread;
    it only needs a `handle_thread_reply` coroutine method.
    """

    channel_id: str
    thread_ts: str
    user_id: str
    agent_id: str
    router: Any
    created_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    _timer: asyncio.TimerHandle | None = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def key(self) -> str:
        return session_key(self.channel_id, self.thread_ts)

    def touch(self, reschedule) -> None:
        """Bump last_seen and replace the expiry timer."""
        with self._lock:
            self.last_seen = time.time()
            if self._timer is not None:
                self._timer.cancel()
            self._timer = reschedule()

    def cancel_timer(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


@dataclass
class SessionStats:
    """Point-in-time counters for the session store."""

    active: int
    total_opened: int
    total_expired: int
    total_closed: int
    session_ttl: float


def session_key(channel_id: str, thread_ts: str) -> str:
    return f"{channel_id}:{thread_ts}"


class SessionStore:
    """
    Registry of active thread sessions with sliding-window expiry.

    Every session owns an asyncio timer that calls `_expire` after the TTL;
    `open` on an existing key and every successful `lookup` push the timer
    back. The store map and counters share one lock, each session has its
    own lock for its timer and last-seen time.
    """

    def __init__(self, ttl: float = DEFAULT_SESSION_TTL):
        self.ttl = ttl if ttl and ttl > 0 else DEFAULT_SESSION_TTL
        self._sessions: dict[str, ThreadSession] = {}
        self._lock = threading.Lock()
        self._total_opened = 0
        self._total_expired = 0
        self._total_closed = 0

    def open(self, channel_id: str, thread_ts: str, user_id: str, agent_id: str, router: Any) -> ThreadSession:
        """
        Register a thread session, or refresh it if one is already live.

        Must be called from within a running event loop.
        """
        loop = asyncio.get_running_loop()
        key = session_key(channel_id, thread_ts)

        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = ThreadSession(
                    channel_id=channel_id,
                    thread_ts=thread_ts,
                    user_id=user_id,
                    agent_id=agent_id,
                    router=router,
                )
                self._sessions[key] = session
                self._total_opened += 1
                created = True
            else:
                created = False

        session.touch(lambda: loop.call_later(self.ttl, self._expire, key, session))
        if created:
            logger.info(f"Thread session opened: {key} (user={user_id}, agent={agent_id}, ttl={self.ttl:.0f}s)")
        else:
            logger.debug(f"Thread session refreshed: {key}")
        return session

    def lookup(self, channel_id: str, thread_ts: str) -> ThreadSession | None:
        """Return the live session for a thread and extend its TTL."""
        key = session_key(channel_id, thread_ts)
        with self._lock:
            session = self._sessions.get(key)
        if session is None:
            return None

        loop = asyncio.get_running_loop()
        session.touch(lambda: loop.call_later(self.ttl, self._expire, key, session))
        return session

    def close(self, channel_id: str, thread_ts: str, reason: str = "") -> None:
        """Remove a session and cancel its timer. Closing an unknown key is a no-op."""
        key = session_key(channel_id, thread_ts)
        with self._lock:
            session = self._sessions.pop(key, None)
            if session is None:
                return
            self._total_closed += 1

        session.cancel_timer()
        lifetime = time.time() - session.created_at
        logger.info(f"Thread session closed: {key} (reason={reason or 'unspecified'}, lifetime={lifetime:.1f}s)")

    def _expire(self, key: str, session: ThreadSession) -> None:
        """Timer callback: drop the session only if it is still the one in the map."""
        with self._lock:
            if self._sessions.get(key) is not session:
                return
            del self._sessions[key]
            self._total_expired += 1

        lifetime = time.time() - session.created_at
        logger.info(f"Thread session expired: {key} (lifetime={lifetime:.1f}s)")

    def stats(self) -> SessionStats:
        with self._lock:
            return SessionStats(
                active=len(self._sessions),
                total_opened=self._total_opened,
                total_expired=self._total_expired,
                total_closed=self._total_closed,
                session_ttl=self.ttl,
            )

    def shutdown(self) -> None:
        """Cancel every pending timer and drop all sessions."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.cancel_timer()
        if sessions:
            logger.debug(f"Dropped {len(sessions)} thread session(s) on shutdown")
