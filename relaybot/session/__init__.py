"""Thread session management."""

from relaybot.session.store import SessionStats, SessionStore, ThreadSession

__all__ = ["SessionStore", "SessionStats", "ThreadSession"]
