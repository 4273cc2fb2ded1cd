"""Per-user conversation memory, scoped to a channel."""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable

DEFAULT_MAX_TURNS = 10
MIN_TURNS = 2
DEFAULT_TTL = 600.0


@dataclass
class ConversationTurn:
    user_message: str
    assistant_reply: str = ""


@dataclass
class _Conversation:
    turns: list[ConversationTurn] = field(default_factory=list)
    last_active: float = 0.0


class ConversationMemory:
    """
    Bounded turn history per (channel, user).

    Only the newest turn may have its reply filled in after the fact. A
    conversation idle for longer than the TTL is dropped on next access.
    """

    def __init__(
        self,
        max_turns: int = DEFAULT_MAX_TURNS,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_turns = max(max_turns, MIN_TURNS)
        self.ttl = ttl
        self._clock = clock
        self._conversations: dict[str, _Conversation] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(channel_id: str, user_id: str) -> str:
        return f"{channel_id}:{user_id}"

    def _expired(self, conv: _Conversation, now: float) -> bool:
        return now - conv.last_active > self.ttl

    def add_user_message(self, channel_id: str, user_id: str, text: str) -> None:
        key = self._key(channel_id, user_id)
        now = self._clock()
        with self._lock:
            conv = self._conversations.get(key)
            if conv is None or self._expired(conv, now):
                conv = _Conversation()
                self._conversations[key] = conv
            conv.turns.append(ConversationTurn(user_message=text))
            if len(conv.turns) > self.max_turns:
                conv.turns = conv.turns[-self.max_turns:]
            conv.last_active = now

    def set_assistant_response(self, channel_id: str, user_id: str, text: str) -> None:
        key = self._key(channel_id, user_id)
        with self._lock:
            conv = self._conversations.get(key)
            if conv is None or not conv.turns:
                return
            conv.turns[-1].assistant_reply = text
            conv.last_active = self._clock()

    def get_history(self, channel_id: str, user_id: str) -> str:
        """
        Render prior turns as "User:"/"Assistant:" lines.

        The newest turn is the request currently being answered and is left out.
        """
        key = self._key(channel_id, user_id)
        with self._lock:
            conv = self._conversations.get(key)
            if conv is None or self._expired(conv, self._clock()) or len(conv.turns) <= 1:
                return ""
            prior = list(conv.turns[:-1])

        lines = []
        for turn in prior:
            lines.append(f"User: {turn.user_message}\n")
            if turn.assistant_reply:
                lines.append(f"Assistant: {turn.assistant_reply}\n")
        return "".join(lines)

    def turns(self, channel_id: str, user_id: str) -> list[ConversationTurn]:
        """Copy of the stored turns, oldest first."""
        with self._lock:
            conv = self._conversations.get(self._key(channel_id, user_id))
            if conv is None:
                return []
            return [ConversationTurn(t.user_message, t.assistant_reply) for t in conv.turns]

    def clear(self, channel_id: str, user_id: str) -> None:
        with self._lock:
            self._conversations.pop(self._key(channel_id, user_id), None)
