"""Messaging collaborator interface."""

from abc import ABC, abstractmethod
from typing import Any


class Messenger(ABC):
    """
    What the agent needs from a chat platform.

    Messages are the platform's raw dicts (Slack `conversations.history`
    shape: `ts`, `text`, `user`, `username`, `bot_id`, `attachments`,
    `blocks`, `thread_ts`). Channel history is returned newest first.
    """

    @abstractmethod
    async def fetch_channel_history(self, channel_id: str, limit: int) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def fetch_thread_replies(self, channel_id: str, thread_ts: str, limit: int) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def post_message(self, channel_id: str, text: str) -> str:
        """Post to a channel and return the message ts (usable as a thread anchor)."""
        pass

    @abstractmethod
    async def post_thread_reply(self, channel_id: str, thread_ts: str, text: str) -> None:
        pass

    @abstractmethod
    async def post_ephemeral(self, channel_id: str, user_id: str, text: str) -> None:
        pass

    @abstractmethod
    async def respond(self, response_url: str, text: str, ephemeral: bool = False) -> None:
        """Answer a slash command through its response URL."""
        pass

    @abstractmethod
    async def get_user_info(self, user_id: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_permalink(self, channel_id: str, message_ts: str) -> str:
        pass

    @abstractmethod
    async def get_bot_user_id(self) -> str:
        """The bot's own user id, so its messages can be told apart."""
        pass
