"""Slack Web API messenger (async, httpx)."""

from typing import Any

import httpx
from loguru import logger

from relaybot.channels.base import Messenger

SLACK_API_BASE = "https://slack.com/api"


class SlackAPIError(Exception):
    """Slack answered with ok=false or a non-2xx status."""

    def __init__(self, method: str, error: str):
        super().__init__(f"Slack {method} failed: {error}")
        self.method = method
        self.error = error


class SlackClient(Messenger):
    """Messenger backed by the Slack Web API and slash-command response URLs."""

    def __init__(
        self,
        bot_token: str,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.bot_token = bot_token
        self.timeout = timeout
        self._transport = transport
        self._bot_user_id: str | None = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _call(self, method: str, params: dict[str, Any] | None = None, json_body: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.bot_token}"}
        async with self._client() as client:
            if json_body is not None:
                resp = await client.post(f"{SLACK_API_BASE}/{method}", headers=headers, json=json_body)
            else:
                resp = await client.get(f"{SLACK_API_BASE}/{method}", headers=headers, params=params or {})

        if resp.status_code >= 400:
            raise SlackAPIError(method, f"HTTP {resp.status_code}")
        data = resp.json() if resp.content else {}
        if not data.get("ok"):
            raise SlackAPIError(method, data.get("error") or "unknown_error")
        return data

    async def fetch_channel_history(self, channel_id: str, limit: int) -> list[dict[str, Any]]:
        data = await self._call("conversations.history", params={"channel": channel_id, "limit": limit})
        return data.get("messages") or []

    async def fetch_thread_replies(self, channel_id: str, thread_ts: str, limit: int) -> list[dict[str, Any]]:
        data = await self._call(
            "conversations.replies", params={"channel": channel_id, "ts": thread_ts, "limit": limit}
        )
        return data.get("messages") or []

    async def post_message(self, channel_id: str, text: str) -> str:
        data = await self._call("chat.postMessage", json_body={"channel": channel_id, "text": text})
        return data["ts"]

    async def post_thread_reply(self, channel_id: str, thread_ts: str, text: str) -> None:
        await self._call("chat.postMessage", json_body={"channel": channel_id, "thread_ts": thread_ts, "text": text})

    async def post_ephemeral(self, channel_id: str, user_id: str, text: str) -> None:
        await self._call("chat.postEphemeral", json_body={"channel": channel_id, "user": user_id, "text": text})

    async def respond(self, response_url: str, text: str, ephemeral: bool = False) -> None:
        payload = {"response_type": "ephemeral" if ephemeral else "in_channel", "text": text}
        async with self._client() as client:
            resp = await client.post(response_url, json=payload)
        if resp.status_code >= 400:
            raise SlackAPIError("response_url", f"HTTP {resp.status_code}")

    async def get_user_info(self, user_id: str) -> dict[str, Any]:
        data = await self._call("users.info", params={"user": user_id})
        user = data.get("user") or {}
        profile = user.get("profile") or {}
        return {
            "id": user.get("id", user_id),
            "name": user.get("name", ""),
            "real_name": user.get("real_name") or profile.get("real_name", ""),
            "display_name": profile.get("display_name", ""),
            "email": profile.get("email", ""),
            "title": profile.get("title", ""),
            "tz": user.get("tz", ""),
        }

    async def get_permalink(self, channel_id: str, message_ts: str) -> str:
        data = await self._call("chat.getPermalink", params={"channel": channel_id, "message_ts": message_ts})
        return data.get("permalink", "")

    async def get_bot_user_id(self) -> str:
        """The bot's own user id (auth.test), cached."""
        if self._bot_user_id is None:
            data = await self._call("auth.test")
            self._bot_user_id = data.get("user_id", "")
            logger.debug(f"Slack bot user id: {self._bot_user_id}")
        return self._bot_user_id
