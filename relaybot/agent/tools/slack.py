"""Slack tools bound to the request being processed."""

from typing import Any

from relaybot.agent.context import ContextProvider, format_thread_messages, parse_slack_thread_url
from relaybot.agent.request import CommandRequest
from relaybot.agent.tools.base import Tool
from relaybot.channels.base import Messenger

THREAD_FETCH_LIMIT = 100


class FetchChannelContextTool(Tool):
    def __init__(self, context: ContextProvider, request: CommandRequest):
        self.context = context
        self.request = request

    @property
    def name(self) -> str:
        return "fetch_channel_context"

    @property
    def description(self) -> str:
        return "Fetch the most recent messages of the current Slack channel, newest first."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"fresh": {"type": "boolean", "description": "Bypass the short-lived cache"}},
        }

    async def execute(self, fresh: bool = False, **kwargs: Any) -> str:
        if fresh:
            return await self.context.get_fresh_context(self.request.channel_id)
        return await self.context.get_cached_context(self.request.channel_id)


class ReplyInThreadTool(Tool):
    """Post to the request's thread (or the channel when there is no thread yet)."""

    def __init__(self, messenger: Messenger, request: CommandRequest):
        self.messenger = messenger
        self.request = request

    @property
    def name(self) -> str:
        return "reply_in_thread"

    @property
    def description(self) -> str:
        return (
            "Post a message in the Slack thread of this request. If you use this for your answer, "
            "your final response will not be posted again."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"text": {"type": "string", "description": "Message text (Slack mrkdwn)", "minLength": 1}},
            "required": ["text"],
        }

    async def execute(self, text: str, **kwargs: Any) -> str:
        if self.request.thread_ts:
            await self.messenger.post_thread_reply(self.request.channel_id, self.request.thread_ts, text)
            return "Reply posted in thread."
        await self.messenger.post_message(self.request.channel_id, text)
        return "Reply posted in channel."


class FetchThreadContextTool(Tool):
    def __init__(self, messenger: Messenger):
        self.messenger = messenger

    @property
    def name(self) -> str:
        return "fetch_thread_context"

    @property
    def description(self) -> str:
        return "Read every message of a Slack thread given its permalink URL."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"url": {"type": "string", "description": "Slack message or thread permalink"}},
            "required": ["url"],
        }

    async def execute(self, url: str, **kwargs: Any) -> str:
        try:
            channel_id, thread_ts = parse_slack_thread_url(url)
        except ValueError as e:
            return f"Error: {e}"
        messages = await self.messenger.fetch_thread_replies(channel_id, thread_ts, THREAD_FETCH_LIMIT)
        return f"Thread {channel_id}/{thread_ts} ({len(messages)} message(s)):\n" + format_thread_messages(messages)


class GetSlackUserInfoTool(Tool):
    def __init__(self, messenger: Messenger):
        self.messenger = messenger

    @property
    def name(self) -> str:
        return "get_slack_user_info"

    @property
    def description(self) -> str:
        return "Look up a Slack user's name, email and title by user id (e.g. U012ABC)."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"user_id": {"type": "string", "description": "Slack user id"}},
            "required": ["user_id"],
        }

    async def execute(self, user_id: str, **kwargs: Any) -> str:
        info = await self.messenger.get_user_info(user_id.strip("<@>"))
        return "\n".join(f"{k}: {v}" for k, v in info.items() if v)


def slack_tools(messenger: Messenger, context: ContextProvider, request: CommandRequest) -> list[Tool]:
    return [
        FetchChannelContextTool(context, request),
        ReplyInThreadTool(messenger, request),
        FetchThreadContextTool(messenger),
        GetSlackUserInfoTool(messenger),
    ]
