"""Channel context retrieval and Slack message rendering."""

import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

from loguru import logger

from relaybot.channels.base import Messenger

DEFAULT_MESSAGE_LIMIT = 30
DEFAULT_CACHE_TTL = 30.0

NO_MESSAGES = "(no recent messages)"
NO_MESSAGES_WITH_CONTENT = "(no recent messages with content)"

_SLACK_LINK_RE = re.compile(r"<(https?://[^|>]+)\|([^>]+)>")
_SLACK_BARE_LINK_RE = re.compile(r"<(https?://[^|>]+)>")
_THREAD_URL_RE = re.compile(r"https://[^/]+\.slack\.com/archives/([A-Z0-9]+)/p(\d{10})(\d{6})")


def is_empty_context(text: str) -> bool:
    """True for the sentinels returned when there is nothing usable to show."""
    return text in (NO_MESSAGES, NO_MESSAGES_WITH_CONTENT) or not text.strip()


def expand_slack_links(text: str) -> str:
    """Rewrite Slack mrkdwn links: <url|label> -> "label: url", <url> -> url."""
    text = _SLACK_LINK_RE.sub(lambda m: f"{m.group(2)}: {m.group(1)}", text)
    return _SLACK_BARE_LINK_RE.sub(lambda m: m.group(1), text)


def parse_slack_thread_url(url: str) -> tuple[str, str]:
    """
    Extract (channel_id, thread_ts) from a Slack message permalink.

    An explicit ?thread_ts= query parameter takes precedence over the
    timestamp encoded in the path (which points at the reply, not the parent).

    Raises:
        ValueError: If the URL is not a Slack archive permalink.
    """
    m = _THREAD_URL_RE.search(url)
    if not m:
        raise ValueError(f"not a Slack thread URL: {url}")
    channel_id = m.group(1)
    thread_ts = f"{m.group(2)}.{m.group(3)}"

    query = parse_qs(urlparse(url).query)
    if query.get("thread_ts"):
        thread_ts = query["thread_ts"][0]
    return channel_id, thread_ts


def extract_message_content(msg: dict[str, Any]) -> str:
    """Collect every human-readable bit of a message: text, attachments, block buttons."""
    parts: list[str] = []

    if text := (msg.get("text") or "").strip():
        parts.append(expand_slack_links(text))

    for att in msg.get("attachments") or []:
        att_parts: list[str] = []
        if pretext := att.get("pretext"):
            att_parts.append(expand_slack_links(pretext))
        if title := att.get("title"):
            link = att.get("title_link")
            att_parts.append(f"{title} ({link})" if link else title)
        if att_text := att.get("text"):
            att_parts.append(expand_slack_links(att_text))
        for fld in att.get("fields") or []:
            att_parts.append(f"{fld.get('title', '')}: {expand_slack_links(fld.get('value', ''))}")
        for action in att.get("actions") or []:
            if action.get("url"):
                att_parts.append(f"[{action.get('text', 'link')}]({action['url']})")
        if not att_parts and att.get("fallback"):
            att_parts.append(expand_slack_links(att["fallback"]))
        parts.extend(att_parts)

    for url in _block_button_urls(msg.get("blocks") or []):
        parts.append(url)

    return " | ".join(p for p in parts if p)


def _block_button_urls(blocks: list[dict[str, Any]]) -> list[str]:
    urls = []
    for block in blocks:
        if block.get("type") == "actions":
            for el in block.get("elements") or []:
                if el.get("type") == "button" and el.get("url"):
                    urls.append(_button_label(el))
        accessory = block.get("accessory") or {}
        if accessory.get("type") == "button" and accessory.get("url"):
            urls.append(_button_label(accessory))
    return urls


def _button_label(el: dict[str, Any]) -> str:
    label = (el.get("text") or {}).get("text", "")
    return f"{label}: {el['url']}" if label else el["url"]


def sender_label(msg: dict[str, Any]) -> str:
    if msg.get("user"):
        return msg["user"]
    if msg.get("username"):
        return msg["username"]
    return f"bot:{msg.get('bot_id', 'unknown')}"


def format_timestamp(ts: str) -> str:
    """Slack ts ("1712345678.000100") -> local HH:MM:SS."""
    try:
        return datetime.fromtimestamp(float(ts)).strftime("%H:%M:%S")
    except (TypeError, ValueError):
        return "??:??:??"


def format_channel_messages(messages: list[dict[str, Any]]) -> str:
    """Render channel history (newest first) with sequence numbers for cross-reference."""
    if not messages:
        return NO_MESSAGES

    lines = []
    idx = 0
    for msg in messages:
        content = extract_message_content(msg)
        if not content:
            continue
        idx += 1
        latest = " [LATEST]" if idx == 1 else ""
        bot = " [BOT]" if msg.get("bot_id") else ""
        ts = msg.get("ts", "")
        lines.append(
            f"Message {idx}{latest}{bot} [{format_timestamp(ts)} @{sender_label(msg)}] (thread_ts={ts}): {content}"
        )

    if not lines:
        return NO_MESSAGES_WITH_CONTENT
    return "Messages listed from NEWEST (message 1) to OLDEST (message N):\n\n" + "\n".join(lines)


def format_thread_messages(messages: list[dict[str, Any]]) -> str:
    """Render a thread (oldest first, parent message on top)."""
    lines = []
    for i, msg in enumerate(messages):
        content = extract_message_content(msg)
        if not content:
            continue
        role = "parent" if i == 0 else "reply"
        lines.append(f"[{format_timestamp(msg.get('ts', ''))} @{sender_label(msg)}] ({role}) {content}")
    if not lines:
        return NO_MESSAGES_WITH_CONTENT
    return "\n".join(lines)


@dataclass
class _CacheEntry:
    content: str
    fetched_at: float


class ContextProvider:
    """
    Per-channel cache of rendered recent messages.

    Entries older than the TTL are ignored but left in place; the lock only
    guards the map, never the fetch, so different channels never wait on
    each other.
    """

    def __init__(
        self,
        messenger: Messenger,
        message_limit: int = DEFAULT_MESSAGE_LIMIT,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.messenger = messenger
        self.message_limit = message_limit
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    async def get_cached_context(self, channel_id: str) -> str:
        with self._lock:
            entry = self._cache.get(channel_id)
        if entry is not None and self._clock() - entry.fetched_at < self.cache_ttl:
            logger.debug(f"Channel context cache hit for {channel_id}")
            return entry.content
        return await self.get_fresh_context(channel_id)

    async def get_fresh_context(self, channel_id: str) -> str:
        """
        Fetch and render recent history, then update the cache.

        Raises whatever the messenger raises; callers decide whether missing
        context is fatal.
        """
        messages = await self.messenger.fetch_channel_history(channel_id, self.message_limit)
        content = format_channel_messages(messages)
        with self._lock:
            self._cache[channel_id] = _CacheEntry(content=content, fetched_at=self._clock())
        logger.debug(f"Fetched {len(messages)} message(s) for channel {channel_id}")
        return content
