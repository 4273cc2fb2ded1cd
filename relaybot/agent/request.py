"""Inbound command shape shared by the router and context-aware tools."""

from dataclasses import dataclass


@dataclass
class CommandRequest:
    """One slash command or thread follow-up being processed."""

    channel_id: str
    user_id: str
    text: str
    response_url: str = ""
    thread_ts: str = ""  # audit message / thread the run is attached to
    is_follow_up: bool = False

