"""Chat platform integrations."""

from relaybot.channels.base import Messenger
from relaybot.channels.slack import SlackAPIError, SlackClient

__all__ = ["Messenger", "SlackClient", "SlackAPIError"]
