"""Agent tools module."""

from relaybot.agent.tools.base import Tool
from relaybot.agent.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolRegistry"]
