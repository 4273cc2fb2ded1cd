"""Agent core module."""

from relaybot.agent.loop import RunResult, RunState, ToolCallLoop
from relaybot.agent.router import CommandRouter, Intent, IntentRouter

__all__ = ["ToolCallLoop", "RunState", "RunResult", "CommandRouter", "IntentRouter", "Intent"]
