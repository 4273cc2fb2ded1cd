"""
relaybot - a Slack-triggered tool-calling agent for GitHub and Jira chat-ops.
"""

__version__ = "0.1.0"
__logo__ = "🛰"
