"""Code-hosting and ticketing clients."""

from relaybot.clients.base import CodeHost, Tracker
from relaybot.clients.github import GitHubClient, GitHubError
from relaybot.clients.jira import JiraClient, JiraError

__all__ = ["CodeHost", "Tracker", "GitHubClient", "GitHubError", "JiraClient", "JiraError"]
