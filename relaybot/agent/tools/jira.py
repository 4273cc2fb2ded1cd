"""Jira tools. Only registered when a Jira site is configured."""

from typing import Any

from loguru import logger

from relaybot.agent.request import CommandRequest
from relaybot.agent.tools.base import Tool
from relaybot.channels.base import Messenger
from relaybot.clients.base import Issue, Tracker

_KEY = {"type": "string", "description": "Issue key, e.g. OPS-123"}


def _format_issue(issue: Issue, with_description: bool = False) -> str:
    line = f"{issue.key} [{issue.status or 'new'}] {issue.summary}"
    if issue.assignee:
        line += f" (assignee: {issue.assignee})"
    if issue.url:
        line += f" {issue.url}"
    if with_description and issue.description:
        line += f"\n\n{issue.description}"
    return line


class CreateJiraTicketTool(Tool):
    """Create an issue stamped with who asked and where."""

    def __init__(self, tracker: Tracker, messenger: Messenger, request: CommandRequest, default_project: str = ""):
        self.tracker = tracker
        self.messenger = messenger
        self.request = request
        self.default_project = default_project

    @property
    def name(self) -> str:
        return "create_jira_ticket"

    @property
    def description(self) -> str:
        return "Create a Jira issue. Assignee may be a name or email; team may be a team name."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "project": {"type": "string", "description": "Project key; defaults to the configured project"},
                "summary": {"type": "string", "minLength": 1},
                "description": {"type": "string"},
                "issue_type": {"type": "string", "description": "Task, Bug, Story, ..."},
                "labels": {"type": "array", "items": {"type": "string"}},
                "assignee": {"type": "string"},
                "team": {"type": "string"},
            },
            "required": ["summary"],
        }

    async def _stamp(self, description: str) -> str:
        stamp = f"Requested via Slack by <@{self.request.user_id}>"
        if self.request.thread_ts:
            try:
                link = await self.messenger.get_permalink(self.request.channel_id, self.request.thread_ts)
                if link:
                    stamp += f"\nSlack thread: {link}"
            except Exception as e:
                logger.warning(f"Could not fetch permalink for Jira stamp: {e}")
        return f"{description.strip()}\n\n---\n{stamp}" if description.strip() else stamp

    async def execute(
        self,
        summary: str,
        project: str | None = None,
        description: str = "",
        issue_type: str = "Task",
        labels: list[str] | None = None,
        assignee: str | None = None,
        team: str | None = None,
        **kwargs: Any,
    ) -> str:
        project = project or self.default_project
        if not project:
            return "Error: no project given and no default project configured. Use list_jira_projects."

        notes = []
        assignee_id = None
        if assignee:
            user = await self.tracker.resolve_user(assignee, project)
            if user:
                assignee_id = user.account_id
            else:
                notes.append(f"assignee '{assignee}' not found, left unassigned")

        issue = await self.tracker.create_issue(
            project, summary, await self._stamp(description), issue_type, labels, assignee_id
        )

        if team:
            resolved = await self.tracker.resolve_team(team)
            if resolved:
                await self.tracker.set_team(issue.key, resolved)
            else:
                notes.append(f"team '{team}' not found")

        result = f"Created {issue.key}: {issue.url}"
        if notes:
            result += "\nNote: " + "; ".join(notes)
        return result


class ListJiraProjectsTool(Tool):
    def __init__(self, tracker: Tracker):
        self.tracker = tracker

    @property
    def name(self) -> str:
        return "list_jira_projects"

    @property
    def description(self) -> str:
        return "List Jira projects (key and name)."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        projects = await self.tracker.list_projects()
        return "\n".join(f"{key}: {name}" for key, name in projects) or "No projects visible."


class SearchJiraIssuesTool(Tool):
    def __init__(self, tracker: Tracker):
        self.tracker = tracker

    @property
    def name(self) -> str:
        return "search_jira_issues"

    @property
    def description(self) -> str:
        return "Search Jira issues with a JQL query."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "jql": {"type": "string", "minLength": 1},
                "limit": {"type": "integer", "minimum": 1, "maximum": 100},
            },
            "required": ["jql"],
        }

    async def execute(self, jql: str, limit: int = 20, **kwargs: Any) -> str:
        issues = await self.tracker.search_issues(jql, limit)
        if not issues:
            return "No issues found."
        return "\n".join(_format_issue(i) for i in issues)


class GetJiraIssueTool(Tool):
    def __init__(self, tracker: Tracker):
        self.tracker = tracker

    @property
    def name(self) -> str:
        return "get_jira_issue"

    @property
    def description(self) -> str:
        return "Get a Jira issue with its description."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {"key": _KEY}, "required": ["key"]}

    async def execute(self, key: str, **kwargs: Any) -> str:
        return _format_issue(await self.tracker.get_issue(key), with_description=True)


class UpdateJiraIssueTool(Tool):
    def __init__(self, tracker: Tracker):
        self.tracker = tracker

    @property
    def name(self) -> str:
        return "update_jira_issue"

    @property
    def description(self) -> str:
        return "Update the summary and/or description of a Jira issue."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"key": _KEY, "summary": {"type": "string"}, "description": {"type": "string"}},
            "required": ["key"],
        }

    async def execute(self, key: str, summary: str | None = None, description: str | None = None, **kwargs: Any) -> str:
        if not summary and not description:
            return "Error: nothing to update; pass summary and/or description"
        await self.tracker.update_issue(key, summary, description)
        return f"Updated {key}."


class ResolveJiraUserTool(Tool):
    def __init__(self, tracker: Tracker):
        self.tracker = tracker

    @property
    def name(self) -> str:
        return "resolve_jira_user"

    @property
    def description(self) -> str:
        return "Find a Jira account by name or email."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"query": {"type": "string", "minLength": 1}, "project": {"type": "string"}},
            "required": ["query"],
        }

    async def execute(self, query: str, project: str | None = None, **kwargs: Any) -> str:
        user = await self.tracker.resolve_user(query, project)
        if not user:
            return f"No Jira user found for '{query}'."
        return f"{user.display_name} (accountId={user.account_id}{', ' + user.email if user.email else ''})"


class ResolveJiraTeamTool(Tool):
    def __init__(self, tracker: Tracker):
        self.tracker = tracker

    @property
    def name(self) -> str:
        return "resolve_jira_team"

    @property
    def description(self) -> str:
        return "Find a Jira team id by team name."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {"name": {"type": "string", "minLength": 1}}, "required": ["name"]}

    async def execute(self, name: str, **kwargs: Any) -> str:
        team = await self.tracker.resolve_team(name)
        if not team:
            return f"No Jira team found for '{name}'."
        return f"{team.name} (id={team.id})"


def jira_tools(tracker: Tracker, messenger: Messenger, request: CommandRequest, default_project: str = "") -> list[Tool]:
    return [
        CreateJiraTicketTool(tracker, messenger, request, default_project),
        ListJiraProjectsTool(tracker),
        SearchJiraIssuesTool(tracker),
        GetJiraIssueTool(tracker),
        UpdateJiraIssueTool(tracker),
        ResolveJiraUserTool(tracker),
        ResolveJiraTeamTool(tracker),
    ]
