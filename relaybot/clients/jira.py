"""Jira Cloud REST client (async, httpx)."""

from typing import Any

import httpx
from loguru import logger

from relaybot.clients.base import Issue, Team, Tracker, TrackerUser

_TEAM_SCHEMA_MARKER = "atlassian-team"


class JiraError(Exception):
    """Non-2xx response from Jira."""

    def __init__(self, status: int, message: str):
        super().__init__(f"Jira API error {status}: {message}")
        self.status = status


def text_to_adf(text: str) -> dict[str, Any]:
    """Plain text -> Atlassian Document Format: one paragraph per blank-line block."""
    content = []
    for block in text.strip().split("\n\n"):
        lines = block.split("\n")
        nodes: list[dict[str, Any]] = []
        for i, line in enumerate(lines):
            if i:
                nodes.append({"type": "hardBreak"})
            if line:
                nodes.append({"type": "text", "text": line})
        if nodes:
            content.append({"type": "paragraph", "content": nodes})
    return {"type": "doc", "version": 1, "content": content}


def adf_to_text(node: Any) -> str:
    """Flatten an ADF document into plain text."""
    if not isinstance(node, dict):
        return str(node) if node else ""
    kind = node.get("type")
    if kind == "text":
        return node.get("text", "")
    if kind == "hardBreak":
        return "\n"
    inner = "".join(adf_to_text(c) for c in node.get("content") or [])
    if kind in ("paragraph", "heading", "listItem", "codeBlock"):
        return inner + "\n"
    return inner


class JiraClient(Tracker):
    """Basic-auth (email + API token) client for Jira Cloud REST v3."""

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        team_field: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = (email, api_token)
        self.team_field = team_field
        self.timeout = timeout
        self._transport = transport

    def browse_url(self, key: str) -> str:
        return f"{self.base_url}/browse/{key}"

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport, auth=self.auth) as client:
            resp = await client.request(
                method,
                f"{self.base_url}/rest/api/3{path}",
                params=params,
                json=json_body,
                headers={"Accept": "application/json"},
            )
        if resp.status_code >= 400:
            try:
                data = resp.json()
                message = "; ".join(data.get("errorMessages") or []) or str(data.get("errors") or resp.text)
            except ValueError:
                message = resp.text
            raise JiraError(resp.status_code, message)
        if not resp.content:
            return None
        return resp.json()

    def _issue(self, data: dict[str, Any]) -> Issue:
        fields = data.get("fields") or {}
        return Issue(
            key=data["key"],
            summary=fields.get("summary") or "",
            url=self.browse_url(data["key"]),
            status=(fields.get("status") or {}).get("name", ""),
            issue_type=(fields.get("issuetype") or {}).get("name", ""),
            assignee=(fields.get("assignee") or {}).get("displayName", ""),
            description=adf_to_text(fields.get("description")).strip(),
            labels=list(fields.get("labels") or []),
        )

    async def create_issue(
        self,
        project: str,
        summary: str,
        description: str,
        issue_type: str = "Task",
        labels: list[str] | None = None,
        assignee_id: str | None = None,
    ) -> Issue:
        fields: dict[str, Any] = {
            "project": {"key": project},
            "summary": summary,
            "description": text_to_adf(description),
            "issuetype": {"name": issue_type},
        }
        if labels:
            fields["labels"] = labels
        if assignee_id:
            fields["assignee"] = {"accountId": assignee_id}
        data = await self._request("POST", "/issue", json_body={"fields": fields})
        logger.info(f"Created Jira issue {data['key']}")
        return Issue(key=data["key"], summary=summary, url=self.browse_url(data["key"]), issue_type=issue_type)

    async def update_issue(self, key: str, summary: str | None = None, description: str | None = None) -> None:
        fields: dict[str, Any] = {}
        if summary:
            fields["summary"] = summary
        if description:
            fields["description"] = text_to_adf(description)
        if not fields:
            raise ValueError("nothing to update")
        await self._request("PUT", f"/issue/{key}", json_body={"fields": fields})

    async def search_issues(self, jql: str, limit: int = 20) -> list[Issue]:
        data = await self._request(
            "POST",
            "/search/jql",
            json_body={
                "jql": jql,
                "maxResults": limit,
                "fields": ["summary", "status", "issuetype", "assignee", "labels"],
            },
        )
        return [self._issue(i) for i in data.get("issues") or []]

    async def get_issue(self, key: str) -> Issue:
        return self._issue(await self._request("GET", f"/issue/{key}"))

    async def list_projects(self) -> list[tuple[str, str]]:
        data = await self._request("GET", "/project/search", params={"maxResults": 100})
        return [(p["key"], p["name"]) for p in data.get("values") or []]

    async def resolve_user(self, query: str, project: str | None = None) -> TrackerUser | None:
        """
        Find an account for a name or email.

        Strategies, first hit wins: exact email match, user search by name,
        assignable-user search in the project.
        """
        query = query.strip().lstrip("@")
        if not query:
            return None

        candidates = await self._request("GET", "/user/search", params={"query": query}) or []
        if "@" in query:
            for u in candidates:
                if (u.get("emailAddress") or "").lower() == query.lower():
                    return self._user(u)

        best = _best_user_match(candidates, query)
        if best is None and project:
            assignable = await self._request(
                "GET", "/user/assignable/search", params={"query": query, "project": project}
            ) or []
            best = _best_user_match(assignable, query)
        return self._user(best) if best else None

    @staticmethod
    def _user(u: dict[str, Any]) -> TrackerUser:
        return TrackerUser(
            account_id=u["accountId"],
            display_name=u.get("displayName", ""),
            email=u.get("emailAddress") or "",
        )

    async def _team_field_id(self) -> str:
        if self.team_field:
            return self.team_field
        for f in await self._request("GET", "/field") or []:
            custom = ((f.get("schema") or {}).get("custom") or "").lower()
            if _TEAM_SCHEMA_MARKER in custom:
                self.team_field = f["id"]
                logger.debug(f"Discovered Jira team field {self.team_field}")
                return self.team_field
        raise JiraError(404, "no Team field found on this Jira site")

    async def resolve_team(self, name: str) -> Team | None:
        """Look the team up on recently updated issues that have one set."""
        field_id = await self._team_field_id()
        data = await self._request(
            "POST",
            "/search/jql",
            json_body={
                "jql": f"cf[{field_id.removeprefix('customfield_')}] is not EMPTY ORDER BY updated DESC",
                "maxResults": 100,
                "fields": [field_id],
            },
        )
        needle = name.strip().lower()
        partial = None
        for issue in data.get("issues") or []:
            value = (issue.get("fields") or {}).get(field_id) or {}
            team_id = value.get("id")
            team_name = value.get("name") or value.get("title") or ""
            if not team_id:
                continue
            if team_name.lower() == needle:
                return Team(id=str(team_id), name=team_name)
            if partial is None and needle in team_name.lower():
                partial = Team(id=str(team_id), name=team_name)
        return partial

    async def set_team(self, key: str, team: Team) -> None:
        field_id = await self._team_field_id()
        await self._request("PUT", f"/issue/{key}", json_body={"fields": {field_id: team.id}})


def _best_user_match(users: list[dict[str, Any]], query: str) -> dict[str, Any] | None:
    """Exact display name, then prefix, then substring; active accounts only."""
    active = [u for u in users if u.get("active", True) and u.get("accountType", "atlassian") == "atlassian"]
    q = query.lower()
    for pred in (
        lambda n: n == q,
        lambda n: n.startswith(q),
        lambda n: q in n,
    ):
        for u in active:
            if pred((u.get("displayName") or "").lower()):
                return u
    return None
