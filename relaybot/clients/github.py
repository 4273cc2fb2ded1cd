"""GitHub REST client (async, httpx)."""

import base64
import re
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from relaybot.clients.base import (
    Annotation,
    CodeHost,
    CodeMatch,
    DirEntry,
    FileContent,
    PullRequest,
    PullRequestFile,
    RepoInfo,
    WorkflowJob,
    WorkflowRun,
    WorkflowStep,
)

WORKFLOW_RUN_URL_RE = re.compile(r"https://github\.com/([^/]+)/([^/]+)/actions/runs/(\d+)")
PULL_REQUEST_URL_RE = re.compile(r"https://github\.com/([^/]+)/([^/]+)/pull/(\d+)")


class GitHubError(Exception):
    """Non-2xx response from the GitHub API."""

    def __init__(self, status: int, message: str):
        super().__init__(f"GitHub API error {status}: {message}")
        self.status = status
        self.message = message


def parse_workflow_run_url(url: str) -> tuple[str, str, int] | None:
    m = WORKFLOW_RUN_URL_RE.search(url)
    if not m:
        return None
    return m.group(1), m.group(2), int(m.group(3))


def parse_pull_request_url(url: str) -> tuple[str, str, int] | None:
    m = PULL_REQUEST_URL_RE.search(url)
    if not m:
        return None
    return m.group(1), m.group(2), int(m.group(3))


def find_workflow_run_urls(text: str) -> list[tuple[str, str, int]]:
    """All distinct Actions run references in a piece of text, in order of appearance."""
    seen = set()
    found = []
    for m in WORKFLOW_RUN_URL_RE.finditer(text):
        ref = (m.group(1), m.group(2), int(m.group(3)))
        if ref not in seen:
            seen.add(ref)
            found.append(ref)
    return found


def format_workflow_run(run: WorkflowRun) -> str:
    """Human/model-readable run summary with [X]/[+] job markers."""
    lines = [
        f"Workflow: {run.name} (run {run.id})",
        f"Status: {run.status} / {run.conclusion or 'pending'}",
        f"Branch: {run.branch}  Event: {run.event}",
        f"URL: {run.url}",
        "",
        "Jobs:",
    ]
    for job in run.jobs:
        marker = "[X]" if job.conclusion == "failure" else "[+]" if job.conclusion == "success" else "[ ]"
        lines.append(f"  {marker} {job.name} ({job.conclusion or job.status})")
        for step in job.steps:
            if step.conclusion == "failure":
                lines.append(f"      [X] step: {step.name}")
    if run.annotations:
        lines.append("")
        lines.append("Annotations:")
        for a in run.annotations:
            title = f"{a.title}: " if a.title else ""
            lines.append(f"  [{a.level}] {a.path}:{a.line} {title}{a.message}")
    return "\n".join(lines)


def format_pull_request(pr: PullRequest, max_patch_chars: int = 1500) -> str:
    lines = [
        f"PR #{pr.number}: {pr.title}",
        f"State: {pr.state}{' (merged)' if pr.merged else ''}  Author: {pr.author}",
        f"Branches: {pr.head} -> {pr.base}",
        f"URL: {pr.url}",
    ]
    if pr.body:
        lines += ["", "Description:", pr.body.strip()]
    if pr.files:
        lines += ["", f"Changed files ({len(pr.files)}):"]
        for f in pr.files:
            lines.append(f"  {f.status} {f.filename} (+{f.additions}/-{f.deletions})")
            if f.patch:
                patch = f.patch
                if len(patch) > max_patch_chars:
                    patch = patch[:max_patch_chars] + "\n... (patch truncated)"
                lines.append(patch)
    return "\n".join(lines)


class GitHubClient(CodeHost):
    """
    Thin async wrapper over the GitHub REST API.

    Every call opens a short-lived AsyncClient; `transport` lets tests plug in
    an httpx.MockTransport.
    """

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._owner: str | None = None

    def _headers(self, accept: str = "application/vnd.github+json") -> dict[str, str]:
        headers = {
            "Accept": accept,
            "User-Agent": "relaybot",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        accept: str = "application/vnd.github+json",
    ) -> Any:
        url = f"{self.api_base}{path}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.request(method, url, headers=self._headers(accept), params=params, json=json_body)

        if resp.status_code >= 400:
            try:
                message = resp.json().get("message") or resp.text
            except ValueError:
                message = resp.text
            logger.debug(f"GitHub {method} {path} -> {resp.status_code}: {message}")
            raise GitHubError(resp.status_code, message)
        if not resp.content:
            return None
        return resp.json()

    async def resolve_owner(self) -> str:
        """First org the token's user belongs to, else the user's own login. Cached."""
        if self._owner:
            return self._owner
        orgs = await self._request("GET", "/user/orgs", params={"per_page": 1})
        if orgs:
            self._owner = orgs[0]["login"]
        else:
            self._owner = await self.get_authenticated_user()
        logger.info(f"Resolved GitHub owner: {self._owner}")
        return self._owner

    async def get_authenticated_user(self) -> str:
        data = await self._request("GET", "/user")
        return data["login"]

    async def get_default_branch(self, owner: str, repo: str) -> str:
        data = await self._request("GET", f"/repos/{owner}/{repo}")
        return data.get("default_branch") or "main"

    async def get_file(self, owner: str, repo: str, path: str, ref: str) -> FileContent:
        data = await self._request(
            "GET", f"/repos/{owner}/{repo}/contents/{quote(path.lstrip('/'))}", params={"ref": ref}
        )
        if isinstance(data, list) or data.get("type") != "file":
            raise GitHubError(400, f"{path} is a directory, not a file")
        raw = base64.b64decode(data.get("content") or "")
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise GitHubError(415, f"{path} is not valid UTF-8 text and cannot be edited safely ({e.reason})") from e
        return FileContent(path=data["path"], content=content, sha=data["sha"])

    async def create_branch(self, owner: str, repo: str, base: str, branch: str) -> None:
        ref = await self._request("GET", f"/repos/{owner}/{repo}/git/ref/heads/{quote(base)}")
        await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            json_body={"ref": f"refs/heads/{branch}", "sha": ref["object"]["sha"]},
        )
        logger.info(f"Created branch {owner}/{repo}@{branch} from {base}")

    async def update_file(
        self, owner: str, repo: str, path: str, branch: str, message: str, content: str, sha: str
    ) -> None:
        await self._request(
            "PUT",
            f"/repos/{owner}/{repo}/contents/{quote(path.lstrip('/'))}",
            json_body={
                "message": message,
                "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
                "sha": sha,
                "branch": branch,
            },
        )

    async def create_pull_request(
        self, owner: str, repo: str, base: str, head: str, title: str, body: str
    ) -> str:
        data = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json_body={"title": title, "head": head, "base": base, "body": body},
        )
        return data["html_url"]

    async def search_files(self, owner: str, repo: str, ref: str, pattern: str, limit: int = 50) -> list[str]:
        """Case-insensitive substring match over every path in the tree."""
        data = await self._request(
            "GET", f"/repos/{owner}/{repo}/git/trees/{quote(ref)}", params={"recursive": "1"}
        )
        needle = pattern.lower()
        matches = []
        for item in data.get("tree") or []:
            if item.get("type") == "blob" and needle in item["path"].lower():
                matches.append(item["path"])
                if len(matches) >= limit:
                    break
        return matches

    async def list_directory(self, owner: str, repo: str, path: str, ref: str) -> list[DirEntry]:
        data = await self._request(
            "GET", f"/repos/{owner}/{repo}/contents/{quote(path.strip('/'))}", params={"ref": ref}
        )
        if not isinstance(data, list):
            data = [data]
        return [DirEntry(name=i["name"], path=i["path"], type=i["type"]) for i in data]

    @staticmethod
    def _repo_info(data: dict[str, Any]) -> RepoInfo:
        return RepoInfo(
            full_name=data["full_name"],
            description=data.get("description") or "",
            private=bool(data.get("private")),
            default_branch=data.get("default_branch") or "",
        )

    async def list_org_repos(self, org: str) -> list[RepoInfo]:
        data = await self._request("GET", f"/orgs/{org}/repos", params={"per_page": 100, "sort": "updated"})
        return [self._repo_info(r) for r in data]

    async def list_user_repos(self) -> list[RepoInfo]:
        data = await self._request("GET", "/user/repos", params={"per_page": 100, "sort": "updated"})
        return [self._repo_info(r) for r in data]

    @staticmethod
    def _pull_request(data: dict[str, Any]) -> PullRequest:
        return PullRequest(
            number=data["number"],
            title=data.get("title") or "",
            state=data.get("state") or "",
            url=data.get("html_url") or "",
            author=(data.get("user") or {}).get("login", ""),
            head=(data.get("head") or {}).get("ref", ""),
            base=(data.get("base") or {}).get("ref", ""),
            body=data.get("body") or "",
            merged=bool(data.get("merged_at")),
        )

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        pr = self._pull_request(await self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}"))
        files = await self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}/files", params={"per_page": 100})
        pr.files = [
            PullRequestFile(
                filename=f["filename"],
                status=f.get("status", ""),
                additions=f.get("additions", 0),
                deletions=f.get("deletions", 0),
                patch=f.get("patch") or "",
            )
            for f in files or []
        ]
        return pr

    async def list_pull_requests(self, owner: str, repo: str, state: str = "open", limit: int = 20) -> list[PullRequest]:
        data = await self._request(
            "GET", f"/repos/{owner}/{repo}/pulls", params={"state": state, "per_page": min(limit, 100)}
        )
        return [self._pull_request(d) for d in data[:limit]]

    async def search_code(self, owner: str, repo: str, query: str, limit: int = 20) -> list[CodeMatch]:
        data = await self._request(
            "GET",
            "/search/code",
            params={"q": f"{query} repo:{owner}/{repo}", "per_page": min(limit, 100)},
            accept="application/vnd.github.text-match+json",
        )
        return [
            CodeMatch(
                path=item["path"],
                url=item.get("html_url", ""),
                fragments=[tm.get("fragment", "") for tm in item.get("text_matches") or []],
            )
            for item in (data.get("items") or [])[:limit]
        ]

    async def get_workflow_run(self, owner: str, repo: str, run_id: int) -> WorkflowRun:
        data = await self._request("GET", f"/repos/{owner}/{repo}/actions/runs/{run_id}")
        run = WorkflowRun(
            id=data["id"],
            name=data.get("name") or "",
            status=data.get("status") or "",
            conclusion=data.get("conclusion") or "",
            branch=data.get("head_branch") or "",
            event=data.get("event") or "",
            url=data.get("html_url") or "",
        )
        jobs = await self._request("GET", f"/repos/{owner}/{repo}/actions/runs/{run_id}/jobs", params={"per_page": 100})
        for j in (jobs or {}).get("jobs") or []:
            run.jobs.append(
                WorkflowJob(
                    id=j["id"],
                    name=j.get("name") or "",
                    status=j.get("status") or "",
                    conclusion=j.get("conclusion") or "",
                    url=j.get("html_url") or "",
                    steps=[
                        WorkflowStep(name=s.get("name", ""), status=s.get("status", ""), conclusion=s.get("conclusion") or "")
                        for s in j.get("steps") or []
                    ],
                )
            )

        # Annotations hang off the check run that backs each failed job.
        for job in run.jobs:
            if job.conclusion != "failure":
                continue
            try:
                anns = await self._request("GET", f"/repos/{owner}/{repo}/check-runs/{job.id}/annotations")
            except GitHubError as e:
                logger.warning(f"Could not fetch annotations for job {job.id}: {e}")
                continue
            for a in anns or []:
                run.annotations.append(
                    Annotation(
                        path=a.get("path", ""),
                        line=a.get("start_line") or 0,
                        level=a.get("annotation_level", ""),
                        message=a.get("message", ""),
                        title=a.get("title") or "",
                    )
                )
        return run

    async def rerun_failed_jobs(self, owner: str, repo: str, run_id: int) -> None:
        await self._request("POST", f"/repos/{owner}/{repo}/actions/runs/{run_id}/rerun-failed-jobs")

    async def rerun_workflow(self, owner: str, repo: str, run_id: int) -> None:
        await self._request("POST", f"/repos/{owner}/{repo}/actions/runs/{run_id}/rerun")
