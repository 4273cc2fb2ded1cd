"""GitHub tools: repository browsing, file edits, pull requests and Actions runs."""

from typing import Any

from relaybot.agent.grouper import ChangeError, ChangeGrouper
from relaybot.agent.tools.base import Tool
from relaybot.clients.base import CodeHost
from relaybot.clients.github import (
    GitHubError,
    format_pull_request,
    format_workflow_run,
    parse_pull_request_url,
    parse_workflow_run_url,
)

MAX_FILE_CHARS = 8000
MAX_SEARCH_RESULTS = 50

_OWNER = {"type": "string", "description": "Repository owner or org. Defaults to the configured owner."}
_REPO = {"type": "string", "description": "Repository name"}
_REF = {"type": "string", "description": "Branch or ref. Defaults to the repository's default branch."}


class _GitHubTool(Tool):
    def __init__(self, code_host: CodeHost):
        self.code_host = code_host

    async def _owner(self, owner: str | None) -> str:
        return owner or await self.code_host.resolve_owner()

    async def _ref(self, owner: str, repo: str, ref: str | None) -> str:
        return ref or await self.code_host.get_default_branch(owner, repo)


class ListOrgReposTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "list_org_repos"

    @property
    def description(self) -> str:
        return "List repositories of a GitHub organization (defaults to the configured owner)."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {"org": {"type": "string", "description": "Organization login"}}}

    async def execute(self, org: str | None = None, **kwargs: Any) -> str:
        org = await self._owner(org)
        repos = await self.code_host.list_org_repos(org)
        if not repos:
            return f"No repositories found for {org}."
        return "\n".join(
            f"- {r.full_name}{' (private)' if r.private else ''}{': ' + r.description if r.description else ''}"
            for r in repos
        )


class ListUserReposTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "list_user_repos"

    @property
    def description(self) -> str:
        return "List repositories the authenticated GitHub user can access."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        repos = await self.code_host.list_user_repos()
        if not repos:
            return "No repositories found."
        return "\n".join(f"- {r.full_name}" for r in repos)


class GetFileContentTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "get_file_content"

    @property
    def description(self) -> str:
        return "Read a file from a GitHub repository. Always read a file before modifying it."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "owner": _OWNER,
                "repo": _REPO,
                "path": {"type": "string", "description": "File path inside the repository"},
                "ref": _REF,
            },
            "required": ["repo", "path"],
        }

    async def execute(self, repo: str, path: str, owner: str | None = None, ref: str | None = None, **kwargs: Any) -> str:
        owner = await self._owner(owner)
        ref = await self._ref(owner, repo, ref)
        try:
            f = await self.code_host.get_file(owner, repo, path, ref)
        except GitHubError as e:
            if e.status == 404:
                return (
                    f"Error: {path} not found in {owner}/{repo}@{ref}. "
                    "Use search_files or list_directory to find the correct path."
                )
            raise
        content = f.content
        if len(content) > MAX_FILE_CHARS:
            content = content[:MAX_FILE_CHARS] + f"\n... (truncated, {len(f.content) - MAX_FILE_CHARS} more chars)"
        return f"File: {owner}/{repo}/{f.path} @ {ref}\n\n{content}"


class GetRepoDefaultBranchTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "get_repo_default_branch"

    @property
    def description(self) -> str:
        return "Get the default branch of a repository."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {"owner": _OWNER, "repo": _REPO}, "required": ["repo"]}

    async def execute(self, repo: str, owner: str | None = None, **kwargs: Any) -> str:
        owner = await self._owner(owner)
        return await self.code_host.get_default_branch(owner, repo)


class GetAuthenticatedUserTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "get_authenticated_user"

    @property
    def description(self) -> str:
        return "Get the GitHub login the agent acts as."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        return await self.code_host.get_authenticated_user()


class ResolveOwnerTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "resolve_owner"

    @property
    def description(self) -> str:
        return "Get the default owner/organization used when a repository owner is not given."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        return await self.code_host.resolve_owner()


class SearchFilesTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "search_files"

    @property
    def description(self) -> str:
        return "Find files in a repository whose path contains the given text (case-insensitive)."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "owner": _OWNER,
                "repo": _REPO,
                "pattern": {"type": "string", "description": "Substring of the path, e.g. 'values.yaml'"},
                "ref": _REF,
            },
            "required": ["repo", "pattern"],
        }

    async def execute(self, repo: str, pattern: str, owner: str | None = None, ref: str | None = None, **kwargs: Any) -> str:
        owner = await self._owner(owner)
        ref = await self._ref(owner, repo, ref)
        paths = await self.code_host.search_files(owner, repo, ref, pattern, limit=MAX_SEARCH_RESULTS)
        if not paths:
            return f"No files matching '{pattern}' in {owner}/{repo}@{ref}."
        header = f"{len(paths)} file(s) matching '{pattern}'"
        if len(paths) >= MAX_SEARCH_RESULTS:
            header += f" (first {MAX_SEARCH_RESULTS})"
        return header + ":\n" + "\n".join(paths)


class ListDirectoryTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "list_directory"

    @property
    def description(self) -> str:
        return "List the entries of a directory in a repository."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "owner": _OWNER,
                "repo": _REPO,
                "path": {"type": "string", "description": "Directory path; empty for the root"},
                "ref": _REF,
            },
            "required": ["repo"],
        }

    async def execute(self, repo: str, path: str = "", owner: str | None = None, ref: str | None = None, **kwargs: Any) -> str:
        owner = await self._owner(owner)
        ref = await self._ref(owner, repo, ref)
        entries = await self.code_host.list_directory(owner, repo, path, ref)
        if not entries:
            return "Directory is empty."
        return "\n".join(f"{'📁' if e.type == 'dir' else '📄'} {e.path}" for e in sorted(entries, key=lambda e: (e.type != "dir", e.name)))


class ModifyFileTool(_GitHubTool):
    """Search/replace edit; every edit to one repository in a run lands on one PR."""

    def __init__(self, code_host: CodeHost, grouper: ChangeGrouper):
        super().__init__(code_host)
        self.grouper = grouper

    @property
    def name(self) -> str:
        return "modify_file"

    @property
    def description(self) -> str:
        return (
            "Replace one exact snippet of a file and commit it. The first edit to a repository "
            "opens a pull request; further edits in the same request are added to that pull request. "
            "old_content must match the current file exactly once."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "owner": _OWNER,
                "repo": _REPO,
                "path": {"type": "string", "description": "File path inside the repository"},
                "old_content": {"type": "string", "description": "Exact text to replace", "minLength": 1},
                "new_content": {"type": "string", "description": "Replacement text"},
                "description": {"type": "string", "description": "Short summary of the change"},
                "base_branch": {"type": "string", "description": "Base branch; defaults to the default branch"},
            },
            "required": ["repo", "path", "old_content", "new_content", "description"],
        }

    async def execute(
        self,
        repo: str,
        path: str,
        old_content: str,
        new_content: str,
        description: str,
        owner: str | None = None,
        base_branch: str | None = None,
        **kwargs: Any,
    ) -> str:
        owner = await self._owner(owner)
        try:
            return await self.grouper.apply(owner, repo, path, old_content, new_content, description, base_branch)
        except (ChangeError, GitHubError) as e:
            return f"Error: {e}"


class GetPullRequestTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "get_pull_request"

    @property
    def description(self) -> str:
        return "Get a pull request with its changed files. Accepts a PR URL or repo + number."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "Pull request URL"},
                "owner": _OWNER,
                "repo": _REPO,
                "number": {"type": "integer", "minimum": 1},
            },
        }

    async def execute(
        self,
        url: str | None = None,
        owner: str | None = None,
        repo: str | None = None,
        number: int | None = None,
        **kwargs: Any,
    ) -> str:
        if url:
            parsed = parse_pull_request_url(url)
            if not parsed:
                return f"Error: not a pull request URL: {url}"
            owner, repo, number = parsed
        if not repo or not number:
            return "Error: provide either url, or repo and number"
        owner = await self._owner(owner)
        pr = await self.code_host.get_pull_request(owner, repo, number)
        return format_pull_request(pr)


class ListPullRequestsTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "list_pull_requests"

    @property
    def description(self) -> str:
        return "List pull requests of a repository."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "owner": _OWNER,
                "repo": _REPO,
                "state": {"type": "string", "enum": ["open", "closed", "all"]},
                "limit": {"type": "integer", "minimum": 1, "maximum": 100},
            },
            "required": ["repo"],
        }

    async def execute(self, repo: str, owner: str | None = None, state: str = "open", limit: int = 20, **kwargs: Any) -> str:
        owner = await self._owner(owner)
        prs = await self.code_host.list_pull_requests(owner, repo, state, limit)
        if not prs:
            return f"No {state} pull requests in {owner}/{repo}."
        return "\n".join(f"#{p.number} [{p.state}] {p.title} by {p.author} ({p.head} -> {p.base}) {p.url}" for p in prs)


class SearchCodeTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "search_code"

    @property
    def description(self) -> str:
        return "Search file contents in a repository (GitHub code search)."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "owner": _OWNER,
                "repo": _REPO,
                "query": {"type": "string", "description": "Search terms"},
            },
            "required": ["repo", "query"],
        }

    async def execute(self, repo: str, query: str, owner: str | None = None, **kwargs: Any) -> str:
        owner = await self._owner(owner)
        matches = await self.code_host.search_code(owner, repo, query)
        if not matches:
            return f"No code matches for '{query}' in {owner}/{repo}."
        out = []
        for m in matches:
            out.append(f"- {m.path} ({m.url})")
            for frag in m.fragments[:2]:
                out.append("    " + frag.strip().replace("\n", "\n    "))
        return "\n".join(out)


class _WorkflowRunTool(_GitHubTool):
    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "GitHub Actions run URL"},
                "owner": _OWNER,
                "repo": _REPO,
                "run_id": {"type": "integer", "minimum": 1},
            },
        }

    async def _target(self, url: str | None, owner: str | None, repo: str | None, run_id: int | None) -> tuple[str, str, int]:
        if url:
            parsed = parse_workflow_run_url(url)
            if not parsed:
                raise ValueError(f"not a GitHub Actions run URL: {url}")
            return parsed
        if not repo or not run_id:
            raise ValueError("provide either url, or repo and run_id")
        return await self._owner(owner), repo, run_id


class GetWorkflowRunTool(_WorkflowRunTool):
    @property
    def name(self) -> str:
        return "get_workflow_run"

    @property
    def description(self) -> str:
        return "Summarize a GitHub Actions run: status, jobs, failed steps and annotations."

    async def execute(self, url: str | None = None, owner: str | None = None, repo: str | None = None, run_id: int | None = None, **kwargs: Any) -> str:
        owner, repo, run_id = await self._target(url, owner, repo, run_id)
        run = await self.code_host.get_workflow_run(owner, repo, run_id)
        return format_workflow_run(run)


class RerunFailedJobsTool(_WorkflowRunTool):
    @property
    def name(self) -> str:
        return "rerun_failed_jobs"

    @property
    def description(self) -> str:
        return "Re-run only the failed jobs of a GitHub Actions run."

    async def execute(self, url: str | None = None, owner: str | None = None, repo: str | None = None, run_id: int | None = None, **kwargs: Any) -> str:
        owner, repo, run_id = await self._target(url, owner, repo, run_id)
        await self.code_host.rerun_failed_jobs(owner, repo, run_id)
        return f"Re-run of failed jobs requested for {owner}/{repo} run {run_id}."


class RerunWorkflowTool(_WorkflowRunTool):
    @property
    def name(self) -> str:
        return "rerun_workflow"

    @property
    def description(self) -> str:
        return "Re-run every job of a GitHub Actions run."

    async def execute(self, url: str | None = None, owner: str | None = None, repo: str | None = None, run_id: int | None = None, **kwargs: Any) -> str:
        owner, repo, run_id = await self._target(url, owner, repo, run_id)
        await self.code_host.rerun_workflow(owner, repo, run_id)
        return f"Full re-run requested for {owner}/{repo} run {run_id}."


def github_tools(code_host: CodeHost, grouper: ChangeGrouper) -> list[Tool]:
    return [
        ListOrgReposTool(code_host),
        ListUserReposTool(code_host),
        GetFileContentTool(code_host),
        GetRepoDefaultBranchTool(code_host),
        GetAuthenticatedUserTool(code_host),
        ResolveOwnerTool(code_host),
        SearchFilesTool(code_host),
        ListDirectoryTool(code_host),
        ModifyFileTool(code_host, grouper),
        GetPullRequestTool(code_host),
        ListPullRequestsTool(code_host),
        SearchCodeTool(code_host),
        GetWorkflowRunTool(code_host),
        RerunFailedJobsTool(code_host),
        RerunWorkflowTool(code_host),
    ]
