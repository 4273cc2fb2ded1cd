import hashlib
from typing import Any, Callable

import pytest

from relaybot.clients.base import DirEntry, FileContent, RepoInfo, WorkflowJob, WorkflowRun
from relaybot.clients.github import GitHubError
from relaybot.providers.base import LLMProvider, LLMResponse, ToolCallRequest


def _sha(content: str) -> str:
    return hashlib.sha1(content.encode()).hexdigest()


class ScriptedProvider(LLMProvider):
    """Returns queued responses in order; callables get (messages, model)."""

    def __init__(self, responses: list[LLMResponse | Callable[..., LLMResponse]] | None = None, default: LLMResponse | None = None):
        super().__init__()
        self.responses = list(responses or [])
        self.default = default
        self.calls: list[dict[str, Any]] = []

    def get_default_model(self) -> str:
        return "openai/gpt-4o"

    async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7):
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools, "model": model})
        if self.responses:
            item = self.responses.pop(0)
        elif self.default is not None:
            item = self.default
        else:
            raise AssertionError("ScriptedProvider ran out of responses")
        if callable(item):
            return item(messages, model)
        return item


def tool_call(name: str, call_id: str = "call-1", **arguments) -> LLMResponse:
    return LLMResponse(
        content=None,
        tool_calls=[ToolCallRequest(id=call_id, name=name, arguments=arguments)],
        finish_reason="tool_calls",
    )


class FakeMessenger:
    def __init__(self, history: list[dict] | None = None, fail_post: bool = False):
        self.history = list(history or [])
        self.threads: dict[tuple[str, str], list[dict]] = {}
        self.fail_post = fail_post
        self.history_fetches = 0
        self.bot_id_lookups = 0
        self.posted: list[tuple[str, str]] = []
        self.thread_replies: list[tuple[str, str, str]] = []
        self.ephemerals: list[tuple[str, str, str]] = []
        self.responses: list[tuple[str, str, bool]] = []
        self._next_ts = 1700000000

    async def fetch_channel_history(self, channel_id, limit):
        self.history_fetches += 1
        return self.history[:limit]

    async def fetch_thread_replies(self, channel_id, thread_ts, limit):
        return self.threads.get((channel_id, thread_ts), [])[:limit]

    async def post_message(self, channel_id, text):
        if self.fail_post:
            raise RuntimeError("channel_not_found")
        self.posted.append((channel_id, text))
        self._next_ts += 1
        return f"{self._next_ts}.000100"

    async def post_thread_reply(self, channel_id, thread_ts, text):
        self.thread_replies.append((channel_id, thread_ts, text))

    async def post_ephemeral(self, channel_id, user_id, text):
        self.ephemerals.append((channel_id, user_id, text))

    async def respond(self, response_url, text, ephemeral=False):
        self.responses.append((response_url, text, ephemeral))

    async def get_user_info(self, user_id):
        return {"id": user_id, "name": "jdoe", "email": "jdoe@example.com"}

    async def get_permalink(self, channel_id, message_ts):
        return f"https://acme.slack.com/archives/{channel_id}/p{message_ts.replace('.', '')}"

    async def get_bot_user_id(self):
        self.bot_id_lookups += 1
        return "UBOT"


class FakeCodeHost:
    """In-memory repositories keyed by (owner, repo, branch)."""

    def __init__(self, owner: str = "acme"):
        self.owner = owner
        self.branches: dict[tuple[str, str, str], dict[str, str]] = {}
        self.created_branches: list[tuple[str, str, str, str]] = []
        self.commits: list[tuple[str, str, str, str, str]] = []
        self.pull_requests: list[dict[str, str]] = []
        self.workflow_runs: dict[tuple[str, str, int], WorkflowRun] = {}
        self.fail_pr = False

    def add_file(self, repo: str, path: str, content: str, branch: str = "main") -> None:
        self.branches.setdefault((self.owner, repo, branch), {})[path] = content

    def file(self, repo: str, path: str, branch: str) -> str:
        return self.branches[(self.owner, repo, branch)][path]

    async def resolve_owner(self):
        return self.owner

    async def get_authenticated_user(self):
        return "relaybot-bot"

    async def get_default_branch(self, owner, repo):
        return "main"

    async def get_file(self, owner, repo, path, ref):
        files = self.branches.get((owner, repo, ref), {})
        if path not in files:
            raise GitHubError(404, "Not Found")
        return FileContent(path=path, content=files[path], sha=_sha(files[path]))

    async def create_branch(self, owner, repo, base, branch):
        self.branches[(owner, repo, branch)] = dict(self.branches[(owner, repo, base)])
        self.created_branches.append((owner, repo, base, branch))

    async def update_file(self, owner, repo, path, branch, message, content, sha):
        files = self.branches[(owner, repo, branch)]
        if path in files and _sha(files[path]) != sha:
            raise GitHubError(409, "sha mismatch")
        files[path] = content
        self.commits.append((owner, repo, branch, path, message))

    async def create_pull_request(self, owner, repo, base, head, title, body):
        if self.fail_pr:
            raise GitHubError(422, "Validation Failed")
        url = f"https://github.com/{owner}/{repo}/pull/{len(self.pull_requests) + 1}"
        self.pull_requests.append({"base": base, "head": head, "title": title, "body": body, "url": url})
        return url

    async def search_files(self, owner, repo, ref, pattern, limit=50):
        return [p for p in self.branches.get((owner, repo, ref), {}) if pattern.lower() in p.lower()][:limit]

    async def list_directory(self, owner, repo, path, ref):
        prefix = path.strip("/") + "/" if path.strip("/") else ""
        names = {}
        for p in self.branches.get((owner, repo, ref), {}):
            if p.startswith(prefix):
                rest = p[len(prefix):]
                head = rest.split("/", 1)[0]
                names[head] = DirEntry(name=head, path=prefix + head, type="dir" if "/" in rest else "file")
        return list(names.values())

    async def list_org_repos(self, org):
        return [RepoInfo(full_name=f"{org}/{repo}") for (_, repo, b) in self.branches if b == "main"]

    async def list_user_repos(self):
        return await self.list_org_repos(self.owner)

    async def get_pull_request(self, owner, repo, number):
        raise GitHubError(404, "Not Found")

    async def list_pull_requests(self, owner, repo, state="open", limit=20):
        return []

    async def search_code(self, owner, repo, query, limit=20):
        return []

    async def get_workflow_run(self, owner, repo, run_id):
        if (owner, repo, run_id) not in self.workflow_runs:
            raise GitHubError(404, "Not Found")
        return self.workflow_runs[(owner, repo, run_id)]

    async def rerun_failed_jobs(self, owner, repo, run_id):
        return None

    async def rerun_workflow(self, owner, repo, run_id):
        return None


def failed_run(run_id: int = 42) -> WorkflowRun:
    return WorkflowRun(
        id=run_id,
        name="CI",
        status="completed",
        conclusion="failure",
        branch="main",
        event="push",
        url=f"https://github.com/acme/api/actions/runs/{run_id}",
        jobs=[
            WorkflowJob(id=1, name="lint", status="completed", conclusion="success"),
            WorkflowJob(id=2, name="test", status="completed", conclusion="failure"),
        ],
    )


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def code_host():
    return FakeCodeHost()
