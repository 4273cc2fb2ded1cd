"""Code-hosting and ticketing collaborator interfaces."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class FileContent:
    path: str
    content: str
    sha: str  # revision marker required for the next commit


@dataclass
class DirEntry:
    name: str
    path: str
    type: str  # "file" | "dir"


@dataclass
class RepoInfo:
    full_name: str
    description: str = ""
    private: bool = False
    default_branch: str = ""


@dataclass
class PullRequestFile:
    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    patch: str = ""


@dataclass
class PullRequest:
    number: int
    title: str
    state: str
    url: str
    author: str = ""
    head: str = ""
    base: str = ""
    body: str = ""
    merged: bool = False
    files: list[PullRequestFile] = field(default_factory=list)


@dataclass
class CodeMatch:
    path: str
    url: str
    fragments: list[str] = field(default_factory=list)


@dataclass
class WorkflowStep:
    name: str
    status: str
    conclusion: str = ""


@dataclass
class WorkflowJob:
    id: int
    name: str
    status: str
    conclusion: str = ""
    url: str = ""
    steps: list[WorkflowStep] = field(default_factory=list)


@dataclass
class Annotation:
    path: str
    line: int
    level: str
    message: str
    title: str = ""


@dataclass
class WorkflowRun:
    id: int
    name: str
    status: str
    conclusion: str
    branch: str
    event: str
    url: str
    jobs: list[WorkflowJob] = field(default_factory=list)
    annotations: list[Annotation] = field(default_factory=list)


class CodeHost(ABC):
    """What the agent needs from a code-hosting service."""

    @abstractmethod
    async def resolve_owner(self) -> str:
        """Effective owner/org for the configured credential."""
        pass

    @abstractmethod
    async def get_authenticated_user(self) -> str:
        pass

    @abstractmethod
    async def get_default_branch(self, owner: str, repo: str) -> str:
        pass

    @abstractmethod
    async def get_file(self, owner: str, repo: str, path: str, ref: str) -> FileContent:
        pass

    @abstractmethod
    async def create_branch(self, owner: str, repo: str, base: str, branch: str) -> None:
        pass

    @abstractmethod
    async def update_file(
        self, owner: str, repo: str, path: str, branch: str, message: str, content: str, sha: str
    ) -> None:
        pass

    @abstractmethod
    async def create_pull_request(
        self, owner: str, repo: str, base: str, head: str, title: str, body: str
    ) -> str:
        """Open a change request and return its URL."""
        pass

    @abstractmethod
    async def search_files(self, owner: str, repo: str, ref: str, pattern: str, limit: int = 50) -> list[str]:
        pass

    @abstractmethod
    async def list_directory(self, owner: str, repo: str, path: str, ref: str) -> list[DirEntry]:
        pass

    @abstractmethod
    async def list_org_repos(self, org: str) -> list[RepoInfo]:
        pass

    @abstractmethod
    async def list_user_repos(self) -> list[RepoInfo]:
        pass

    @abstractmethod
    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        pass

    @abstractmethod
    async def list_pull_requests(self, owner: str, repo: str, state: str = "open", limit: int = 20) -> list[PullRequest]:
        pass

    @abstractmethod
    async def search_code(self, owner: str, repo: str, query: str, limit: int = 20) -> list[CodeMatch]:
        pass

    @abstractmethod
    async def get_workflow_run(self, owner: str, repo: str, run_id: int) -> WorkflowRun:
        pass

    @abstractmethod
    async def rerun_failed_jobs(self, owner: str, repo: str, run_id: int) -> None:
        pass

    @abstractmethod
    async def rerun_workflow(self, owner: str, repo: str, run_id: int) -> None:
        pass


@dataclass
class Issue:
    key: str
    summary: str
    url: str = ""
    status: str = ""
    issue_type: str = ""
    assignee: str = ""
    description: str = ""
    labels: list[str] = field(default_factory=list)


@dataclass
class TrackerUser:
    account_id: str
    display_name: str
    email: str = ""


@dataclass
class Team:
    id: str
    name: str


class Tracker(ABC):
    """What the agent needs from an issue tracker."""

    @abstractmethod
    async def create_issue(
        self,
        project: str,
        summary: str,
        description: str,
        issue_type: str = "Task",
        labels: list[str] | None = None,
        assignee_id: str | None = None,
    ) -> Issue:
        pass

    @abstractmethod
    async def update_issue(self, key: str, summary: str | None = None, description: str | None = None) -> None:
        pass

    @abstractmethod
    async def search_issues(self, jql: str, limit: int = 20) -> list[Issue]:
        pass

    @abstractmethod
    async def get_issue(self, key: str) -> Issue:
        pass

    @abstractmethod
    async def list_projects(self) -> list[tuple[str, str]]:
        """(key, name) pairs."""
        pass

    @abstractmethod
    async def resolve_user(self, query: str, project: str | None = None) -> TrackerUser | None:
        pass

    @abstractmethod
    async def resolve_team(self, name: str) -> Team | None:
        pass

    @abstractmethod
    async def set_team(self, key: str, team: Team) -> None:
        pass
