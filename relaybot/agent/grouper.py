"""Group every file edit of one agent run into a single branch and pull request."""

import time
import uuid
from dataclasses import dataclass

from loguru import logger

from relaybot.clients.base import CodeHost


class ChangeError(Exception):
    """An edit was rejected before anything was written."""


class ContentNotFoundError(ChangeError):
    def __init__(self):
        super().__init__(
            "old_content not found in the file. Make sure old_content is an exact substring of the "
            "current file (including whitespace and indentation). Re-read the file with "
            "get_file_content and try again."
        )


class AmbiguousMatchError(ChangeError):
    def __init__(self, count: int):
        super().__init__(
            f"old_content matches {count} locations in the file. "
            "Include more surrounding context lines to make it unique."
        )
        self.count = count


@dataclass
class ActiveBranch:
    branch: str
    base: str
    url: str = ""


def generate_branch_name(agent_id: str) -> str:
    return f"{agent_id}/change-{int(time.time())}-{uuid.uuid4().hex[:6]}"


def replace_once(content: str, old: str, new: str) -> str:
    """Replace the single occurrence of `old`; zero or several occurrences are refused."""
    count = content.count(old) if old else 0
    if count == 0:
        raise ContentNotFoundError()
    if count > 1:
        raise AmbiguousMatchError(count)
    return content.replace(old, new, 1)


class ChangeGrouper:
    """
    Tracks the branch/PR opened for each (owner, repo) during one run.

    The first edit to a repository creates the branch and opens the PR;
    later edits are read from and committed to that same branch. One
    instance per run, never shared.
    """

    def __init__(self, code_host: CodeHost, agent_id: str, requested_by: str):
        self.code_host = code_host
        self.agent_id = agent_id
        self.requested_by = requested_by
        self.branches: dict[tuple[str, str], ActiveBranch] = {}

    def active_branch(self, owner: str, repo: str) -> ActiveBranch | None:
        return self.branches.get((owner, repo))

    async def apply(
        self,
        owner: str,
        repo: str,
        path: str,
        old_content: str,
        new_content: str,
        description: str,
        base_branch: str | None = None,
    ) -> str:
        """
        Apply one search/replace edit and return a short status line.

        Raises:
            ContentNotFoundError: `old_content` does not occur in the file.
            AmbiguousMatchError: `old_content` occurs more than once.
        """
        message = f"{self.agent_id}: {description}"
        active = self.branches.get((owner, repo))

        if active is not None:
            current = await self.code_host.get_file(owner, repo, path, active.branch)
            updated = replace_once(current.content, old_content, new_content)
            await self.code_host.update_file(owner, repo, path, active.branch, message, updated, current.sha)
            logger.info(f"Committed {path} to existing branch {owner}/{repo}@{active.branch}")
            if not active.url:
                return f"Changes committed to branch {active.branch} (no pull request could be opened)"
            return f"Changes committed to existing PR: {active.url} (branch {active.branch})"

        base = base_branch or await self.code_host.get_default_branch(owner, repo)
        current = await self.code_host.get_file(owner, repo, path, base)
        updated = replace_once(current.content, old_content, new_content)

        branch = generate_branch_name(self.agent_id)
        await self.code_host.create_branch(owner, repo, base, branch)
        await self.code_host.update_file(owner, repo, path, branch, message, updated, current.sha)

        # Later edits in this run go to this branch even if the PR cannot be opened.
        active = ActiveBranch(branch=branch, base=base)
        self.branches[(owner, repo)] = active

        body = f"Automated change requested via Slack by <@{self.requested_by}>.\n\nChange: {description}"
        try:
            active.url = await self.code_host.create_pull_request(owner, repo, base, branch, message, body)
        except Exception as e:
            logger.error(f"Pull request creation failed for {owner}/{repo}@{branch}: {e}")
            return f"Error: changes committed to branch {branch} but the pull request could not be opened: {e}"

        logger.info(f"Opened pull request {active.url} for {owner}/{repo}")
        return f"Pull request created: {active.url} (branch {branch})"
