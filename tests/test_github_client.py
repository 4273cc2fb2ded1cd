import base64
import json

import httpx
import pytest

from relaybot.agent.grouper import ChangeGrouper
from relaybot.agent.tools.github import ModifyFileTool
from relaybot.clients.github import (
    GitHubClient,
    GitHubError,
    find_workflow_run_urls,
    parse_pull_request_url,
    parse_workflow_run_url,
)


def _client(handler) -> GitHubClient:
    return GitHubClient("ghp_test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_get_file_decodes_content_and_sends_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        seen["ref"] = request.url.params["ref"]
        body = base64.b64encode(b"FOO=1\n").decode()
        return httpx.Response(200, json={"type": "file", "path": "cfg/.env", "sha": "abc", "content": body})

    f = await _client(handler).get_file("acme", "api", "cfg/.env", "main")

    assert f.content == "FOO=1\n"
    assert f.sha == "abc"
    assert seen == {"auth": "Bearer ghp_test", "path": "/repos/acme/api/contents/cfg/.env", "ref": "main"}


@pytest.mark.asyncio
async def test_non_utf8_file_is_never_rewritten():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/repos/acme/api":
            return httpx.Response(200, json={"default_branch": "main"})
        body = base64.b64encode(b"name = caf\xe9\nFOO=1\n").decode()
        return httpx.Response(200, json={"type": "file", "path": "app.cfg", "sha": "abc", "content": body})

    client = _client(handler)
    grouper = ChangeGrouper(client, "relaybot", "U1")

    with pytest.raises(GitHubError) as exc:
        await grouper.apply("acme", "api", "app.cfg", "FOO=1", "FOO=2", "bump foo")

    assert exc.value.status == 415
    assert "not valid UTF-8" in str(exc.value)
    assert [r.method for r in requests] == ["GET", "GET"]

    tool = ModifyFileTool(client, grouper)
    result = await tool.execute(owner="acme", repo="api", path="app.cfg", old_content="FOO=1", new_content="FOO=2", description="d")

    assert result.startswith("Error: GitHub API error 415: app.cfg is not valid UTF-8")
    assert all(r.method == "GET" for r in requests)


@pytest.mark.asyncio
async def test_error_status_raises_with_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Not Found"})

    with pytest.raises(GitHubError) as exc:
        await _client(handler).get_default_branch("acme", "nope")

    assert exc.value.status == 404
    assert "Not Found" in str(exc.value)


@pytest.mark.asyncio
async def test_resolve_owner_prefers_first_org_and_caches():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json=[{"login": "acme"}])

    client = _client(handler)
    assert await client.resolve_owner() == "acme"
    assert await client.resolve_owner() == "acme"
    assert calls == ["/user/orgs"]


@pytest.mark.asyncio
async def test_resolve_owner_falls_back_to_user_login():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/user/orgs":
            return httpx.Response(200, json=[])
        return httpx.Response(200, json={"login": "jdoe"})

    assert await _client(handler).resolve_owner() == "jdoe"


@pytest.mark.asyncio
async def test_create_branch_then_update_file_payloads():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, json={"object": {"sha": "base-sha"}})
        return httpx.Response(201, json={})

    client = _client(handler)
    await client.create_branch("acme", "api", "main", "relaybot/change-1")
    await client.update_file("acme", "api", "a.txt", "relaybot/change-1", "msg", "new\n", "file-sha")

    assert requests[0].url.path == "/repos/acme/api/git/ref/heads/main"
    assert json.loads(requests[1].content) == {"ref": "refs/heads/relaybot/change-1", "sha": "base-sha"}
    put = json.loads(requests[2].content)
    assert requests[2].method == "PUT"
    assert put["branch"] == "relaybot/change-1"
    assert put["sha"] == "file-sha"
    assert base64.b64decode(put["content"]) == b"new\n"


@pytest.mark.asyncio
async def test_search_files_matches_case_insensitively_and_limits():
    tree = [{"path": f"svc{i}/Values.yaml", "type": "blob"} for i in range(60)] + [{"path": "svc0", "type": "tree"}]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["recursive"] == "1"
        return httpx.Response(200, json={"tree": tree})

    paths = await _client(handler).search_files("acme", "api", "main", "values.yaml", limit=50)

    assert len(paths) == 50
    assert paths[0] == "svc0/Values.yaml"


@pytest.mark.asyncio
async def test_workflow_run_collects_jobs_and_annotations():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/actions/runs/7"):
            return httpx.Response(200, json={
                "id": 7, "name": "CI", "status": "completed", "conclusion": "failure",
                "head_branch": "main", "event": "push", "html_url": "https://github.com/acme/api/actions/runs/7",
            })
        if path.endswith("/jobs"):
            return httpx.Response(200, json={"jobs": [
                {"id": 11, "name": "test", "status": "completed", "conclusion": "failure",
                 "steps": [{"name": "pytest", "status": "completed", "conclusion": "failure"}]},
                {"id": 12, "name": "lint", "status": "completed", "conclusion": "success", "steps": []},
            ]})
        if path.endswith("/check-runs/11/annotations"):
            return httpx.Response(200, json=[{
                "path": "tests/test_x.py", "start_line": 3, "annotation_level": "failure", "message": "assert 1 == 2",
            }])
        return httpx.Response(404, json={"message": "Not Found"})

    run = await _client(handler).get_workflow_run("acme", "api", 7)

    assert [j.name for j in run.jobs] == ["test", "lint"]
    assert run.jobs[0].steps[0].conclusion == "failure"
    assert run.annotations[0].message == "assert 1 == 2"
    assert run.annotations[0].line == 3


def test_url_parsers():
    assert parse_workflow_run_url("see https://github.com/acme/api/actions/runs/123/job/9") == ("acme", "api", 123)
    assert parse_pull_request_url("https://github.com/acme/api/pull/5/files") == ("acme", "api", 5)
    assert parse_workflow_run_url("https://example.com") is None

    text = (
        "https://github.com/a/b/actions/runs/1 and https://github.com/a/b/actions/runs/1 "
        "and https://github.com/c/d/actions/runs/2"
    )
    assert find_workflow_run_urls(text) == [("a", "b", 1), ("c", "d", 2)]
