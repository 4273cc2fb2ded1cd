import json

import httpx
import pytest

from relaybot.clients.jira import JiraClient, JiraError, adf_to_text, text_to_adf


def _client(handler, team_field: str = "") -> JiraClient:
    return JiraClient(
        "https://acme.atlassian.net/",
        "bot@acme.io",
        "token",
        team_field=team_field,
        transport=httpx.MockTransport(handler),
    )


def test_text_to_adf_paragraphs_and_breaks():
    doc = text_to_adf("line one\nline two\n\nsecond para")

    assert doc["type"] == "doc"
    first, second = doc["content"]
    assert [n["type"] for n in first["content"]] == ["text", "hardBreak", "text"]
    assert second["content"] == [{"type": "text", "text": "second para"}]
    assert adf_to_text(doc) == "line one\nline two\nsecond para\n"


@pytest.mark.asyncio
async def test_create_issue_payload_and_browse_url():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"key": "OPS-42"})

    issue = await _client(handler).create_issue("OPS", "Disk full", "details", labels=["ops"], assignee_id="acc-1")

    assert seen["path"] == "/rest/api/3/issue"
    assert seen["auth"].startswith("Basic ")
    fields = seen["body"]["fields"]
    assert fields["project"] == {"key": "OPS"}
    assert fields["labels"] == ["ops"]
    assert fields["assignee"] == {"accountId": "acc-1"}
    assert issue.url == "https://acme.atlassian.net/browse/OPS-42"


@pytest.mark.asyncio
async def test_error_messages_are_joined():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"errorMessages": ["Issue does not exist"]})

    with pytest.raises(JiraError, match="Issue does not exist"):
        await _client(handler).get_issue("OPS-1")


@pytest.mark.asyncio
async def test_update_with_nothing_raises():
    with pytest.raises(ValueError):
        await _client(lambda r: httpx.Response(204)).update_issue("OPS-1")


@pytest.mark.asyncio
async def test_resolve_user_exact_email_wins():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[
            {"accountId": "a1", "displayName": "Jane Roe", "emailAddress": "jroe@acme.io"},
            {"accountId": "a2", "displayName": "Jane Doe", "emailAddress": "jane@acme.io"},
        ])

    user = await _client(handler).resolve_user("jane@acme.io")

    assert user.account_id == "a2"


@pytest.mark.asyncio
async def test_resolve_user_prefers_exact_name_over_prefix():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[
            {"accountId": "a1", "displayName": "Sam Smithers"},
            {"accountId": "a2", "displayName": "Sam Smith"},
        ])

    user = await _client(handler).resolve_user("@sam smith")

    assert user.account_id == "a2"


@pytest.mark.asyncio
async def test_resolve_user_falls_back_to_assignable_search():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/user/assignable/search"):
            assert request.url.params["project"] == "OPS"
            return httpx.Response(200, json=[{"accountId": "a9", "displayName": "Kim Lee"}])
        return httpx.Response(200, json=[{"accountId": "app", "displayName": "Kim Lee", "accountType": "app"}])

    user = await _client(handler).resolve_user("kim", project="OPS")

    assert user.account_id == "a9"


@pytest.mark.asyncio
async def test_resolve_team_discovers_field_and_matches_name():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/field"):
            return httpx.Response(200, json=[
                {"id": "customfield_1", "schema": {"custom": "com.example:other"}},
                {"id": "customfield_10001", "schema": {"custom": "com.atlassian.jira.plugin.system.customfieldtypes:atlassian-team"}},
            ])
        body = json.loads(request.content)
        assert body["jql"].startswith("cf[10001] is not EMPTY")
        return httpx.Response(200, json={"issues": [
            {"fields": {"customfield_10001": {"id": "t-2", "name": "Platform Infra"}}},
            {"fields": {"customfield_10001": {"id": "t-1", "name": "Platform"}}},
        ]})

    client = _client(handler)
    team = await client.resolve_team("platform")

    assert team.id == "t-1"
    assert client.team_field == "customfield_10001"
