import json

import httpx
import pytest

from relaybot.channels.slack import SlackAPIError, SlackClient


def _client(handler) -> SlackClient:
    return SlackClient("xoxb-test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_post_message_returns_ts_and_sends_bearer():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "ts": "1700000000.000200"})

    ts = await _client(handler).post_message("C1", "hello")

    assert ts == "1700000000.000200"
    assert seen["url"] == "https://slack.com/api/chat.postMessage"
    assert seen["auth"] == "Bearer xoxb-test"
    assert seen["body"] == {"channel": "C1", "text": "hello"}


@pytest.mark.asyncio
async def test_ok_false_raises_slack_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "error": "channel_not_found"})

    with pytest.raises(SlackAPIError, match="channel_not_found"):
        await _client(handler).fetch_channel_history("C404", 30)


@pytest.mark.asyncio
async def test_history_passes_channel_and_limit():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["channel"] == "C1"
        assert request.url.params["limit"] == "30"
        return httpx.Response(200, json={"ok": True, "messages": [{"ts": "1.0", "text": "hi"}]})

    messages = await _client(handler).fetch_channel_history("C1", 30)

    assert messages == [{"ts": "1.0", "text": "hi"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("ephemeral,expected", [(False, "in_channel"), (True, "ephemeral")])
async def test_respond_posts_to_response_url(ephemeral, expected):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, text="ok")

    await _client(handler).respond("https://hooks.slack.com/commands/T/1/abc", "answer", ephemeral=ephemeral)

    assert seen["url"] == "https://hooks.slack.com/commands/T/1/abc"
    assert seen["body"] == {"response_type": expected, "text": "answer"}


@pytest.mark.asyncio
async def test_respond_http_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="expired_url")

    with pytest.raises(SlackAPIError):
        await _client(handler).respond("https://hooks.slack.com/commands/T/1/abc", "late")


@pytest.mark.asyncio
async def test_user_info_flattens_profile():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True, "user": {
            "id": "U1", "name": "jdoe", "tz": "Europe/Paris",
            "profile": {"real_name": "Jane Doe", "display_name": "jane", "email": "jane@acme.io"},
        }})

    info = await _client(handler).get_user_info("U1")

    assert info["real_name"] == "Jane Doe"
    assert info["email"] == "jane@acme.io"
    assert info["tz"] == "Europe/Paris"


@pytest.mark.asyncio
async def test_bot_user_id_is_cached():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json={"ok": True, "user_id": "UBOT"})

    client = _client(handler)
    assert await client.get_bot_user_id() == "UBOT"
    assert await client.get_bot_user_id() == "UBOT"
    assert calls == ["/api/auth.test"]
