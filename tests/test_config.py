import json

import pytest
from pydantic import ValidationError

from relaybot.config.loader import (
    _apply_env_overrides,
    _migrate_config,
    load_config,
    parse_duration,
    save_config,
)
from relaybot.config.schema import AgentConfig, Config, MemoryConfig


def test_defaults():
    config = Config()

    assert config.agent.id == "relaybot"
    assert config.agent.max_tool_rounds == 50
    assert config.agent.code_model is None
    assert config.sessions.ttl_seconds == 180
    assert config.memory.max_turns == 10
    assert config.memory.ttl_seconds == 600
    assert config.context.message_limit == 30
    assert config.context.cache_ttl_seconds == 30
    assert not config.slack.enabled
    assert not config.jira.enabled


def test_camel_and_snake_keys_are_both_accepted():
    a = Config.model_validate({"agent": {"maxToolRounds": 12, "codeModel": "openai/o3"}})
    b = Config.model_validate({"agent": {"max_tool_rounds": 12, "code_model": "openai/o3"}})

    assert a.agent == b.agent


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        MemoryConfig(max_turns=1)
    with pytest.raises(ValidationError):
        AgentConfig(id="   ")


def test_jira_enabled_needs_all_credentials():
    config = Config.model_validate({"jira": {"baseUrl": "https://acme.atlassian.net", "email": "a@b.c"}})
    assert not config.jira.enabled

    config.jira.api_token = "tok"
    assert config.jira.enabled


@pytest.mark.parametrize("text,seconds", [
    ("180", 180.0),
    ("3m", 180.0),
    ("1m30s", 90.0),
    ("500ms", 0.5),
    ("1h", 3600.0),
])
def test_parse_duration(text, seconds):
    assert parse_duration(text) == pytest.approx(seconds)


@pytest.mark.parametrize("text", ["", "3x", "m3", "1m 30s"])
def test_parse_duration_rejects_garbage(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_migrate_moves_flat_keys_into_sections():
    data = _migrate_config({
        "slackBotToken": "xoxb-1",
        "maxToolRounds": 20,
        "threadSessionTtl": "5m",
        "jiraUrl": "https://acme.atlassian.net",
        "agent": {"id": "opsbot"},
    })

    assert data == {
        "slack": {"botToken": "xoxb-1"},
        "agent": {"id": "opsbot", "maxToolRounds": 20},
        "sessions": {"ttlSeconds": 300.0},
        "jira": {"baseUrl": "https://acme.atlassian.net"},
    }


def test_migrate_does_not_clobber_sectioned_value():
    data = _migrate_config({"githubToken": "old", "github": {"token": "new"}})
    assert data == {"github": {"token": "new"}}


def test_env_overrides_win():
    config = Config.model_validate({"agent": {"model": "file-model"}})

    _apply_env_overrides(config, {
        "GENERAL_MODEL": "env-model",
        "SLACK_BOT_TOKEN": "xoxb-env",
        "MAX_TOOL_ROUNDS": "8",
        "THREAD_SESSION_TTL": "2m",
        "APP_URL": "https://relay.example.com",
    })

    assert config.agent.model == "env-model"
    assert config.slack.enabled
    assert config.agent.max_tool_rounds == 8
    assert config.sessions.ttl_seconds == 120
    assert config.app_url == "https://relay.example.com"


def test_invalid_env_numbers_are_ignored():
    config = Config()

    _apply_env_overrides(config, {"MAX_TOOL_ROUNDS": "lots", "THREAD_SESSION_TTL": "soon"})

    assert config.agent.max_tool_rounds == 50
    assert config.sessions.ttl_seconds == 180


def test_load_and_save_round_trip(tmp_path, monkeypatch):
    for name in ("GENERAL_MODEL", "CODE_MODEL", "SLACK_BOT_TOKEN", "GITHUB_TOKEN", "MAX_TOOL_ROUNDS"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "config.json"
    config = Config()
    config.agent.code_model = "openai/o3"
    config.prompts["debug"] = "Custom debug prompt"

    save_config(config, path)
    saved = json.loads(path.read_text())
    loaded = load_config(path)

    assert saved["agent"]["codeModel"] == "openai/o3"
    assert loaded.agent.code_model == "openai/o3"
    assert loaded.prompts == {"debug": "Custom debug prompt"}


def test_broken_file_falls_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("MAX_TOOL_ROUNDS", raising=False)
    path = tmp_path / "config.json"
    path.write_text("{not json")

    config = load_config(path)

    assert config.agent.max_tool_rounds == 50


def test_missing_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("GENERAL_MODEL", raising=False)
    config = load_config(tmp_path / "absent.json")
    assert config.agent.model == "openai/gpt-4o"
