import json

import pytest
from typer.testing import CliRunner

from relaybot import __version__
from relaybot.cli.commands import app
from relaybot.config import loader

runner = CliRunner()

_ENV = (
    "SLACK_BOT_TOKEN", "GITHUB_TOKEN", "GENERAL_MODEL", "CODE_MODEL",
    "MODEL_API_KEY", "MODEL_API_BASE", "MAX_TOOL_ROUNDS", "THREAD_SESSION_TTL",
)


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / ".relaybot" / "config.json"
    monkeypatch.setattr(loader, "get_config_path", lambda: path)
    return path


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"relaybot v{__version__}" in result.stdout


def test_onboard_writes_default_config(config_path):
    result = runner.invoke(app, ["onboard"])

    assert result.exit_code == 0
    assert "Created config" in result.stdout
    data = json.loads(config_path.read_text())
    assert data["agent"]["maxToolRounds"] == 50


def test_onboard_keeps_existing_config(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text('{"agent": {"id": "opsbot"}}')

    result = runner.invoke(app, ["onboard"], input="n\n")

    assert result.exit_code == 0
    assert "Keeping existing config." in result.stdout
    assert json.loads(config_path.read_text()) == {"agent": {"id": "opsbot"}}


def test_status_reflects_config_and_env(config_path, monkeypatch):
    config_path.parent.mkdir(parents=True)
    config_path.write_text('{"agent": {"model": "openai/gpt-4.1"}}')
    monkeypatch.setenv("GITHUB_TOKEN", "ghp")

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "Model: openai/gpt-4.1" in result.stdout
    assert "Model endpoint: GitHub Models" in result.stdout
    assert "Thread session TTL: 180s" in result.stdout


def test_ask_without_slack_token_exits(config_path):
    result = runner.invoke(app, ["ask", "hello", "--channel", "C1", "--user", "U1"])

    assert result.exit_code == 1
    assert "Slack bot token is not configured" in result.stdout
