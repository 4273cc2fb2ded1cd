"""Configuration loading utilities."""

import json
import os
import re
from pathlib import Path
from typing import Mapping

from loguru import logger
from pydantic import ValidationError

from relaybot.config.schema import Config

# Legacy flat keys -> (section, key)
_LEGACY_KEYS = {
    "slackBotToken": ("slack", "botToken"),
    "slackSigningSecret": ("slack", "signingSecret"),
    "slackAppToken": ("slack", "appToken"),
    "githubToken": ("github", "token"),
    "generalModel": ("agent", "model"),
    "codeModel": ("agent", "codeModel"),
    "maxToolRounds": ("agent", "maxToolRounds"),
    "threadSessionTtl": ("sessions", "ttlSeconds"),
    "jiraUrl": ("jira", "baseUrl"),
    "jiraEmail": ("jira", "email"),
    "jiraApiToken": ("jira", "apiToken"),
    "jiraProject": ("jira", "defaultProject"),
}

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".relaybot" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, then apply environment overrides.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()
    config = Config()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            config = Config.model_validate(_migrate_config(data))
        except (json.JSONDecodeError, ValidationError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            logger.warning("Using default configuration.")

    return _apply_env_overrides(config, os.environ)


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(by_alias=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def _migrate_config(data: dict) -> dict:
    """Move legacy flat top-level keys into their sections."""
    for legacy, (section, key) in _LEGACY_KEYS.items():
        if legacy not in data:
            continue
        value = data.pop(legacy)
        target = data.setdefault(section, {})
        if key in target:
            continue
        if legacy == "threadSessionTtl" and isinstance(value, str):
            value = parse_duration(value)
        target[key] = value
    return data


def parse_duration(value: str) -> float:
    """Parse "180", "3m", "1m30s" or "500ms" into seconds."""
    value = value.strip()
    if not value:
        raise ValueError("empty duration")
    try:
        return float(value)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for m in _DURATION_RE.finditer(value):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(value):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def _apply_env_overrides(config: Config, env: Mapping[str, str]) -> Config:
    """Environment variables win over the config file."""
    overrides = {
        "SLACK_BOT_TOKEN": (config.slack, "bot_token"),
        "SLACK_SIGNING_SECRET": (config.slack, "signing_secret"),
        "SLACK_APP_TOKEN": (config.slack, "app_token"),
        "GITHUB_TOKEN": (config.github, "token"),
        "GENERAL_MODEL": (config.agent, "model"),
        "CODE_MODEL": (config.agent, "code_model"),
        "MODEL_API_KEY": (config.provider, "api_key"),
        "MODEL_API_BASE": (config.provider, "api_base"),
        "JIRA_URL": (config.jira, "base_url"),
        "JIRA_EMAIL": (config.jira, "email"),
        "JIRA_API_TOKEN": (config.jira, "api_token"),
        "JIRA_PROJECT": (config.jira, "default_project"),
    }
    for name, (section, attr) in overrides.items():
        if value := env.get(name):
            setattr(section, attr, value)

    if value := env.get("APP_URL"):
        config.app_url = value

    if value := env.get("MAX_TOOL_ROUNDS"):
        try:
            config.agent.max_tool_rounds = int(value)
        except ValueError:
            logger.warning(f"Ignoring invalid MAX_TOOL_ROUNDS={value!r}")

    if value := env.get("THREAD_SESSION_TTL"):
        try:
            config.sessions.ttl_seconds = parse_duration(value)
        except ValueError:
            logger.warning(f"Ignoring invalid THREAD_SESSION_TTL={value!r}")

    return config
