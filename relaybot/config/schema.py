"""Configuration schema using Pydantic."""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SlackConfig(Base):
    """Slack app credentials."""

    bot_token: str = ""
    signing_secret: str = ""
    app_token: str = ""  # xapp- token, Socket Mode only
    bot_user_id: str = ""  # resolved via auth.test when empty

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token)


class GitHubConfig(Base):
    """GitHub credentials. The token also authenticates GitHub Models."""

    token: str = ""
    api_base: str = "https://api.github.com"


class JiraConfig(Base):
    """Jira Cloud credentials. Jira tools are only registered when enabled."""

    base_url: str = ""
    email: str = ""
    api_token: str = ""
    default_project: str = ""
    team_field: str = ""  # e.g. customfield_10001; discovered when empty

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.email and self.api_token)


class AgentConfig(Base):
    """Agent defaults."""

    id: str = "relaybot"
    model: str = "openai/gpt-4o"
    code_model: str | None = None
    max_tool_rounds: int = 50
    temperature: float = 0.2
    max_tokens: int = 4096
    intent_fallback: bool = True

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("agent id must not be empty")
        return v


class ProviderConfig(Base):
    """Model endpoint. Empty means GitHub Models with the GitHub token."""

    api_key: str = ""
    api_base: str | None = None
    extra_headers: dict[str, str] | None = None


class SessionsConfig(Base):
    """Thread follow-up sessions."""

    ttl_seconds: float = 180


class MemoryConfig(Base):
    """Per-user conversation memory."""

    max_turns: int = Field(default=10, ge=2)
    ttl_seconds: float = 600


class ContextConfig(Base):
    """Channel context retrieval."""

    message_limit: int = Field(default=30, ge=1, le=1000)
    cache_ttl_seconds: float = 30


class Config(Base):
    """Root configuration for relaybot."""

    slack: SlackConfig = Field(default_factory=SlackConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    jira: JiraConfig = Field(default_factory=JiraConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    prompts: dict[str, str] = Field(default_factory=dict)
    app_url: str = ""
