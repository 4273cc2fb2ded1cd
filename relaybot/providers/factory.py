"""Provider factory to keep provider selection isolated from CLI logic."""

from __future__ import annotations

from loguru import logger

from relaybot.providers.litellm_provider import GITHUB_MODELS_API_BASE, LiteLLMProvider


def create_provider(config):
    """Create an LLM provider from config."""
    model = config.agent.model
    p = config.provider

    # Explicit endpoint/key (Azure, OpenAI, self-hosted gateway)
    if p.api_key or p.api_base:
        return LiteLLMProvider(
            api_key=p.api_key or None,
            api_base=p.api_base or None,
            default_model=model,
            extra_headers=p.extra_headers or None,
        )

    # GitHub Models, authenticated with the GitHub token
    if config.github.token:
        logger.debug(f"Using GitHub Models endpoint for {model}")
        return LiteLLMProvider(
            api_key=config.github.token,
            api_base=GITHUB_MODELS_API_BASE,
            default_model=model,
            extra_headers=p.extra_headers or None,
        )

    raise RuntimeError(
        "No model credentials configured. Set provider.apiKey in ~/.relaybot/config.json "
        "or export GITHUB_TOKEN / MODEL_API_KEY"
    )
