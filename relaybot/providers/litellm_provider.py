"""LiteLLM provider implementation for multi-provider support."""

from typing import Any

import json_repair
import litellm
from litellm import acompletion
from loguru import logger

from relaybot.providers.base import LLMProvider, LLMResponse, ToolCallRequest

# GitHub Models speaks the OpenAI chat-completions dialect.
GITHUB_MODELS_API_BASE = "https://models.github.ai/inference"

NO_CHOICES_MESSAGE = "No response from the model."


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM for multi-provider support.

    Model ids are passed through to LiteLLM unchanged ("openai/gpt-4o",
    "azure/<deployment>", ...). When only an API base is configured the
    endpoint is treated as OpenAI-compatible.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "openai/gpt-4o",
        extra_headers: dict[str, str] | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = extra_headers or {}

        # Drop params a given backend does not understand instead of failing.
        litellm.drop_params = True
        litellm.suppress_debug_info = True

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": messages,
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            logger.error(f"LLM call failed for model {kwargs['model']}: {e}")
            return LLMResponse(content=f"Error calling LLM: {e}", finish_reason="error")

        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse a LiteLLM response into our standard format."""
        choices = getattr(response, "choices", None) or []
        if not choices:
            return LLMResponse(content=NO_CHOICES_MESSAGE, finish_reason="error")

        choice = choices[0]
        message = choice.message

        tool_calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            args = tc.function.arguments
            if isinstance(args, str):
                args = json_repair.loads(args) if args.strip() else {}
            if not isinstance(args, dict):
                args = {}
            tool_calls.append(ToolCallRequest(id=tc.id, name=tc.function.name, arguments=args))

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        return self.default_model
