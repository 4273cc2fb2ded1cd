"""Tool-call loop: the core orchestration engine."""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from relaybot.agent.tools.registry import ToolRegistry
from relaybot.providers.base import LLMProvider

DEFAULT_MAX_ROUNDS = 50

EXHAUSTED_MESSAGE = "The request required too many steps. Please try a simpler query."
FAILED_MESSAGE = "Failed to process request: {error}"
EMPTY_ANSWER_MESSAGE = "I've completed processing but have no response to give."

CODE_INTENT_KEYWORDS = (
    "modify",
    "change the code",
    "change code",
    "edit the file",
    "edit file",
    "update the file",
    "update file",
    "fix the code",
    "fix code",
    "fix the bug",
    "create pr",
    "create a pr",
    "open pr",
    "open a pr",
    "pull request",
    "refactor",
    "implement",
    "add feature",
    "write code",
    "patch",
)

MODIFY_TOOL = "modify_file"
THREAD_REPLY_TOOL = "reply_in_thread"


class RunState(str, Enum):
    DRAFTING = "drafting"
    DISPATCHING = "dispatching"
    DONE = "done"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass
class RunResult:
    """Outcome of one run. `content` is what the user should see."""

    state: RunState
    content: str
    rounds: int
    model: str
    tools_used: list[str] = field(default_factory=list)
    replied_in_thread: bool = False


def has_code_intent(text: str) -> bool:
    lowered = text.lower()
    return any(kw in lowered for kw in CODE_INTENT_KEYWORDS)


def _strip_think(text: str | None) -> str | None:
    """Remove <think>…</think> blocks that some models embed in content."""
    if not text:
        return None
    return re.sub(r"<think>[\s\S]*?</think>", "", text).strip() or None


class ToolCallLoop:
    """
    One bounded model/tool conversation.

    It:
    1. Calls the model with the system prompt, the user text and the tool catalog
    2. Executes requested tools in order and feeds their results back
    3. Repeats until the model answers without tools or the round budget runs out

    A loop object serves exactly one run; `state` is observable while it runs.
    """

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry,
        model: str | None = None,
        code_model: str | None = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        temperature: float = 0.2,
        max_tokens: int = 4096,
    ):
        self.provider = provider
        self.tools = tools
        self.model = model or provider.get_default_model()
        self.code_model = code_model or None
        self.max_rounds = max_rounds if max_rounds > 0 else DEFAULT_MAX_ROUNDS
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.state = RunState.DRAFTING

    def select_model(self, text: str, force_code_model: bool = False) -> str:
        if self.code_model and (force_code_model or has_code_intent(text)):
            return self.code_model
        return self.model

    def _transition(self, state: RunState) -> None:
        if state != self.state:
            logger.debug(f"Run state {self.state.value} -> {state.value}")
        self.state = state

    async def run(
        self,
        system_prompt: str,
        user_text: str,
        force_code_model: bool = False,
    ) -> RunResult:
        """
        Run the loop to a terminal state.

        Args:
            system_prompt: Fully assembled system prompt (history and context included).
            user_text: The user's request.
            force_code_model: Use the code model from the first round.

        Returns:
            RunResult in state DONE, EXHAUSTED or FAILED.
        """
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_text},
        ]
        current_model = self.select_model(user_text, force_code_model)
        tools_used: list[str] = []
        replied_in_thread = False
        rounds = 0

        def _result(state: RunState, content: str) -> RunResult:
            self._transition(state)
            return RunResult(
                state=state,
                content=content,
                rounds=rounds,
                model=current_model,
                tools_used=tools_used,
                replied_in_thread=replied_in_thread,
            )

        while rounds < self.max_rounds:
            rounds += 1
            self._transition(RunState.DRAFTING)

            try:
                response = await self.provider.chat(
                    messages=messages,
                    tools=self.tools.get_definitions(),
                    model=current_model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )
            except Exception as e:
                logger.error(f"Model call failed on round {rounds}: {e}")
                return _result(RunState.FAILED, FAILED_MESSAGE.format(error=e))

            if response.finish_reason == "error":
                error = response.content or "unknown error"
                logger.error(f"Model returned an error on round {rounds}: {error}")
                return _result(RunState.FAILED, FAILED_MESSAGE.format(error=error))

            if not response.has_tool_calls:
                final = _strip_think(response.content) or EMPTY_ANSWER_MESSAGE
                logger.info(f"Run finished after {rounds} round(s) on {current_model}, tools: {tools_used or 'none'}")
                return _result(RunState.DONE, final)

            self._transition(RunState.DISPATCHING)
            messages.append({
                "role": "assistant",
                "content": response.content,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in response.tool_calls
                ],
            })

            switch_to_code_model = False
            for tool_call in response.tool_calls:
                tools_used.append(tool_call.name)
                args_str = json.dumps(tool_call.arguments, ensure_ascii=False)
                logger.info(f"Tool call: {tool_call.name}({args_str[:200]})")
                result = await self.tools.execute(tool_call.name, tool_call.arguments)

                if tool_call.name == MODIFY_TOOL:
                    switch_to_code_model = True
                if tool_call.name == THREAD_REPLY_TOOL and not result.startswith("Error"):
                    replied_in_thread = True

                messages.append({
                    "role": "tool",
                    "tool_call_id": tool_call.id,
                    "name": tool_call.name,
                    "content": result,
                })

            if switch_to_code_model and self.code_model and current_model != self.code_model:
                logger.info(f"Switching to code model {self.code_model} after {MODIFY_TOOL}")
                current_model = self.code_model

        logger.warning(f"Run exhausted {self.max_rounds} round(s) without a final answer")
        return _result(RunState.EXHAUSTED, EXHAUSTED_MESSAGE)
