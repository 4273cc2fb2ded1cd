"""Command routing: intent classification, prompt assembly, run and delivery."""

import re
from enum import Enum
from typing import Any

from loguru import logger

from relaybot.agent.context import NO_MESSAGES, ContextProvider, is_empty_context
from relaybot.agent.grouper import ChangeGrouper
from relaybot.agent.loop import RunResult, RunState, ToolCallLoop
from relaybot.agent.memory import ConversationMemory
from relaybot.agent.prompts import PromptBook
from relaybot.agent.request import CommandRequest
from relaybot.agent.tools.github import github_tools
from relaybot.agent.tools.jira import jira_tools
from relaybot.agent.tools.registry import ToolRegistry
from relaybot.agent.tools.slack import slack_tools
from relaybot.channels.base import Messenger
from relaybot.clients.base import CodeHost, Tracker
from relaybot.clients.github import find_workflow_run_urls, format_workflow_run
from relaybot.providers.base import LLMProvider
from relaybot.session.store import SessionStore

AUDIT_MESSAGE = ":mag: <@{user}> requested in <#{channel}>:\n> {text}"
ACK_MESSAGE = "Processing request: _{text}_"
MAX_PREFETCHED_RUNS = 3

_MENTION_RE = re.compile(r"^<@[A-Z0-9]+>\s*")


class Intent(str, Enum):
    DEBUG = "debug"
    FILEMOD = "filemod"
    GENERAL = "general"


INTENT_KEYWORDS: dict[Intent, tuple[str, ...]] = {
    Intent.DEBUG: (
        "debug",
        "analyze",
        "investigate",
        "diagnose",
        "what happened",
        "explain the error",
        "look at the latest",
    ),
    Intent.FILEMOD: (
        "add env",
        "modify",
        "update file",
        "change file",
        "edit file",
        "add variable",
    ),
}


class ClassificationError(Exception):
    """The request could not be mapped to a handling path."""


class IntentRouter:
    """Keyword rules first; optionally ask the model when none match."""

    def __init__(
        self,
        provider: LLMProvider | None = None,
        model: str | None = None,
        prompt: str = "",
        use_fallback: bool = True,
    ):
        self.provider = provider
        self.model = model
        self.prompt = prompt
        self.use_fallback = use_fallback and provider is not None

    @staticmethod
    def match_keywords(text: str) -> Intent | None:
        lowered = text.lower()
        for intent, keywords in INTENT_KEYWORDS.items():
            if any(kw in lowered for kw in keywords):
                return intent
        return None

    async def classify(self, text: str, history: str = "") -> Intent:
        """
        Map free text to an Intent.

        `history` is the rendered earlier conversation; the model sees it
        ahead of the current message so short follow-ups keep their meaning.

        Raises:
            ClassificationError: The fallback model call failed.
        """
        intent = self.match_keywords(text)
        if intent is not None:
            logger.debug(f"Intent {intent.value} (keyword)")
            return intent
        if not self.use_fallback:
            return Intent.GENERAL

        classify_input = text
        if history:
            classify_input = f"Previous conversation:\n{history}\n\nCurrent message: {text}"

        try:
            response = await self.provider.chat(
                messages=[
                    {"role": "system", "content": self.prompt},
                    {"role": "user", "content": classify_input},
                ],
                model=self.model,
                max_tokens=10,
                temperature=0.0,
            )
        except Exception as e:
            raise ClassificationError(str(e)) from e
        if response.finish_reason == "error":
            raise ClassificationError(response.content or "classification failed")

        answer = (response.content or "").strip().lower()
        if "debug" in answer:
            intent = Intent.DEBUG
        elif "filemod" in answer:
            intent = Intent.FILEMOD
        else:
            intent = Intent.GENERAL
        logger.debug(f"Intent {intent.value} (model said {answer!r})")
        return intent


class CommandRouter:
    """
    Entry point for slash commands and thread follow-ups.

    Owns nothing long-lived itself: sessions, memory and the context cache
    are injected so they can be shared across routers and replaced in tests.
    """

    def __init__(
        self,
        messenger: Messenger,
        code_host: CodeHost,
        provider: LLMProvider,
        sessions: SessionStore,
        memory: ConversationMemory,
        context: ContextProvider,
        prompts: PromptBook | None = None,
        tracker: Tracker | None = None,
        agent_id: str = "relaybot",
        model: str | None = None,
        code_model: str | None = None,
        max_tool_rounds: int = 50,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        jira_project: str = "",
        intent_fallback: bool = True,
        bot_user_id: str = "",
    ):
        self.messenger = messenger
        self.code_host = code_host
        self.provider = provider
        self.sessions = sessions
        self.memory = memory
        self.context = context
        self.prompts = prompts or PromptBook()
        self.tracker = tracker
        self.agent_id = agent_id
        self.model = model or provider.get_default_model()
        self.code_model = code_model
        self.max_tool_rounds = max_tool_rounds
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.jira_project = jira_project
        self.bot_user_id = bot_user_id
        self.intents = IntentRouter(
            provider=provider,
            model=self.model,
            prompt=self.prompts.get("classify"),
            use_fallback=intent_fallback,
        )

    @classmethod
    def from_config(
        cls,
        config: Any,
        messenger: Messenger,
        code_host: CodeHost,
        provider: LLMProvider,
        tracker: Tracker | None = None,
        sessions: SessionStore | None = None,
    ) -> "CommandRouter":
        return cls(
            messenger=messenger,
            code_host=code_host,
            provider=provider,
            sessions=sessions or SessionStore(ttl=config.sessions.ttl_seconds),
            memory=ConversationMemory(max_turns=config.memory.max_turns, ttl=config.memory.ttl_seconds),
            context=ContextProvider(
                messenger,
                message_limit=config.context.message_limit,
                cache_ttl=config.context.cache_ttl_seconds,
            ),
            prompts=PromptBook(config.prompts),
            tracker=tracker,
            agent_id=config.agent.id,
            model=config.agent.model,
            code_model=config.agent.code_model,
            max_tool_rounds=config.agent.max_tool_rounds,
            temperature=config.agent.temperature,
            max_tokens=config.agent.max_tokens,
            jira_project=config.jira.default_project,
            intent_fallback=config.agent.intent_fallback,
            bot_user_id=config.slack.bot_user_id,
        )

    def usage_hint(self) -> str:
        return (
            "I couldn't understand your request. Try: "
            f"`/{self.agent_id} debug the latest message` or "
            f"`/{self.agent_id} add env FOO=bar to repo/path` or just ask a question."
        )

    async def handle(self, channel_id: str, user_id: str, text: str, response_url: str = "") -> None:
        """Process a slash command. All output goes through the messenger."""
        request = CommandRequest(channel_id=channel_id, user_id=user_id, text=text.strip(), response_url=response_url)

        if not request.text:
            await self._send(request, self.usage_hint(), ephemeral=True)
            return
        if request.text.lower() in ("forget", "reset"):
            self.memory.clear(channel_id, user_id)
            await self._send(request, "Conversation memory cleared.", ephemeral=True)
            return

        logger.info(f"Command from {user_id} in {channel_id}: {request.text[:120]}")
        try:
            request.thread_ts = await self.messenger.post_message(
                channel_id, AUDIT_MESSAGE.format(user=user_id, channel=channel_id, text=request.text)
            )
        except Exception as e:
            logger.warning(f"Could not post audit message in {channel_id}, continuing without a thread: {e}")

        if request.thread_ts:
            self.sessions.open(channel_id, request.thread_ts, user_id, self.agent_id, self)

        if request.response_url:
            try:
                await self.messenger.respond(request.response_url, ACK_MESSAGE.format(text=request.text), ephemeral=True)
            except Exception as e:
                logger.warning(f"Could not acknowledge command from {user_id}: {e}")

        await self._process(request)

    async def handle_thread_reply(self, channel_id: str, thread_ts: str, user_id: str, text: str) -> None:
        """Process a message posted inside a thread with a live session."""
        request = CommandRequest(
            channel_id=channel_id,
            user_id=user_id,
            text=_MENTION_RE.sub("", text.strip()),
            thread_ts=thread_ts,
            is_follow_up=True,
        )
        if not request.text:
            return
        logger.info(f"Thread follow-up from {user_id} in {channel_id}/{thread_ts}: {request.text[:120]}")
        self.sessions.open(channel_id, thread_ts, user_id, self.agent_id, self)
        await self._process(request)

    async def handle_event(self, event: dict[str, Any]) -> bool:
        """Route a Slack `message` event, ignoring the bot's own posts."""
        if not self.bot_user_id:
            try:
                self.bot_user_id = await self.messenger.get_bot_user_id()
            except Exception as e:
                logger.warning(f"Could not resolve bot user id: {e}")
        return await dispatch_thread_message(self.sessions, event, self.bot_user_id)

    async def _process(self, request: CommandRequest) -> None:
        self.memory.add_user_message(request.channel_id, request.user_id, request.text)

        history = self.memory.get_history(request.channel_id, request.user_id)
        try:
            intent = await self.intents.classify(request.text, history)
        except ClassificationError as e:
            logger.warning(f"Could not classify request from {request.user_id}: {e}")
            await self._send(request, self.usage_hint(), ephemeral=True)
            return

        result = await self.run(intent, request)
        await self._deliver(request, result)

    async def run(self, intent: Intent, request: CommandRequest) -> RunResult:
        """Build the per-run tool catalog and prompt, then run the loop to completion."""
        grouper = ChangeGrouper(self.code_host, self.agent_id, request.user_id)
        loop = ToolCallLoop(
            provider=self.provider,
            tools=self.build_tools(request, grouper),
            model=self.model,
            code_model=self.code_model,
            max_rounds=self.max_tool_rounds,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        force_code_model = intent == Intent.FILEMOD
        model = loop.select_model(request.text, force_code_model)
        system_prompt = await self._system_prompt(intent, request, model)
        logger.info(f"Running {intent.value} path on {model} for {request.user_id}")
        return await loop.run(system_prompt, request.text, force_code_model=force_code_model)

    def build_tools(self, request: CommandRequest, grouper: ChangeGrouper) -> ToolRegistry:
        registry = ToolRegistry()
        tools = github_tools(self.code_host, grouper) + slack_tools(self.messenger, self.context, request)
        if self.tracker is not None:
            tools += jira_tools(self.tracker, self.messenger, request, self.jira_project)
        for tool in tools:
            registry.register(tool)
        return registry

    async def _system_prompt(self, intent: Intent, request: CommandRequest, model: str) -> str:
        values = {"model": model, "user_id": request.user_id, "agent_id": self.agent_id}
        parts = [self.prompts.render("security", **values), self.prompts.render(intent.value, **values)]
        prompt = "\n\n".join(p for p in parts if p)

        history = self.memory.get_history(request.channel_id, request.user_id)
        if history:
            prompt += "\n\nPrevious conversation with this user:\n" + history

        try:
            if intent == Intent.DEBUG:
                channel_context = await self.context.get_fresh_context(request.channel_id)
            else:
                channel_context = await self.context.get_cached_context(request.channel_id)
        except Exception as e:
            logger.warning(f"Could not fetch channel context for {request.channel_id}: {e}")
            channel_context = NO_MESSAGES
        if not is_empty_context(channel_context):
            prompt += "\n\nRecent channel messages for context:\n" + channel_context

        prompt += await self._workflow_summaries(request.text)
        return prompt

    async def _workflow_summaries(self, text: str) -> str:
        """Pre-fetch GitHub Actions runs linked in the request so the first round can use them."""
        summaries = []
        for owner, repo, run_id in find_workflow_run_urls(text)[:MAX_PREFETCHED_RUNS]:
            try:
                run = await self.code_host.get_workflow_run(owner, repo, run_id)
            except Exception as e:
                logger.warning(f"Could not fetch workflow run {owner}/{repo}#{run_id}: {e}")
                continue
            summaries.append(format_workflow_run(run))
        if not summaries:
            return ""
        return "\n\nGitHub Actions runs referenced in the request:\n" + "\n\n".join(summaries)

    async def _deliver(self, request: CommandRequest, result: RunResult) -> None:
        if result.state == RunState.DONE:
            self.memory.set_assistant_response(request.channel_id, request.user_id, result.content)
            if result.replied_in_thread:
                logger.info("Answer already posted via reply_in_thread, skipping final delivery")
                return
            await self._send(request, result.content)
            return

        if result.state == RunState.FAILED and request.is_follow_up:
            self.sessions.close(request.channel_id, request.thread_ts, reason="inference failure")
        await self._send(request, result.content, ephemeral=not request.thread_ts)

    async def _send(self, request: CommandRequest, text: str, ephemeral: bool = False) -> None:
        """Deliver one message on the path the request came in on. Never raises."""
        try:
            if request.thread_ts and not ephemeral:
                await self.messenger.post_thread_reply(request.channel_id, request.thread_ts, text)
            elif request.response_url:
                await self.messenger.respond(request.response_url, text, ephemeral=ephemeral)
            elif ephemeral:
                await self.messenger.post_ephemeral(request.channel_id, request.user_id, text)
            else:
                await self.messenger.post_message(request.channel_id, text)
        except Exception as e:
            logger.error(f"Failed to deliver message to {request.channel_id}: {e}")


async def dispatch_thread_message(sessions: SessionStore, event: dict[str, Any], bot_user_id: str = "") -> bool:
    """
    Route a Slack `message` event to the router that owns its thread.

    Returns True when the event was handed to a router.
    """
    if event.get("subtype") or event.get("bot_id"):
        return False
    thread_ts = event.get("thread_ts")
    user_id = event.get("user") or ""
    if not thread_ts or not user_id or user_id == bot_user_id:
        return False

    channel_id = event.get("channel", "")
    session = sessions.lookup(channel_id, thread_ts)
    if session is None:
        return False

    await session.router.handle_thread_reply(channel_id, thread_ts, user_id, event.get("text") or "")
    return True
