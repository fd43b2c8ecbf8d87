"""Direct-call strategy used when the agent runner is unavailable."""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from typing import Any

from langchain_core.messages import SystemMessage

from chat_orchestrator.agent.events import (
    ExecutionEvent,
    FinalOutput,
    MessageCompleted,
    RunError,
    SystemNotice,
    TextDelta,
    ToolCallEvent,
    ToolResultEvent,
    extract_text,
)
from chat_orchestrator.agent.tools import EXECUTE_COMMAND
from chat_orchestrator.commands.catalog import (
    EMAIL_SERVER_ID,
    CommandCatalog,
    build_email_follow_up,
    strip_follow_up,
    wants_email_follow_up,
)
from chat_orchestrator.commands.dispatcher import CommandDispatcher
from chat_orchestrator.commands.parser import find_commands
from chat_orchestrator.config import AgentConfig, TimeoutConfig
from chat_orchestrator.errors import MissingCredentials, UpstreamProviderError, UpstreamTimeout
from chat_orchestrator.llm.messages import last_user_text, stream_model, to_langchain_messages
from chat_orchestrator.types import CommandResult, ConversationMessage, ParsedCommand

logger = logging.getLogger(__name__)

AGENT_NAME = "Direct Call"

_SYSTEM_PROMPT = """
You are a helpful assistant with access to external integrations ("commands").

Rules:
1) Answer general questions directly.
2) When the user wants data or an action that a command provides, write the exact
   command on its own line, e.g. `/alphavantage-mcp get_quote symbol=NVDA`. The
   command will be executed after your reply and its result appended.
3) Use at most three commands and only commands from the catalog below.
4) Never invent command output.
""".strip()


class DirectCallStrategy:
    """One streamed model call with the command catalog flattened into the prompt.

    Commands are scraped from the model's text afterwards. The scraping is
    best-effort: model output is not a protocol, so only substrings that parse as
    catalog-shaped slash commands are executed, capped at `max_scraped_commands`.
    """

    name = "direct_call"

    def __init__(
        self,
        *,
        llm: Any | None,
        dispatcher: CommandDispatcher,
        catalog: CommandCatalog,
        bearer_token: str | None = None,
        config: AgentConfig | None = None,
        timeouts: TimeoutConfig | None = None,
        provider_label: str = "OpenAI",
    ) -> None:
        self.llm = llm
        self.dispatcher = dispatcher
        self.catalog = catalog
        self.bearer_token = bearer_token
        self.config = config or AgentConfig()
        self.timeouts = timeouts or TimeoutConfig()
        self.provider_label = provider_label

    def system_prompt(self) -> str:
        return f"{_SYSTEM_PROMPT}\n\n{self.catalog.render()}"

    async def run(self, conversation: Sequence[ConversationMessage]) -> AsyncIterator[ExecutionEvent]:
        if self.llm is None:
            error = MissingCredentials(self.provider_label)
            yield RunError(str(error), kind=error.kind, agent=AGENT_NAME)
            yield FinalOutput(error.user_message, agent=AGENT_NAME)
            return

        yield SystemNotice("Using direct model call", {"strategy": self.name})
        messages = [SystemMessage(content=self.system_prompt()), *to_langchain_messages(conversation)]
        message_id = uuid.uuid4().hex
        parts: list[str] = []
        try:
            async for chunk in stream_model(
                self.llm,
                messages,
                first_chunk_seconds=self.timeouts.provider_connect_seconds,
                provider=self.provider_label,
            ):
                text = extract_text(chunk.content)
                if text:
                    parts.append(text)
                    yield TextDelta(text, message_id, agent=AGENT_NAME)
        except UpstreamTimeout as exc:
            logger.warning("Direct call timed out: %s", exc)
            yield RunError(str(exc), kind=exc.kind, agent=AGENT_NAME)
            yield FinalOutput(exc.user_message, agent=AGENT_NAME)
            return
        except Exception as exc:
            logger.error("Direct call to %s failed", self.provider_label, exc_info=True)
            error = UpstreamProviderError(self.provider_label, str(exc))
            yield RunError(str(error), kind=error.kind, agent=AGENT_NAME)
            yield FinalOutput(
                f"I apologize, but I encountered an error: {exc}. Please try again.",
                agent=AGENT_NAME,
            )
            return

        answer = "".join(parts)
        if answer.strip():
            yield MessageCompleted(answer, message_id, agent=AGENT_NAME)

        commands = find_commands(answer, self.config.max_scraped_commands)
        results: list[CommandResult] = []
        for command in commands:
            async for event in self._run_command(command, results):
                yield event

        user_text = last_user_text(conversation)
        pending = wants_email_follow_up(user_text) or wants_email_follow_up(answer)
        if pending and not any(command.server_id == EMAIL_SERVER_ID for command in commands):
            prior = results[-1].output if results else answer
            subject = " ".join(strip_follow_up(user_text).split())[:60].rstrip(" .?!")
            follow_up = build_email_follow_up(prior, subject=f"Results: {subject}" if subject else "Results")
            async for event in self._run_command(follow_up, results):
                yield event

    async def _run_command(
        self,
        command: ParsedCommand,
        results: list[CommandResult],
    ) -> AsyncIterator[ExecutionEvent]:
        rendered = command.render()
        yield ToolCallEvent(EXECUTE_COMMAND, {"command": rendered}, agent=AGENT_NAME)
        result = await self.dispatcher.dispatch(command, bearer_token=self.bearer_token)
        results.append(result)
        yield ToolResultEvent(EXECUTE_COMMAND, result.output, agent=AGENT_NAME, command=rendered)
        yield MessageCompleted(f"\n\n**{rendered}**\n{result.output}", uuid.uuid4().hex, agent=AGENT_NAME)
