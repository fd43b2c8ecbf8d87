"""Agent runner: drives the handoff graph across turns and streams its events."""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage, ToolMessage
from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field, ValidationError

from chat_orchestrator.agent.events import (
    AgentUpdated,
    ExecutionEvent,
    FinalOutput,
    MessageCompleted,
    TextDelta,
    ToolCallEvent,
    ToolResultEvent,
    extract_text,
)
from chat_orchestrator.agent.graph import (
    COMMAND_DISCOVERY,
    FINAL_ANSWER,
    ORCHESTRATOR,
    TOOL_EXECUTION,
    AgentGraph,
    AgentNode,
    RoutingDecision,
)
from chat_orchestrator.agent.registry import ToolRegistry
from chat_orchestrator.agent.tools import EXECUTE_COMMAND
from chat_orchestrator.commands.catalog import (
    EMAIL_SERVER_ID,
    build_email_follow_up,
    strip_follow_up,
    wants_email_follow_up,
)
from chat_orchestrator.config import AgentConfig, TimeoutConfig
from chat_orchestrator.errors import CapabilityIncompatibility, OrchestratorError
from chat_orchestrator.llm.messages import last_user_text, stream_model, to_langchain_messages
from chat_orchestrator.types import ConversationMessage, ParsedCommand

logger = logging.getLogger(__name__)

_FIRST_HOP = {
    "execution": TOOL_EXECUTION,
    "discovery": COMMAND_DISCOVERY,
    "final": FINAL_ANSWER,
}


class HandoffInput(BaseModel):
    reason: str | None = Field(default=None, description="Why the handoff is needed.")


class TurnBudget:
    """Counts model turns and handoffs for one request."""

    def __init__(self, max_turns: int) -> None:
        self.max_turns = max_turns
        self.used = 0

    def spend(self) -> None:
        self.used += 1
        if self.used > self.max_turns:
            raise OrchestratorError(f"Agent run exceeded the maximum of {self.max_turns} turns")


class AgentRunner:
    """Stateful multi-agent strategy.

    Construction binds every node's tools to the model up front, so an environment
    that cannot run tool calling fails with `CapabilityIncompatibility` before any
    event is produced.
    """

    name = "agent_runner"

    def __init__(
        self,
        *,
        llm: Any,
        registry: ToolRegistry,
        graph: AgentGraph,
        config: AgentConfig | None = None,
        timeouts: TimeoutConfig | None = None,
        provider: str = "openai",
    ) -> None:
        self.llm = llm
        self.registry = registry
        self.graph = graph
        self.config = config or AgentConfig()
        self.timeouts = timeouts or TimeoutConfig()
        self.provider = provider

        graph.validate(registry)
        self._bound = {node.name: self._bind(node) for node in graph.nodes.values()}

    def _bind(self, node: AgentNode) -> Any:
        tools = self.registry.as_langchain_tools(node.tools) + [
            StructuredTool.from_function(
                name=edge.name,
                description=edge.description,
                args_schema=HandoffInput,
                coroutine=_handoff_ack(edge.target),
            )
            for edge in node.handoffs
        ]
        if not tools:
            return self.llm
        bind_tools = getattr(self.llm, "bind_tools", None)
        if bind_tools is None:
            raise CapabilityIncompatibility(f"{type(self.llm).__name__} does not support tool binding")
        try:
            return bind_tools(tools)
        except NotImplementedError as exc:
            raise CapabilityIncompatibility(f"{type(self.llm).__name__} cannot bind tools: {exc}") from exc

    async def run(
        self,
        conversation: Sequence[ConversationMessage],
        decision: RoutingDecision,
    ) -> AsyncIterator[ExecutionEvent]:
        budget = TurnBudget(self.config.max_turns)
        messages = to_langchain_messages(conversation)
        user_text = last_user_text(conversation)

        yield AgentUpdated(ORCHESTRATOR)
        if decision.target == "direct":
            async for event in self._run_node(ORCHESTRATOR, messages, budget):
                yield event
            return

        target = _FIRST_HOP[decision.target]
        messages = self.graph.edge(ORCHESTRATOR, target).input_filter(messages)
        budget.spend()
        yield AgentUpdated(target)

        if target == FINAL_ANSWER or decision.command is None:
            async for event in self._run_node(target, messages, budget):
                yield event
            return

        synthesize = target == COMMAND_DISCOVERY
        if synthesize:
            budget.spend()
            yield AgentUpdated(TOOL_EXECUTION)

        outputs: list[tuple[str, str]] = []
        async for event in self._execute(decision.command, budget, outputs):
            yield event

        if wants_email_follow_up(user_text) and decision.command.server_id != EMAIL_SERVER_ID:
            follow_up = build_email_follow_up(
                outputs[-1][1], subject=_subject_from(strip_follow_up(user_text))
            )
            async for event in self._execute(follow_up, budget, outputs):
                yield event

        produced = False
        if synthesize:
            budget.spend()
            yield AgentUpdated(FINAL_ANSWER)
            results = "\n\n".join(f"{command}\n{output}" for command, output in outputs)
            final_messages = [*messages, SystemMessage(content=f"Command results:\n{results}")]
            async for event in self._run_node(FINAL_ANSWER, final_messages, budget):
                produced = produced or event.content() is not None
                yield event

        if not produced:
            for _, output in outputs:
                yield MessageCompleted(output, uuid.uuid4().hex, agent=TOOL_EXECUTION)

    async def _execute(
        self,
        command: ParsedCommand,
        budget: TurnBudget,
        outputs: list[tuple[str, str]],
    ) -> AsyncIterator[ExecutionEvent]:
        budget.spend()
        rendered = command.render()
        arguments = {"command": rendered}
        yield ToolCallEvent(EXECUTE_COMMAND, arguments, agent=TOOL_EXECUTION)
        output = await self.registry.execute(EXECUTE_COMMAND, arguments)
        outputs.append((rendered, output))
        yield ToolResultEvent(EXECUTE_COMMAND, output, agent=TOOL_EXECUTION, command=rendered)

    async def _run_node(
        self,
        start: str,
        messages: list[BaseMessage],
        budget: TurnBudget,
    ) -> AsyncIterator[ExecutionEvent]:
        current = start
        history = list(messages)
        while True:
            node = self.graph.node(current)
            budget.spend()
            message_id = uuid.uuid4().hex
            aggregate: Any = None
            async for chunk in stream_model(
                self._bound[current],
                [SystemMessage(content=node.instructions), *history],
                first_chunk_seconds=self.timeouts.provider_connect_seconds,
                provider=self.provider,
            ):
                aggregate = chunk if aggregate is None else aggregate + chunk
                text = extract_text(chunk.content)
                if text:
                    yield TextDelta(text, message_id, agent=current)

            text = extract_text(aggregate.content) if aggregate is not None else ""
            tool_calls = list(getattr(aggregate, "tool_calls", None) or [])
            if text.strip():
                yield MessageCompleted(text, message_id, agent=current)
            if not tool_calls:
                if text.strip():
                    yield FinalOutput(text, agent=current)
                return

            history.append(AIMessage(content=text, tool_calls=tool_calls))
            handoff = None
            for call in tool_calls:
                call_id = call.get("id") or uuid.uuid4().hex
                edge = node.handoff_for(call["name"])
                if edge is not None:
                    history.append(ToolMessage(content=f"Transferred to {edge.target}", tool_call_id=call_id))
                    handoff = handoff or edge
                    continue

                arguments = dict(call.get("args") or {})
                yield ToolCallEvent(call["name"], arguments, agent=current)
                output = await self._call_tool(node, call["name"], arguments)
                command = arguments.get("command")
                yield ToolResultEvent(
                    call["name"],
                    output,
                    agent=current,
                    command=command if isinstance(command, str) else None,
                )
                history.append(ToolMessage(content=output, tool_call_id=call_id))

            if handoff is not None:
                budget.spend()
                current = handoff.target
                history = handoff.input_filter(history)
                yield AgentUpdated(current)

    async def _call_tool(self, node: AgentNode, name: str, arguments: dict[str, Any]) -> str:
        if name not in node.tools:
            logger.warning("Agent %s requested undeclared tool %s", node.name, name)
            return f"Tool {name} is not available to {node.name}."
        try:
            return await self.registry.execute(name, arguments)
        except ValidationError as exc:
            return f"Invalid arguments for {name}: {exc.errors()[0].get('msg', 'invalid input')}"


def _handoff_ack(target: str) -> Callable[..., Awaitable[str]]:
    async def _ack(**_: Any) -> str:
        return f"Transferred to {target}"

    return _ack


def _subject_from(request: str) -> str:
    subject = " ".join(request.split())[:60].rstrip(" .?!")
    return f"Results: {subject}" if subject else "Results"
