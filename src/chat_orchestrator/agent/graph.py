"""Agent nodes, handoff edges and the orchestrator's routing table."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Literal

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from chat_orchestrator.agent.registry import ToolRegistry
from chat_orchestrator.agent.tools import EXECUTE_COMMAND, LIST_COMMANDS, QUERY_MEMORY, STORE_MEMORY
from chat_orchestrator.commands.catalog import CommandCatalog, strip_follow_up
from chat_orchestrator.commands.parser import parse_command
from chat_orchestrator.errors import CapabilityIncompatibility
from chat_orchestrator.types import ConversationMessage, IntentClassification, ParsedCommand

ORCHESTRATOR = "Orchestrator"
COMMAND_DISCOVERY = "Command Discovery"
TOOL_EXECUTION = "Tool Execution"
FINAL_ANSWER = "Final Answer"

InputFilter = Callable[[list[BaseMessage]], list[BaseMessage]]
RouteTarget = Literal["execution", "discovery", "final", "direct"]


def keep_all(messages: list[BaseMessage]) -> list[BaseMessage]:
    return list(messages)


def last_user_turn(messages: list[BaseMessage]) -> list[BaseMessage]:
    """System messages plus the most recent human message."""
    kept = [message for message in messages if isinstance(message, SystemMessage)]
    for message in reversed(messages):
        if isinstance(message, HumanMessage):
            kept.append(message)
            break
    return kept


@dataclass(slots=True)
class HandoffEdge:
    name: str
    description: str
    target: str
    input_filter: InputFilter = keep_all


@dataclass(slots=True)
class AgentNode:
    """A graph node. `tools` is always a concrete list, even when empty."""

    name: str
    instructions: str
    routing_policy: str
    tools: list[str] = field(default_factory=list)
    handoffs: list[HandoffEdge] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.tools = list(self.tools or [])
        self.handoffs = list(self.handoffs or [])
        if any(not isinstance(tool, str) or not tool for tool in self.tools):
            raise ValueError(f"Node {self.name} declares an invalid tool name")

    def handoff_for(self, tool_name: str) -> HandoffEdge | None:
        for edge in self.handoffs:
            if edge.name == tool_name:
                return edge
        return None


@dataclass(slots=True)
class AgentGraph:
    nodes: dict[str, AgentNode]
    entry: str = ORCHESTRATOR

    def node(self, name: str) -> AgentNode:
        return self.nodes[name]

    def edge(self, source: str, target: str) -> HandoffEdge:
        for edge in self.nodes[source].handoffs:
            if edge.target == target:
                return edge
        raise KeyError(f"No handoff from {source} to {target}")

    def validate(self, registry: ToolRegistry) -> None:
        """Fail fast when a node declares a tool this runtime cannot execute."""
        for node in self.nodes.values():
            missing = [tool for tool in node.tools if not registry.has(tool)]
            if missing:
                raise CapabilityIncompatibility(
                    f"Node {node.name} declares tools with no executable implementation: {', '.join(missing)}"
                )
            for edge in node.handoffs:
                if edge.target not in self.nodes:
                    raise ValueError(f"Handoff {edge.name} targets unknown node {edge.target}")


def _transfer_name(target: str) -> str:
    return "transfer_to_" + re.sub(r"\W+", "_", target.lower()).strip("_")


def build_graph(catalog: CommandCatalog, *, memory_enabled: bool = False) -> AgentGraph:
    to_final = HandoffEdge(
        name=_transfer_name(FINAL_ANSWER),
        description="Hand off to the final answer agent to write the reply from the results so far.",
        target=FINAL_ANSWER,
    )
    to_execution = HandoffEdge(
        name=_transfer_name(TOOL_EXECUTION),
        description="Hand off to the tool execution agent once the exact command is known.",
        target=TOOL_EXECUTION,
    )
    to_discovery = HandoffEdge(
        name=_transfer_name(COMMAND_DISCOVERY),
        description="Hand off when the user asks which commands exist or describes an action in plain language.",
        target=COMMAND_DISCOVERY,
        input_filter=last_user_turn,
    )

    orchestrator_tools = [LIST_COMMANDS]
    if memory_enabled:
        orchestrator_tools += [STORE_MEMORY, QUERY_MEMORY]

    nodes = [
        AgentNode(
            name=ORCHESTRATOR,
            instructions=(
                "You are the orchestrator of a chat assistant. Answer general questions "
                "directly and concisely. Use the memory tools when the user asks you to "
                "remember something or recalls something they told you. Hand off to command "
                "discovery when the user wants an external integration, to tool execution "
                "when they typed an exact slash command, and to the final answer agent to "
                "synthesize earlier results."
            ),
            routing_policy="decision-table",
            tools=orchestrator_tools,
            handoffs=[to_discovery, to_execution, to_final],
        ),
        AgentNode(
            name=COMMAND_DISCOVERY,
            instructions=(
                "Translate the user's request into exactly one slash command from the catalog "
                "below, then hand off to tool execution. If the user only asked what is "
                "available, answer from `list_commands` instead.\n\n" + catalog.render()
            ),
            routing_policy="translate-then-handoff",
            tools=[LIST_COMMANDS],
            handoffs=[to_execution],
        ),
        AgentNode(
            name=TOOL_EXECUTION,
            instructions=(
                "Run the command with `execute_command` exactly as given. If a lookup reports "
                "not found, report the outcome honestly. When every step is done, hand off to "
                "the final answer agent."
            ),
            routing_policy="execute",
            tools=[EXECUTE_COMMAND],
            handoffs=[to_final],
        ),
        AgentNode(
            name=FINAL_ANSWER,
            instructions=(
                "Write the final reply for the user from the conversation and any tool "
                "results above. Do not invent data that no tool returned."
            ),
            routing_policy="synthesize",
        ),
    ]
    return AgentGraph(nodes={node.name: node for node in nodes})


# ---------------------------------------------------------------------------
# Orchestrator decision table
# ---------------------------------------------------------------------------

_HELP = re.compile(
    r"^\s*help\s*[?.!]*\s*$|\b(?:what\s+commands|which\s+commands|available\s+commands|list\s+(?:the\s+)?commands|how\s+do\s+i|how\s+can\s+i\s+use)\b",
    re.IGNORECASE,
)
_SYNTHESIS = re.compile(
    r"\b(?:summari[sz]e|combine|compare|synthesi[sz]e|rewrite|rephrase|shorten|"
    r"based\s+on\s+(?:that|the\s+above|your\s+(?:last|previous)\s+answer)|explain\s+(?:that|this))\b",
    re.IGNORECASE,
)


@dataclass(slots=True)
class RoutingDecision:
    target: RouteTarget
    reason: str
    command: ParsedCommand | None = None


def route_turn(
    text: str,
    classification: IntentClassification,
    history: Sequence[ConversationMessage],
    catalog: CommandCatalog,
) -> RoutingDecision:
    """Map the latest user turn onto a first hop.

    Rules are checked in order: explicit slash command, help request, catalog action
    phrasing or command intent, synthesis over a previous answer, and otherwise a direct
    answer from the orchestrator.
    """

    parsed = parse_command(text)
    if parsed.ok:
        return RoutingDecision("execution", "explicit_command", parsed.command)

    if _HELP.search(text):
        return RoutingDecision("discovery", "help_request")

    primary = strip_follow_up(text)
    translated = None if classification.intent == "document" else catalog.translate(primary)
    if translated is not None:
        return RoutingDecision("discovery", "catalog_action", translated)
    if classification.intent == "command":
        return RoutingDecision("discovery", "command_intent")

    has_previous_answer = any(message.role == "assistant" for message in history[:-1])
    if has_previous_answer and _SYNTHESIS.search(text):
        return RoutingDecision("final", "synthesis")

    return RoutingDecision("direct", classification.intent)
