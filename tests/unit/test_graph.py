import pytest

from chat_orchestrator.agent.classifier import classify_query
from chat_orchestrator.agent.graph import (
    COMMAND_DISCOVERY,
    FINAL_ANSWER,
    ORCHESTRATOR,
    TOOL_EXECUTION,
    AgentNode,
    build_graph,
    route_turn,
)
from chat_orchestrator.agent.registry import ToolRegistry
from chat_orchestrator.agent.tools import register_orchestration_tools
from chat_orchestrator.commands.catalog import DEFAULT_CATALOG
from chat_orchestrator.errors import CapabilityIncompatibility
from chat_orchestrator.types import ConversationMessage


def _route(text: str, history: list[ConversationMessage] | None = None):
    conversation = [*(history or []), ConversationMessage("user", text)]
    return route_turn(text, classify_query(text), conversation, DEFAULT_CATALOG)


def test_node_tools_default_to_concrete_lists() -> None:
    node = AgentNode(name="Empty", instructions="", routing_policy="none", tools=None, handoffs=None)

    assert node.tools == []
    assert node.handoffs == []


def test_graph_shape() -> None:
    graph = build_graph(DEFAULT_CATALOG, memory_enabled=True)

    assert graph.entry == ORCHESTRATOR
    assert graph.node(ORCHESTRATOR).tools == ["list_commands", "store_memory", "query_memory"]
    assert graph.node(COMMAND_DISCOVERY).tools == ["list_commands"]
    assert graph.node(TOOL_EXECUTION).tools == ["execute_command"]
    assert graph.node(FINAL_ANSWER).tools == []
    assert {edge.target for edge in graph.node(ORCHESTRATOR).handoffs} == {
        COMMAND_DISCOVERY,
        TOOL_EXECUTION,
        FINAL_ANSWER,
    }
    assert graph.edge(COMMAND_DISCOVERY, TOOL_EXECUTION).name == "transfer_to_tool_execution"
    assert graph.edge(TOOL_EXECUTION, FINAL_ANSWER).target == FINAL_ANSWER


def test_validate_flags_tools_without_implementation(dispatcher) -> None:
    registry = ToolRegistry()
    register_orchestration_tools(registry, dispatcher=dispatcher, catalog=DEFAULT_CATALOG)

    build_graph(DEFAULT_CATALOG).validate(registry)
    with pytest.raises(CapabilityIncompatibility):
        build_graph(DEFAULT_CATALOG, memory_enabled=True).validate(registry)


def test_discovery_filter_keeps_only_last_user_turn() -> None:
    from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

    edge = build_graph(DEFAULT_CATALOG).edge(ORCHESTRATOR, COMMAND_DISCOVERY)
    messages = [SystemMessage("ctx"), HumanMessage("first"), AIMessage("reply"), HumanMessage("second")]

    assert [message.content for message in edge.input_filter(messages)] == ["ctx", "second"]


def test_routing_decision_table() -> None:
    explicit = _route("/alphavantage-mcp get_quote symbol=NVDA")
    assert explicit.target == "execution"
    assert explicit.command is not None and explicit.command.command == "get_quote"

    assert _route("help").target == "discovery"
    assert _route("What commands are available?").reason == "help_request"

    action = _route("Get the price for TSLA and email me the results")
    assert action.target == "discovery"
    assert action.reason == "catalog_action"
    assert action.command is not None and action.command.args == {"symbol": "TSLA"}

    assert _route("run the weather command").reason == "command_intent"

    history = [ConversationMessage("user", "hi"), ConversationMessage("assistant", "NVDA is at 120.")]
    assert _route("Summarize that in one line", history).target == "final"

    assert _route("Tell me a joke").target == "direct"


def test_document_questions_are_not_translated_to_commands() -> None:
    decision = _route("find the budget figures in my document")

    assert decision.target == "direct"
    assert decision.command is None
