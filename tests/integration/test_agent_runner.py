from langchain_core.messages import SystemMessage

from chat_orchestrator.agent.classifier import classify_query
from chat_orchestrator.agent.events import (
    AgentUpdated,
    FinalOutput,
    MessageCompleted,
    RunError,
    SystemNotice,
    ToolCallEvent,
    ToolResultEvent,
)
from chat_orchestrator.agent.fallback import DirectCallStrategy
from chat_orchestrator.agent.graph import (
    COMMAND_DISCOVERY,
    FINAL_ANSWER,
    ORCHESTRATOR,
    TOOL_EXECUTION,
    build_graph,
    route_turn,
)
from chat_orchestrator.agent.registry import ToolRegistry
from chat_orchestrator.agent.runner import AgentRunner
from chat_orchestrator.agent.selector import StrategySelector
from chat_orchestrator.agent.tools import register_orchestration_tools
from chat_orchestrator.commands.catalog import DEFAULT_CATALOG
from chat_orchestrator.config import AgentConfig
from chat_orchestrator.stream.normalizer import StreamNormalizer
from chat_orchestrator.stream.transport import STREAM_END, ContentChunk
from chat_orchestrator.types import ConversationMessage


def _conversation(text: str) -> list[ConversationMessage]:
    return [ConversationMessage("user", text)]


def _decision(text: str):
    return route_turn(text, classify_query(text), _conversation(text), DEFAULT_CATALOG)


def _runner(model, dispatcher, *, bearer_token: str | None = None, config: AgentConfig | None = None) -> AgentRunner:
    registry = ToolRegistry()
    register_orchestration_tools(
        registry,
        dispatcher=dispatcher,
        catalog=DEFAULT_CATALOG,
        bearer_token=bearer_token,
    )
    return AgentRunner(llm=model, registry=registry, graph=build_graph(DEFAULT_CATALOG), config=config)


def _selector(model, dispatcher, *, config: AgentConfig | None = None) -> StrategySelector:
    return StrategySelector(
        runner_factory=lambda: _runner(model, dispatcher, config=config),
        fallback=DirectCallStrategy(llm=model, dispatcher=dispatcher, catalog=DEFAULT_CATALOG),
    )


def _text(events) -> str:
    return "".join(event.content() or "" for event in events if isinstance(event, (MessageCompleted, FinalOutput)))


async def test_direct_answer_streams_from_orchestrator(scripted_model, dispatcher, drain) -> None:
    model = scripted_model(["Why did the chicken cross the road?"])
    runner = _runner(model, dispatcher)

    events = await drain(runner.run(_conversation("Tell me a joke"), _decision("Tell me a joke")))

    assert events[0] == AgentUpdated(ORCHESTRATOR)
    assert isinstance(events[-1], FinalOutput)
    assert events[-1].text == "Why did the chicken cross the road?"
    assert "list_commands" in model.bound_tools[0]


async def test_explicit_command_runs_without_model_call(scripted_model, dispatcher, fake_gateway, drain) -> None:
    fake_gateway.handler = lambda command: fake_gateway.text("NVDA 120.00")
    model = scripted_model()
    text = "/alphavantage-mcp get_quote symbol=NVDA"

    events = await drain(_runner(model, dispatcher).run(_conversation(text), _decision(text)))

    assert model.calls == []
    assert [type(event) for event in events] == [
        AgentUpdated,
        AgentUpdated,
        ToolCallEvent,
        ToolResultEvent,
        MessageCompleted,
    ]
    assert events[1] == AgentUpdated(TOOL_EXECUTION)
    assert events[-1].text == "NVDA 120.00"
    assert fake_gateway.commands() == ["get_quote"]


async def test_catalog_action_executes_then_synthesizes(scripted_model, dispatcher, fake_gateway, drain) -> None:
    fake_gateway.handler = lambda command: fake_gateway.text("NVDA 120.00")
    model = scripted_model(["NVDA is trading at 120."])
    text = "Get the price for NVDA"

    events = await drain(_runner(model, dispatcher).run(_conversation(text), _decision(text)))

    handoffs = [event.agent for event in events if isinstance(event, AgentUpdated)]
    assert handoffs == [ORCHESTRATOR, COMMAND_DISCOVERY, TOOL_EXECUTION, FINAL_ANSWER]
    assert _text(events).startswith("NVDA is trading at 120.")
    final_prompt = model.calls[0]
    assert isinstance(final_prompt[-1], SystemMessage)
    assert final_prompt[-1].content == "Command results:\n/alphavantage-mcp get_quote symbol=NVDA\nNVDA 120.00"


async def test_two_step_request_sends_one_follow_up_email(scripted_model, dispatcher, fake_gateway, drain) -> None:
    fake_gateway.handler = lambda command: fake_gateway.text(
        "NVDA 120.00" if command.command == "get_quote" else "sent"
    )
    model = scripted_model(["Done: quote fetched and emailed."])
    text = "Get the price for NVDA and email me the results"
    runner = _runner(model, dispatcher, bearer_token="tok-1")

    await drain(runner.run(_conversation(text), _decision(text)))

    assert fake_gateway.commands() == ["get_quote", "send_test_email"]
    email, bearer = fake_gateway.calls[1]
    assert bearer == "tok-1"
    assert email.args == {"subject": "Results: Get the price for NVDA", "body": "NVDA 120.00"}


async def test_model_tool_calls_and_handoffs(scripted_model, dispatcher, drain) -> None:
    model = scripted_model(
        [
            {"name": "list_commands", "args": {"category": "prediction"}},
            {"name": "transfer_to_final_answer", "args": {"reason": "ready"}},
            "Polymarket is available for prediction markets.",
        ]
    )

    events = await drain(_runner(model, dispatcher).run(_conversation("Tell me a joke"), _decision("Tell me a joke")))

    results = [event for event in events if isinstance(event, ToolResultEvent)]
    assert results[0].tool == "list_commands"
    assert "POLYMARKET-MCP" in results[0].output
    assert AgentUpdated(FINAL_ANSWER) in events
    assert events[-1] == FinalOutput("Polymarket is available for prediction markets.", agent=FINAL_ANSWER)
    assert len(model.calls) == 3


async def test_selector_falls_back_when_tools_cannot_bind(scripted_model, dispatcher, fake_gateway, drain) -> None:
    fake_gateway.handler = lambda command: fake_gateway.text("NVDA 120.00")
    model = scripted_model(
        ["Here is the quote:\n/alphavantage-mcp get_quote symbol=NVDA"],
        supports_tools=False,
    )
    selector = _selector(model, dispatcher)

    events = await drain(selector.run(_conversation("quote nvda"), _decision("quote nvda")))

    assert selector.strategy == "direct_call"
    assert selector.fallback_reason == "capability_incompatibility"
    assert not any(isinstance(event, RunError) for event in events)
    assert SystemNotice("Falling back to direct model call", {"reason": "capability_incompatibility"}) in events
    assert fake_gateway.commands() == ["get_quote"]
    assert "**/alphavantage-mcp get_quote symbol=NVDA**\nNVDA 120.00" in _text(events)


async def test_selector_falls_back_when_runner_produces_nothing(scripted_model, dispatcher, drain) -> None:
    model = scripted_model(["", "Fallback answer."])
    selector = _selector(model, dispatcher)

    events = await drain(selector.run(_conversation("Tell me a joke"), _decision("Tell me a joke")))

    assert selector.fallback_reason == "no_output"
    assert _text(events) == "Fallback answer."


async def test_selector_logs_runner_errors_before_fallback(scripted_model, dispatcher, drain) -> None:
    model = scripted_model([RuntimeError("provider exploded"), "Recovered answer."])
    selector = _selector(model, dispatcher)

    events = await drain(selector.run(_conversation("Tell me a joke"), _decision("Tell me a joke")))

    errors = [event for event in events if isinstance(event, RunError)]
    assert errors[0].error == "provider exploded"
    assert selector.fallback_reason == "error"
    assert _text(events) == "Recovered answer."


async def test_turn_budget_stops_a_looping_runner(scripted_model, dispatcher, drain) -> None:
    looping = [{"name": "list_commands", "args": {}} for _ in range(3)]
    model = scripted_model([*looping, "Fallback answer."])
    selector = _selector(model, dispatcher, config=AgentConfig(max_turns=3))

    items = await drain(
        StreamNormalizer().stream(selector.run(_conversation("Tell me a joke"), _decision("Tell me a joke")))
    )

    assert len(model.calls) == 4
    assert selector.fallback_reason == "error"
    errors = [item for item in items if getattr(item, "type", None) == "error"]
    assert errors[0].error == "Agent run exceeded the maximum of 3 turns"
    assert "".join(item.text for item in items if isinstance(item, ContentChunk)) == "Fallback answer."
    assert items[-1] is STREAM_END
    assert items.count(STREAM_END) == 1
