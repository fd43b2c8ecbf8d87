from chat_orchestrator.agent.fallback import DirectCallStrategy
from chat_orchestrator.agent.graph import COMMAND_DISCOVERY, FINAL_ANSWER, build_graph
from chat_orchestrator.commands.catalog import DEFAULT_CATALOG


def test_direct_call_prompt_flattens_the_catalog(dispatcher) -> None:
    prompt = DirectCallStrategy(llm=None, dispatcher=dispatcher, catalog=DEFAULT_CATALOG).system_prompt()

    assert "Never invent command output" in prompt
    assert "AVAILABLE COMMANDS:" in prompt
    for server_id in DEFAULT_CATALOG.server_ids():
        assert server_id.upper() in prompt


def test_agent_instructions_constrain_invention() -> None:
    graph = build_graph(DEFAULT_CATALOG)

    assert "Do not invent data" in graph.node(FINAL_ANSWER).instructions
    assert "/alphavantage-mcp get_quote symbol=NVDA" in graph.node(COMMAND_DISCOVERY).instructions
