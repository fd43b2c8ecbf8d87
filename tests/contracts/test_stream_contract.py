import pytest

from chat_orchestrator.pipeline import TurnPipeline
from chat_orchestrator.stream.transport import DONE_MARKER, decode_sse, encode_sse


class _Factory:
    def __init__(self, model) -> None:
        self.model = model

    def __call__(self, provider: str):
        return self.model


SCENARIOS = {
    "direct": (["The answer is 42"], {"messages": [{"role": "user", "content": "Tell me a joke"}]}),
    "explicit_command": ([], {"messages": [{"role": "user", "content": "/alphavantage-mcp get_quote symbol=NVDA"}]}),
    "synthesis": (
        ["NVDA 120.00"],
        {"messages": [{"role": "user", "content": "Get the price for NVDA"}]},
    ),
    "malformed": ([], {"messages": "nope"}),
}


@pytest.mark.parametrize("name", sorted(SCENARIOS))
async def test_every_stream_is_well_formed(name, scripted_model, dispatcher, fake_gateway, drain) -> None:
    fake_gateway.handler = lambda command: fake_gateway.text("NVDA 120.00")
    turns, payload = SCENARIOS[name]
    pipeline = TurnPipeline(dispatcher=dispatcher, llm_factory=_Factory(scripted_model(list(turns))))

    body = "".join([encode_sse(item) for item in await drain(pipeline.stream(payload))])
    decoded = decode_sse(body)

    assert all(frame.startswith("data: ") for frame in body.split("\n\n") if frame)
    assert decoded[-1] == DONE_MARKER
    assert decoded.count(DONE_MARKER) == 1

    units = [
        item["choices"][0]["delta"]["content"].strip()
        for item in decoded
        if isinstance(item, dict) and "choices" in item
    ]
    assert units
    for item in decoded[:-1]:
        assert isinstance(item, dict)
        assert set(item) <= {"choices", "mcpEvent"}
        if "mcpEvent" in item:
            assert item["mcpEvent"]["type"] in {"content", "toolCall", "toolResult", "error", "system", "finalOutput"}
            assert isinstance(item["mcpEvent"]["timestamp"], int)
