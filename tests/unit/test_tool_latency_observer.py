from pydantic import BaseModel

from chat_orchestrator.agent.registry import ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    text: str


async def test_tool_observer_captures_latency_and_payload() -> None:
    registry = ToolRegistry()

    async def _handler(data: EchoInput) -> str:
        return data.text.upper() * 200

    registry.register(
        ToolSpec(
            name="echo",
            description="uppercase",
            args_schema=EchoInput,
            handler=_handler,
        )
    )

    observed = []
    registry.set_observer(observed.append)
    result = await registry.execute("echo", {"text": "hello"})
    registry.set_observer(None)

    assert result.startswith("HELLO")
    assert len(observed) == 1
    assert observed[0].name == "echo"
    assert observed[0].input_payload == {"text": "hello"}
    assert len(observed[0].output_preview) == 320
    assert observed[0].latency_ms >= 0.0
