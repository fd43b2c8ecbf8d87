import pytest
from pydantic import BaseModel, Field, ValidationError

from chat_orchestrator.agent.registry import ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    value: int = Field(ge=1)


async def _echo(data: EchoInput) -> str:
    return str(data.value)


async def test_tool_registry_validation() -> None:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            name="echo",
            description="echo positive int",
            args_schema=EchoInput,
            handler=_echo,
        )
    )

    assert await registry.execute("echo", {"value": 3}) == "3"

    with pytest.raises(ValidationError):
        await registry.execute("echo", {"value": 0})


def test_duplicate_tool_registration_rejected() -> None:
    registry = ToolRegistry()
    spec = ToolSpec(
        name="echo",
        description="echo positive int",
        args_schema=EchoInput,
        handler=_echo,
    )

    registry.register(spec)
    with pytest.raises(ValueError):
        registry.register(spec)


async def test_unknown_tool_raises_key_error() -> None:
    with pytest.raises(KeyError):
        await ToolRegistry().execute("missing", {})


async def test_langchain_export_respects_subset_and_runs_async() -> None:
    registry = ToolRegistry()
    registry.register(ToolSpec(name="echo", description="echo", args_schema=EchoInput, handler=_echo))
    registry.register(ToolSpec(name="other", description="other", args_schema=EchoInput, handler=_echo))

    tools = registry.as_langchain_tools(["echo"])

    assert [tool.name for tool in tools] == ["echo"]
    assert await tools[0].ainvoke({"value": 7}) == "7"
