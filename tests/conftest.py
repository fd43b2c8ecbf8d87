import asyncio
import json
import re
from collections.abc import Callable
from typing import Any

import pytest
from langchain_core.messages import AIMessageChunk

from chat_orchestrator.commands.catalog import DEFAULT_CATALOG
from chat_orchestrator.commands.dispatcher import CommandDispatcher
from chat_orchestrator.commands.gateway import GatewayResponse, ServerEndpoint, StaticServerRegistry
from chat_orchestrator.config import TimeoutConfig
from chat_orchestrator.types import ParsedCommand


class ScriptedChatModel:
    """Chat model double that streams one scripted turn per `astream` call.

    A turn is plain text (streamed word by word), a `{"name": ..., "args": ...}` tool
    call, or an exception instance to raise.
    """

    def __init__(self, turns: list[Any] | None = None, *, supports_tools: bool = True, hang: bool = False) -> None:
        self.turns = list(turns or [])
        self.supports_tools = supports_tools
        self.hang = hang
        self.calls: list[list[Any]] = []
        self.bound_tools: list[list[str]] = []

    def bind_tools(self, tools: list[Any], **_: Any) -> "ScriptedChatModel":
        if not self.supports_tools:
            raise NotImplementedError("tool calling is not supported")
        self.bound_tools.append([tool.name for tool in tools])
        return self

    async def astream(self, messages: list[Any], **_: Any):
        self.calls.append(list(messages))
        if self.hang:
            await asyncio.sleep(3600)
        turn = self.turns.pop(0) if self.turns else ""
        if isinstance(turn, BaseException):
            raise turn
        if isinstance(turn, dict):
            yield AIMessageChunk(
                content="",
                tool_call_chunks=[
                    {
                        "name": turn["name"],
                        "args": json.dumps(turn.get("args", {})),
                        "id": f"call_{len(self.calls)}",
                        "index": 0,
                    }
                ],
            )
            return
        for piece in re.findall(r"\S+\s*", turn):
            yield AIMessageChunk(content=piece)


class FakeGateway:
    """Records every invocation and answers through `handler`."""

    def __init__(self) -> None:
        self.calls: list[tuple[ParsedCommand, str | None]] = []
        self.handler: Callable[[ParsedCommand], GatewayResponse] = lambda command: self.text(
            f"{command.command} ok"
        )
        self.delay: float = 0.0

    async def invoke(
        self,
        endpoint: ServerEndpoint,
        command: ParsedCommand,
        *,
        bearer_token: str | None = None,
    ) -> GatewayResponse:
        self.calls.append((command, bearer_token))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.handler(command)

    def commands(self) -> list[str]:
        return [command.command or "" for command, _ in self.calls]

    @staticmethod
    def text(content: str) -> GatewayResponse:
        payload = {"result": {"type": "text", "content": content}}
        return GatewayResponse(status_code=200, payload=payload, text=json.dumps(payload))

    @staticmethod
    def json(status_code: int, payload: Any) -> GatewayResponse:
        return GatewayResponse(status_code=status_code, payload=payload, text=json.dumps(payload))


@pytest.fixture
def scripted_model() -> Callable[..., ScriptedChatModel]:
    return ScriptedChatModel


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def dispatcher(fake_gateway: FakeGateway) -> CommandDispatcher:
    return CommandDispatcher(
        registry=StaticServerRegistry("http://gateway.test/commands", DEFAULT_CATALOG),
        gateway=fake_gateway,
        catalog=DEFAULT_CATALOG,
        timeouts=TimeoutConfig(command_seconds=2.0, recovery_wait_seconds=0.0),
    )


@pytest.fixture
def drain() -> Callable[[Any], Any]:
    async def _drain(items: Any) -> list[Any]:
        return [item async for item in items]

    return _drain
