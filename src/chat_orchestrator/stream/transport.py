"""Output items and their server-sent-events encoding."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Union

from chat_orchestrator.agent.events import LogRecord

DONE_MARKER = "[DONE]"


@dataclass(slots=True, frozen=True)
class ContentChunk:
    """Appendable text for the caller's visible reply."""

    text: str


@dataclass(slots=True, frozen=True)
class StreamEnd:
    """Terminal sentinel; exactly one per response."""


STREAM_END = StreamEnd()

OutputItem = Union[ContentChunk, LogRecord, StreamEnd]


def encode_sse(item: OutputItem) -> str:
    if isinstance(item, ContentChunk):
        payload: Any = {"choices": [{"delta": {"content": item.text}}]}
    elif isinstance(item, LogRecord):
        payload = {"mcpEvent": item.to_dict()}
    else:
        return f"data: {DONE_MARKER}\n\n"
    return f"data: {json.dumps(payload, default=str)}\n\n"


async def sse_stream(items: AsyncIterator[OutputItem]) -> AsyncIterator[str]:
    async for item in items:
        yield encode_sse(item)


def decode_sse(body: str) -> list[dict[str, Any] | str]:
    """Parse an SSE body back into payload dicts, with the sentinel kept as a string."""
    decoded: list[dict[str, Any] | str] = []
    for line in body.splitlines():
        if not line.startswith("data: "):
            continue
        data = line[len("data: "):]
        decoded.append(DONE_MARKER if data == DONE_MARKER else json.loads(data))
    return decoded


def content_of(decoded: list[dict[str, Any] | str]) -> str:
    """Concatenate the content deltas of a decoded stream."""
    parts: list[str] = []
    for item in decoded:
        if isinstance(item, dict) and "choices" in item:
            parts.append(item["choices"][0]["delta"].get("content", ""))
    return "".join(parts)
