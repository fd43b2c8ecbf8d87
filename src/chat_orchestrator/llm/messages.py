"""Conversation conversion and provider streaming helpers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from chat_orchestrator.errors import CapabilityIncompatibility, UpstreamTimeout
from chat_orchestrator.types import ConversationMessage


def to_langchain_messages(conversation: Sequence[ConversationMessage]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for message in conversation:
        if message.role == "assistant":
            messages.append(AIMessage(content=message.content))
        elif message.role == "system":
            messages.append(SystemMessage(content=message.content))
        else:
            messages.append(HumanMessage(content=message.content))
    return messages


def last_user_text(conversation: Sequence[ConversationMessage]) -> str:
    for message in reversed(conversation):
        if message.role == "user":
            return message.content
    return ""


async def stream_model(
    model: Any,
    messages: list[BaseMessage],
    *,
    first_chunk_seconds: float,
    provider: str,
) -> AsyncIterator[Any]:
    """Yield message chunks; the first one must arrive within `first_chunk_seconds`."""

    try:
        iterator = model.astream(messages).__aiter__()
    except NotImplementedError as exc:
        raise CapabilityIncompatibility(f"{provider} model cannot stream: {exc}") from exc

    try:
        first = await asyncio.wait_for(iterator.__anext__(), timeout=first_chunk_seconds)
    except StopAsyncIteration:
        return
    except asyncio.TimeoutError as exc:
        raise UpstreamTimeout(f"{provider} provider", first_chunk_seconds) from exc
    except NotImplementedError as exc:
        raise CapabilityIncompatibility(f"{provider} model cannot stream: {exc}") from exc

    yield first
    async for chunk in iterator:
        yield chunk
