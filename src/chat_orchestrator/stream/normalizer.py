"""Normalizes strategy events into one deduplicated, bounded output stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from chat_orchestrator.agent.events import (
    ExecutionEvent,
    FinalOutput,
    LogRecord,
    MessageCompleted,
    TextDelta,
)
from chat_orchestrator.config import TimeoutConfig
from chat_orchestrator.errors import OrchestratorError, UpstreamTimeout
from chat_orchestrator.stream.transport import STREAM_END, ContentChunk, OutputItem

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _ProducerFailed:
    error: BaseException


class _ProducerDone:
    pass


_DONE = _ProducerDone()


@dataclass(slots=True)
class StreamStats:
    content_chars: int = 0
    records: int = 0
    heartbeats: int = 0
    timed_out: bool = False


class StreamNormalizer:
    """Multiplexes content and log records and guarantees a single terminal sentinel.

    - Whole content units are deduplicated by trimmed text for the lifetime of the
      response. Token deltas are forwarded as they arrive unless their aggregate is
      still a prefix of something already emitted; such deltas are held until they
      diverge, or dropped when the completed message repeats emitted text. The trimmed
      aggregate of every completed message is registered so a later full copy is dropped.
    - A `system` record with the elapsed seconds is emitted after every heartbeat
      interval without any forwarded item.
    - At the stream ceiling the producer is cancelled and a timeout error record plus an
      apology are emitted before the sentinel.
    """

    def __init__(self, timeouts: TimeoutConfig | None = None) -> None:
        self.timeouts = timeouts or TimeoutConfig()
        self.stats = StreamStats()
        self._seen: set[str] = set()
        self._deltas: dict[str, list[str]] = {}
        self._live: set[str] = set()
        self._emitted_any = False

    async def stream(self, events: AsyncIterator[ExecutionEvent]) -> AsyncIterator[OutputItem]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Any] = asyncio.Queue()
        producer = asyncio.create_task(self._pump(events, queue))
        started = last_forward = loop.time()
        ceiling = self.timeouts.stream_ceiling_seconds
        heartbeat = self.timeouts.heartbeat_seconds

        try:
            while True:
                now = loop.time()
                remaining = ceiling - (now - started)
                if remaining <= 0:
                    self.stats.timed_out = True
                    break
                until_heartbeat = heartbeat - (now - last_forward)
                if until_heartbeat <= 0:
                    self.stats.heartbeats += 1
                    yield self._record(
                        LogRecord(
                            type="system",
                            metadata={"message": "Still working", "elapsedSeconds": round(now - started, 1)},
                        )
                    )
                    last_forward = loop.time()
                    continue
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=min(until_heartbeat, remaining))
                except asyncio.TimeoutError:
                    continue

                if item is _DONE:
                    for output in self._flush_held():
                        yield output
                    break
                if isinstance(item, _ProducerFailed):
                    for output in self._flush_held():
                        yield output
                    for output in self._failure(item.error):
                        yield output
                    last_forward = loop.time()
                    continue
                for output in self._normalize(item):
                    yield output
                    last_forward = loop.time()
        finally:
            if not producer.done():
                producer.cancel()
                try:
                    await producer
                except asyncio.CancelledError:
                    pass

        if self.stats.timed_out:
            for output in self._flush_held():
                yield output
            error = UpstreamTimeout("Response stream", ceiling)
            logger.warning("Stream ceiling reached: %s", error)
            yield self._record(LogRecord(type="error", error=str(error), metadata={"kind": error.kind}))
            yield self._content(error.user_message)
        yield STREAM_END

    async def _pump(self, events: AsyncIterator[ExecutionEvent], queue: asyncio.Queue[Any]) -> None:
        try:
            async for event in events:
                queue.put_nowait(event)
        except Exception as exc:
            logger.error("Event producer failed", exc_info=True)
            queue.put_nowait(_ProducerFailed(exc))
        finally:
            queue.put_nowait(_DONE)

    def _normalize(self, event: ExecutionEvent) -> list[OutputItem]:
        outputs: list[OutputItem] = []
        if isinstance(event, TextDelta):
            outputs.extend(self._delta(event))
        elif isinstance(event, MessageCompleted):
            streamed = self._deltas.pop(event.message_id, None)
            live = event.message_id in self._live
            self._live.discard(event.message_id)
            if streamed is None:
                outputs.extend(self._unit(event.content()))
            elif live:
                for text in ("".join(streamed), event.text):
                    if text.strip():
                        self._seen.add(text.strip())
            else:
                outputs.extend(self._unit("".join(streamed) or event.text))
                if event.text.strip():
                    self._seen.add(event.text.strip())
        elif isinstance(event, FinalOutput):
            outputs.extend(self._unit(event.content()))

        record = event.record()
        if record is not None:
            outputs.append(self._record(record))
        return outputs

    def _delta(self, event: TextDelta) -> list[OutputItem]:
        if event.message_id in self._live:
            self._deltas[event.message_id].append(event.text)
            return [self._content(event.text, separate=False)]

        held = self._deltas.setdefault(event.message_id, [])
        held.append(event.text)
        prefix = "".join(held).lstrip()
        if any(seen.startswith(prefix) for seen in self._seen):
            return []
        self._live.add(event.message_id)
        return [self._content("".join(held))]

    def _flush_held(self) -> list[OutputItem]:
        outputs: list[OutputItem] = []
        for message_id in [key for key in self._deltas if key not in self._live]:
            outputs.extend(self._unit("".join(self._deltas.pop(message_id))))
        return outputs

    def _unit(self, text: str | None) -> list[OutputItem]:
        if text is None:
            return []
        key = text.strip()
        if not key or key in self._seen:
            return []
        self._seen.add(key)
        return [self._content(text)]

    def _failure(self, error: BaseException) -> list[OutputItem]:
        kind = getattr(error, "kind", "error")
        message = (
            error.user_message
            if isinstance(error, OrchestratorError)
            else OrchestratorError.user_message
        )
        return [
            self._record(LogRecord(type="error", error=str(error), metadata={"kind": kind})),
            *self._unit(message),
        ]

    def _content(self, text: str, *, separate: bool = True) -> ContentChunk:
        if separate and self._emitted_any and text[:1] and not text[:1].isspace():
            text = "\n\n" + text
        self._emitted_any = True
        self.stats.content_chars += len(text)
        return ContentChunk(text)

    def _record(self, record: LogRecord) -> LogRecord:
        self.stats.records += 1
        return record
