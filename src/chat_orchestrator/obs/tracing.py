"""Per-turn tracing and summary metrics."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from chat_orchestrator.types import ToolTrace

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TurnTrace:
    trace_id: str
    timestamp_utc: str
    question: str
    provider: str
    intent: str
    route: str
    strategy: str | None
    fallback_reason: str | None
    tool_traces: list[ToolTrace]
    input_tokens: int
    output_chars: int
    records: int
    heartbeats: int
    latency_ms: float
    timed_out: bool


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self.max_records = max_records
        self._records: dict[str, TurnTrace] = {}

    def create_record(
        self,
        *,
        question: str,
        provider: str,
        intent: str,
        route: str,
        strategy: str | None,
        fallback_reason: str | None,
        tool_traces: list[ToolTrace],
        output_chars: int,
        records: int = 0,
        heartbeats: int = 0,
        latency_ms: float,
        timed_out: bool = False,
    ) -> TurnTrace:
        record = TurnTrace(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            question=question,
            provider=provider,
            intent=intent,
            route=route,
            strategy=strategy,
            fallback_reason=fallback_reason,
            tool_traces=tool_traces,
            input_tokens=estimate_token_count(question),
            output_chars=output_chars,
            records=records,
            heartbeats=heartbeats,
            latency_ms=latency_ms,
            timed_out=timed_out,
        )
        self._records[record.trace_id] = record
        while len(self._records) > self.max_records:
            self._records.pop(next(iter(self._records)))
        return record

    def get(self, trace_id: str) -> TurnTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TurnTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "fallback_rate": 0.0,
                "timeout_count": 0,
                "total_tool_calls": 0,
                "total_input_tokens": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        fallbacks = sum(1 for record in records if record.fallback_reason is not None)

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "fallback_rate": fallbacks / total,
            "timeout_count": sum(1 for record in records if record.timed_out),
            "total_tool_calls": sum(len(record.tool_traces) for record in records),
            "total_input_tokens": sum(record.input_tokens for record in records),
        }


class Timer:
    """Simple context timer used by the turn pipeline."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
