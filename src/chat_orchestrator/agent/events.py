"""Execution events produced by the strategies and consumed by the normalizer.

Every producer yields one of the variants below. Each variant knows its own content
(`content()`) and its log-channel form (`record()`), so consumers never probe
heterogeneous shapes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Literal, Union

RecordType = Literal["content", "toolCall", "toolResult", "error", "system", "finalOutput"]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class LogRecord:
    """Structured diagnostic record carried beside the content stream."""

    type: RecordType
    timestamp: int = field(default_factory=now_ms)
    agent: str | None = None
    tool: str | None = None
    command: str | None = None
    result: Any = None
    error: str | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "timestamp": self.timestamp}
        for name in ("agent", "tool", "command", "result", "error", "metadata"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data


@dataclass(slots=True, frozen=True)
class AgentUpdated:
    agent: str

    def content(self) -> str | None:
        return None

    def record(self) -> LogRecord | None:
        return LogRecord(type="system", agent=self.agent, metadata={"message": f"Handoff to {self.agent}"})


@dataclass(slots=True, frozen=True)
class ToolCallEvent:
    tool: str
    arguments: dict[str, Any]
    agent: str | None = None

    def content(self) -> str | None:
        return None

    def record(self) -> LogRecord | None:
        command = self.arguments.get("command")
        return LogRecord(
            type="toolCall",
            agent=self.agent,
            tool=self.tool,
            command=command if isinstance(command, str) else None,
            metadata={"arguments": self.arguments},
        )


@dataclass(slots=True, frozen=True)
class ToolResultEvent:
    tool: str
    output: str
    agent: str | None = None
    command: str | None = None

    def content(self) -> str | None:
        return None

    def record(self) -> LogRecord | None:
        return LogRecord(
            type="toolResult",
            agent=self.agent,
            tool=self.tool,
            command=self.command,
            result=self.output[:2000],
        )


@dataclass(slots=True, frozen=True)
class TextDelta:
    """A partial token chunk of the message identified by `message_id`."""

    text: str
    message_id: str
    agent: str | None = None

    def content(self) -> str | None:
        return self.text or None

    def record(self) -> LogRecord | None:
        return None


@dataclass(slots=True, frozen=True)
class MessageCompleted:
    """A whole message; when deltas were streamed for it, `text` is their aggregate."""

    text: str
    message_id: str
    agent: str | None = None

    def content(self) -> str | None:
        return self.text if self.text.strip() else None

    def record(self) -> LogRecord | None:
        return None


@dataclass(slots=True, frozen=True)
class FinalOutput:
    text: str
    agent: str | None = None

    def content(self) -> str | None:
        return self.text if self.text.strip() else None

    def record(self) -> LogRecord | None:
        return LogRecord(type="finalOutput", agent=self.agent, metadata={"length": len(self.text)})


@dataclass(slots=True, frozen=True)
class RunError:
    error: str
    kind: str = "error"
    agent: str | None = None

    def content(self) -> str | None:
        return None

    def record(self) -> LogRecord | None:
        return LogRecord(type="error", agent=self.agent, error=self.error, metadata={"kind": self.kind})


@dataclass(slots=True, frozen=True)
class SystemNotice:
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def content(self) -> str | None:
        return None

    def record(self) -> LogRecord | None:
        return LogRecord(type="system", metadata={"message": self.message, **self.metadata})


ExecutionEvent = Union[
    AgentUpdated,
    ToolCallEvent,
    ToolResultEvent,
    TextDelta,
    MessageCompleted,
    FinalOutput,
    RunError,
    SystemNotice,
]


def extract_text(content: Any) -> str:
    """Flatten provider message content (plain string or list of blocks) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type", "text") == "text" and "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content)
