"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant", "system"]
Intent = Literal["document", "web", "command", "memory", "hybrid", "unknown"]
SearchMode = Literal["vector", "legacy"]
CommandStatus = Literal["ok", "not_found", "auth_required", "error"]


@dataclass(slots=True, frozen=True)
class ConversationMessage:
    """One turn of the caller-supplied conversation."""

    role: Role
    content: str


@dataclass(slots=True)
class ClassificationContext:
    keywords: list[str]
    is_question: bool = False
    mentions_document: bool = False
    mentions_file: bool = False
    mentions_upload: bool = False
    document_name: str | None = None


@dataclass(slots=True)
class IntentClassification:
    """Routing hint produced once per request by the query classifier."""

    intent: Intent
    confidence: float
    suggested_tool: str
    context: ClassificationContext


@dataclass(slots=True, frozen=True)
class ParsedCommand:
    """A tokenized slash command. Never mutated after parsing."""

    server_id: str
    command: str | None
    args: dict[str, str] = field(default_factory=dict)
    positional_args: tuple[str, ...] = ()

    def render(self) -> str:
        parts = [f"/{self.server_id}"]
        if self.command:
            parts.append(self.command)
        for key, value in self.args.items():
            if not value or any(ch.isspace() for ch in value) or '"' in value:
                escaped = value.replace('"', "'")
                parts.append(f'{key}="{escaped}"')
            else:
                parts.append(f"{key}={value}")
        parts.extend(self.positional_args)
        return " ".join(parts)

    def with_args(self, **updates: str) -> "ParsedCommand":
        return ParsedCommand(
            server_id=self.server_id,
            command=self.command,
            args={**self.args, **updates},
            positional_args=self.positional_args,
        )


@dataclass(slots=True)
class ParseResult:
    """Structured outcome of parsing; `error` is set instead of raising."""

    command: ParsedCommand | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.command is not None and self.error is None


@dataclass(slots=True)
class CommandResult:
    """Outcome of one dispatched command."""

    command: str
    status: CommandStatus
    output: str
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass(slots=True)
class DocumentReference:
    """A job id attached to a chat request, with the caller's display name."""

    job_id: str
    file_name: str | None = None


@dataclass(slots=True)
class StageHistoryEntry:
    stage: str
    at: str


@dataclass(slots=True)
class ProcessingJob:
    """Document-processing job as read from the external job store."""

    id: str
    file_name: str
    stage: str
    stage_history: list[StageHistoryEntry] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ContextChunk:
    id: str
    content: str
    similarity: float | None = None


@dataclass(slots=True)
class DocumentContext:
    """Ranked chunks for one job, produced by the retrieval collaborator."""

    job_id: str
    file_name: str
    chunks: list[ContextChunk]
    search_mode: SearchMode
    token: str
    stage: str | None = None


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
