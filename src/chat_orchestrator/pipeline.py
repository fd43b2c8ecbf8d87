"""One conversational turn, from raw request payload to the normalized output stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chat_orchestrator.agent.classifier import DocumentSummary, classify_query
from chat_orchestrator.agent.events import ExecutionEvent, FinalOutput, LogRecord, RunError, SystemNotice
from chat_orchestrator.agent.fallback import DirectCallStrategy
from chat_orchestrator.agent.graph import RoutingDecision, build_graph, route_turn
from chat_orchestrator.agent.registry import ToolRegistry
from chat_orchestrator.agent.runner import AgentRunner
from chat_orchestrator.agent.selector import StrategySelector
from chat_orchestrator.agent.tools import register_orchestration_tools
from chat_orchestrator.commands.catalog import DEFAULT_CATALOG, CommandCatalog
from chat_orchestrator.commands.dispatcher import CommandDispatcher
from chat_orchestrator.config import ServiceSettings
from chat_orchestrator.documents.injector import DocumentContextInjector, InjectionOutcome
from chat_orchestrator.errors import OrchestratorError, RequestValidationError
from chat_orchestrator.llm.messages import last_user_text
from chat_orchestrator.llm.providers import create_chat_model, provider_label
from chat_orchestrator.memory.store import MemoryStore, summarize_conversation
from chat_orchestrator.obs.tracing import Timer, TraceStore
from chat_orchestrator.stream.normalizer import StreamNormalizer
from chat_orchestrator.stream.transport import STREAM_END, OutputItem
from chat_orchestrator.types import (
    ConversationMessage,
    DocumentReference,
    IntentClassification,
    ToolTrace,
)

logger = logging.getLogger(__name__)

PIPELINE_AGENT = "Turn Pipeline"


class ChatMessageIn(BaseModel):
    role: str = "user"
    content: str


class DocumentReferenceIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId", min_length=1)
    file_name: str | None = Field(default=None, alias="fileName")


class ChatRequest(BaseModel):
    """Caller payload for one turn."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessageIn] = Field(min_length=1)
    provider: str = "openai"
    documents: list[DocumentReferenceIn] = Field(default_factory=list, alias="documentContext")
    user_id: str = Field(default="anonymous", alias="userId")


@dataclass(slots=True)
class TurnRequest:
    """A validated turn with domain types; `bearer_token` comes from the caller's headers."""

    conversation: list[ConversationMessage]
    provider: str = "openai"
    documents: list[DocumentReference] = field(default_factory=list)
    user_id: str = "anonymous"
    bearer_token: str | None = None


def parse_turn_request(payload: Any, *, bearer_token: str | None = None) -> TurnRequest:
    try:
        request = ChatRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise RequestValidationError(f"Invalid chat request at {location or 'body'}: {first.get('msg')}") from exc

    conversation = [
        ConversationMessage(role="assistant" if message.role == "assistant" else "user", content=message.content)
        for message in request.messages
    ]
    if not last_user_text(conversation).strip():
        raise RequestValidationError("Chat request has no user message")
    return TurnRequest(
        conversation=conversation,
        provider=request.provider.lower(),
        documents=[DocumentReference(job_id=doc.job_id, file_name=doc.file_name) for doc in request.documents],
        user_id=request.user_id,
        bearer_token=bearer_token,
    )


class TurnPipeline:
    """Runs one turn and yields transport items ending in exactly one sentinel.

    Every failure is classified where it happens and reaches the caller as a `error`
    log record plus an apology on the content channel; the stream is always closed.
    """

    def __init__(
        self,
        *,
        dispatcher: CommandDispatcher,
        catalog: CommandCatalog = DEFAULT_CATALOG,
        settings: ServiceSettings | None = None,
        injector: DocumentContextInjector | None = None,
        memory_store: MemoryStore | None = None,
        trace_store: TraceStore | None = None,
        llm_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.catalog = catalog
        self.settings = settings or ServiceSettings()
        self.injector = injector
        self.memory_store = memory_store
        self.trace_store = trace_store or TraceStore()
        self.llm_factory = llm_factory or self._create_llm

    def _create_llm(self, provider: str) -> Any:
        return create_chat_model(
            provider,
            self.settings.providers,
            timeout_seconds=self.settings.timeouts.provider_connect_seconds,
        )

    async def stream(self, payload: Any, *, bearer_token: str | None = None) -> AsyncIterator[OutputItem]:
        state = _TurnState()
        normalizer = StreamNormalizer(self.settings.timeouts)
        with Timer() as timer:
            async for item in normalizer.stream(self._events(payload, bearer_token, state)):
                if item is STREAM_END:
                    continue
                yield item

        trace = self.trace_store.create_record(
            question=state.question,
            provider=state.provider,
            intent=state.classification.intent if state.classification else "unknown",
            route=state.decision.reason if state.decision else "rejected",
            strategy=state.selector.strategy if state.selector else None,
            fallback_reason=state.selector.fallback_reason if state.selector else None,
            tool_traces=state.tool_traces,
            output_chars=normalizer.stats.content_chars,
            records=normalizer.stats.records,
            heartbeats=normalizer.stats.heartbeats,
            latency_ms=timer.elapsed_ms,
            timed_out=normalizer.stats.timed_out,
        )
        yield LogRecord(type="system", agent=PIPELINE_AGENT, metadata={"message": "Turn complete", "traceId": trace.trace_id})
        yield STREAM_END

    async def _events(
        self,
        payload: Any,
        bearer_token: str | None,
        state: _TurnState,
    ) -> AsyncIterator[ExecutionEvent]:
        try:
            request = parse_turn_request(payload, bearer_token=bearer_token)
        except RequestValidationError as exc:
            logger.info("Rejected chat request: %s", exc)
            yield RunError(str(exc), kind=exc.kind, agent=PIPELINE_AGENT)
            yield FinalOutput(exc.user_message, agent=PIPELINE_AGENT)
            return

        question = last_user_text(request.conversation)
        state.question = question
        state.provider = request.provider
        state.classification = classify_query(
            question,
            [DocumentSummary(id=doc.job_id, file_name=doc.file_name or doc.job_id) for doc in request.documents],
        )
        yield SystemNotice(
            "Query classified",
            {
                "intent": state.classification.intent,
                "confidence": state.classification.confidence,
                "suggestedTool": state.classification.suggested_tool,
            },
        )

        conversation = request.conversation
        if request.documents and self.injector is not None:
            outcome = await self.injector.inject(conversation, request.documents, question)
            for event in _injection_events(outcome):
                yield event
            if outcome.short_circuit is not None:
                yield FinalOutput(outcome.short_circuit, agent=PIPELINE_AGENT)
                return
            conversation = outcome.conversation

        state.decision = route_turn(question, state.classification, request.conversation, self.catalog)
        yield SystemNotice(
            "Routing decision",
            {"target": state.decision.target, "reason": state.decision.reason},
        )

        try:
            llm = self.llm_factory(request.provider)
        except OrchestratorError as exc:
            logger.warning("Cannot create %s model: %s", request.provider, exc)
            yield RunError(str(exc), kind=exc.kind, agent=PIPELINE_AGENT)
            yield FinalOutput(exc.user_message, agent=PIPELINE_AGENT)
            return

        registry = ToolRegistry()
        registry.set_observer(state.tool_traces.append)
        register_orchestration_tools(
            registry,
            dispatcher=self.dispatcher,
            catalog=self.catalog,
            bearer_token=request.bearer_token,
            memory_store=self.memory_store,
            user_id=request.user_id,
        )
        graph = build_graph(self.catalog, memory_enabled=self.memory_store is not None)
        state.selector = StrategySelector(
            runner_factory=lambda: AgentRunner(
                llm=llm,
                registry=registry,
                graph=graph,
                config=self.settings.agent,
                timeouts=self.settings.timeouts,
                provider=request.provider,
            ),
            fallback=DirectCallStrategy(
                llm=llm,
                dispatcher=self.dispatcher,
                catalog=self.catalog,
                bearer_token=request.bearer_token,
                config=self.settings.agent,
                timeouts=self.settings.timeouts,
                provider_label=provider_label(request.provider),
            ),
        )
        async for event in state.selector.run(conversation, state.decision):
            yield event

        if self.memory_store is not None and len(request.conversation) > self.settings.agent.summarize_after_messages:
            try:
                await asyncio.to_thread(
                    summarize_conversation, self.memory_store, request.user_id, request.conversation
                )
            except Exception:
                logger.warning("Conversation summary could not be stored", exc_info=True)


class _TurnState:
    def __init__(self) -> None:
        self.question = ""
        self.provider = "openai"
        self.classification: IntentClassification | None = None
        self.decision: RoutingDecision | None = None
        self.selector: StrategySelector | None = None
        self.tool_traces: list[ToolTrace] = []


def _injection_events(outcome: InjectionOutcome) -> list[ExecutionEvent]:
    events: list[ExecutionEvent] = [SystemNotice(notice) for notice in outcome.notices]
    if outcome.contexts:
        events.append(
            SystemNotice(
                "Document context injected",
                {
                    "searchMode": outcome.search_mode,
                    "jobIds": outcome.used_job_ids,
                    "chunks": sum(len(context.chunks) for context in outcome.contexts),
                },
            )
        )
    return events
