"""FastAPI entrypoint for chat/command/trace endpoints."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from chat_orchestrator.commands.catalog import DEFAULT_CATALOG
from chat_orchestrator.commands.dispatcher import CommandDispatcher
from chat_orchestrator.commands.gateway import (
    HttpCommandGateway,
    HttpServerRegistry,
    ServerRegistry,
    StaticServerRegistry,
)
from chat_orchestrator.config import ServiceSettings
from chat_orchestrator.documents.clients import (
    HttpJobStore,
    HttpRetrievalClient,
    InMemoryJobStore,
    InMemoryRetrievalService,
    JobStore,
    RetrievalClient,
)
from chat_orchestrator.documents.embedder import HashingEmbedder, OpenAIEmbedder
from chat_orchestrator.documents.injector import DocumentContextInjector
from chat_orchestrator.memory.store import InMemoryMemoryStore, MemoryStore, SqliteMemoryStore
from chat_orchestrator.obs.tracing import TraceStore
from chat_orchestrator.pipeline import TurnPipeline
from chat_orchestrator.stream.transport import sse_stream

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "http://localhost:8080/commands"


def _create_registry(settings: ServiceSettings) -> ServerRegistry:
    static = StaticServerRegistry(settings.command_gateway_url or DEFAULT_GATEWAY_URL, DEFAULT_CATALOG)
    if settings.server_registry_url:
        return HttpServerRegistry(
            settings.server_registry_url,
            static,
            timeout_seconds=settings.timeouts.command_seconds,
        )
    return static


def _create_retrieval(settings: ServiceSettings) -> RetrievalClient:
    if settings.document_context_url:
        return HttpRetrievalClient(
            settings.document_context_url,
            timeout_seconds=settings.timeouts.document_context_seconds,
        )
    api_key = settings.providers.openai_api_key
    return InMemoryRetrievalService(OpenAIEmbedder(api_key) if api_key else HashingEmbedder())


def _create_job_store(settings: ServiceSettings) -> JobStore:
    if settings.job_store_url:
        return HttpJobStore(settings.job_store_url, timeout_seconds=settings.timeouts.document_context_seconds)
    return InMemoryJobStore()


def _create_memory_store(settings: ServiceSettings) -> MemoryStore:
    if settings.memory_db_path:
        return SqliteMemoryStore(settings.memory_db_path)
    return InMemoryMemoryStore()


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


app = FastAPI(title="Chat Orchestrator", version="0.1.0")

_settings = ServiceSettings.from_env()
_trace_store = TraceStore()
_dispatcher = CommandDispatcher(
    registry=_create_registry(_settings),
    gateway=HttpCommandGateway(timeout_seconds=_settings.timeouts.command_seconds),
    catalog=DEFAULT_CATALOG,
    timeouts=_settings.timeouts,
)
_injector = DocumentContextInjector(
    retrieval=_create_retrieval(_settings),
    jobs=_create_job_store(_settings),
    config=_settings.retrieval,
    timeouts=_settings.timeouts,
)
_pipeline = TurnPipeline(
    dispatcher=_dispatcher,
    catalog=DEFAULT_CATALOG,
    settings=_settings,
    injector=_injector,
    memory_store=_create_memory_store(_settings),
    trace_store=_trace_store,
)


@app.get("/health")
def health() -> dict[str, Any]:
    providers = _settings.providers
    return {
        "status": "ok",
        "providers_configured": {
            name: providers.api_key_for(name) is not None for name in ("openai", "anthropic", "gemini")
        },
        "gateway_url": _settings.command_gateway_url or DEFAULT_GATEWAY_URL,
        "trace_count": len(_trace_store.list_recent(limit=1000)),
    }


@app.post("/chat")
async def chat(request: Request) -> StreamingResponse:
    try:
        payload: Any = await request.json()
    except ValueError:
        logger.info("Chat body is not valid JSON")
        payload = None
    items = _pipeline.stream(payload, bearer_token=_bearer_token(request))
    return StreamingResponse(
        sse_stream(items),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/commands")
def commands(category: str | None = None) -> dict[str, Any]:
    return {
        "servers": DEFAULT_CATALOG.as_dict(),
        "text": DEFAULT_CATALOG.render(category),
    }


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
