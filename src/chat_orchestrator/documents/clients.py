"""Retrieval and job-store collaborators: in-memory and HTTP implementations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from chat_orchestrator.documents.embedder import Embedder, HashingEmbedder, cosine_similarity
from chat_orchestrator.documents.stages import JOB_STAGES, advance_stage
from chat_orchestrator.types import (
    ContextChunk,
    DocumentContext,
    ProcessingJob,
    SearchMode,
    StageHistoryEntry,
)

logger = logging.getLogger(__name__)

LEGACY_CHUNK_CHARS = 1200


@dataclass(slots=True)
class RetrievalResult:
    contexts: list[DocumentContext]
    search_mode: SearchMode


class RetrievalClient(Protocol):
    async def fetch(
        self,
        *,
        job_ids: list[str],
        query: str | None,
        limit: int,
        similarity_threshold: float,
    ) -> RetrievalResult:
        """Vector search when `query` is given, otherwise whole-document legacy chunks."""


class JobStore(Protocol):
    async def get_many(self, job_ids: list[str]) -> list[ProcessingJob]:
        """Jobs for the known ids; unknown ids are omitted."""

    async def update_stage(self, job_id: str, stage: str) -> ProcessingJob | None:
        """Advance a job's stage and return the stored result."""


def context_token(job_id: str) -> str:
    return f"ctx://{job_id}"


def chunk_id(job_id: str, index: int) -> str:
    return f"{context_token(job_id)}#chunk/{index + 1}"


def chunk_text(text: str, size: int = LEGACY_CHUNK_CHARS) -> list[str]:
    return [text[start : start + size] for start in range(0, len(text), size)]


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class _IndexedChunk:
    job_id: str
    index: int
    text: str
    embedding: list[float]


@dataclass(slots=True)
class _IndexedDocument:
    file_name: str
    text: str
    chunks: list[_IndexedChunk] = field(default_factory=list)


class InMemoryRetrievalService:
    """Local retrieval over registered document text, chunked and embedded on add."""

    def __init__(self, embedder: Embedder | None = None, *, chunk_chars: int = LEGACY_CHUNK_CHARS) -> None:
        self.embedder = embedder or HashingEmbedder()
        self.chunk_chars = chunk_chars
        self._documents: dict[str, _IndexedDocument] = {}
        self._stages: dict[str, str] = {}

    def add_document(self, job_id: str, file_name: str, text: str, *, stage: str | None = None) -> None:
        pieces = chunk_text(text, self.chunk_chars)
        embeddings = self.embedder.embed_documents(pieces) if pieces else []
        self._documents[job_id] = _IndexedDocument(
            file_name=file_name,
            text=text,
            chunks=[
                _IndexedChunk(job_id=job_id, index=index, text=piece, embedding=embedding)
                for index, (piece, embedding) in enumerate(zip(pieces, embeddings, strict=True))
            ],
        )
        if stage:
            self._stages[job_id] = stage

    async def fetch(
        self,
        *,
        job_ids: list[str],
        query: str | None,
        limit: int,
        similarity_threshold: float,
    ) -> RetrievalResult:
        if query:
            contexts = self._vector_search(job_ids, query, limit, similarity_threshold)
            if contexts:
                return RetrievalResult(contexts=contexts, search_mode="vector")
            logger.info("No chunks above threshold, falling back to legacy retrieval")
        return RetrievalResult(contexts=self._legacy(job_ids), search_mode="legacy")

    def _vector_search(
        self,
        job_ids: list[str],
        query: str,
        limit: int,
        threshold: float,
    ) -> list[DocumentContext]:
        query_embedding = self.embedder.embed_query(query)
        scored = [
            (cosine_similarity(query_embedding, chunk.embedding), chunk)
            for job_id in job_ids
            if job_id in self._documents
            for chunk in self._documents[job_id].chunks
        ]
        ranked = sorted(
            (item for item in scored if item[0] >= threshold),
            key=lambda item: item[0],
            reverse=True,
        )[:limit]

        grouped: dict[str, DocumentContext] = {}
        for similarity, chunk in ranked:
            context = grouped.get(chunk.job_id)
            if context is None:
                context = grouped[chunk.job_id] = DocumentContext(
                    job_id=chunk.job_id,
                    file_name=self._documents[chunk.job_id].file_name,
                    chunks=[],
                    search_mode="vector",
                    token=context_token(chunk.job_id),
                    stage=self._stages.get(chunk.job_id),
                )
            context.chunks.append(
                ContextChunk(id=chunk_id(chunk.job_id, chunk.index), content=chunk.text, similarity=similarity)
            )
        return list(grouped.values())

    def _legacy(self, job_ids: list[str]) -> list[DocumentContext]:
        contexts: list[DocumentContext] = []
        for job_id in job_ids:
            document = self._documents.get(job_id)
            if document is None:
                continue
            contexts.append(
                DocumentContext(
                    job_id=job_id,
                    file_name=document.file_name,
                    chunks=[
                        ContextChunk(id=chunk_id(job_id, chunk.index), content=chunk.text)
                        for chunk in document.chunks
                    ],
                    search_mode="legacy",
                    token=context_token(job_id),
                    stage=self._stages.get(job_id),
                )
            )
        return contexts


class InMemoryJobStore:
    def __init__(self, jobs: list[ProcessingJob] | None = None) -> None:
        self._jobs: dict[str, ProcessingJob] = {job.id: job for job in jobs or []}

    def put(self, job: ProcessingJob) -> None:
        self._jobs[job.id] = job

    def get(self, job_id: str) -> ProcessingJob | None:
        return self._jobs.get(job_id)

    async def get_many(self, job_ids: list[str]) -> list[ProcessingJob]:
        return [self._jobs[job_id] for job_id in job_ids if job_id in self._jobs]

    async def update_stage(self, job_id: str, stage: str) -> ProcessingJob | None:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        self._jobs[job_id] = advance_stage(job, stage)
        return self._jobs[job_id]


# ---------------------------------------------------------------------------
# HTTP implementations
# ---------------------------------------------------------------------------

class HttpRetrievalClient:
    """POSTs `{query?, jobIds, limit, similarity_threshold}` to the retrieval service."""

    def __init__(self, url: str, *, timeout_seconds: float = 30.0, bearer_token: str | None = None) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.bearer_token = bearer_token

    async def fetch(
        self,
        *,
        job_ids: list[str],
        query: str | None,
        limit: int,
        similarity_threshold: float,
    ) -> RetrievalResult:
        body: dict[str, Any] = {
            "jobIds": job_ids,
            "limit": limit,
            "similarity_threshold": similarity_threshold,
        }
        if query:
            body["query"] = query
        headers = {"Authorization": f"Bearer {self.bearer_token}"} if self.bearer_token else {}
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(self.url, json=body, headers=headers)
        response.raise_for_status()
        payload = response.json()
        mode: SearchMode = "vector" if payload.get("searchMode") == "vector" else "legacy"
        return RetrievalResult(
            contexts=[_context_from_payload(item, mode) for item in payload.get("contexts", [])],
            search_mode=mode,
        )


class HttpJobStore:
    """Reads jobs with GET `{url}/{id}` and updates stages with PATCH `{url}`."""

    def __init__(self, url: str, *, timeout_seconds: float = 30.0, bearer_token: str | None = None) -> None:
        self.url = url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.bearer_token = bearer_token

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.bearer_token}"} if self.bearer_token else {}

    async def get_many(self, job_ids: list[str]) -> list[ProcessingJob]:
        jobs: list[ProcessingJob] = []
        async with httpx.AsyncClient(timeout=self.timeout_seconds, headers=self._headers()) as client:
            for job_id in job_ids:
                response = await client.get(f"{self.url}/{job_id}")
                if response.status_code == 404:
                    continue
                response.raise_for_status()
                jobs.append(job_from_payload(response.json()))
        return jobs

    async def update_stage(self, job_id: str, stage: str) -> ProcessingJob | None:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, headers=self._headers()) as client:
            response = await client.patch(self.url, json={"jobId": job_id, "stage": stage})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        payload = response.json()
        return job_from_payload(payload.get("job", payload))


def job_from_payload(payload: dict[str, Any]) -> ProcessingJob:
    metadata = dict(payload.get("metadata") or {})
    stage = payload.get("stage") or metadata.get("job_stage") or "registered"
    history = [
        StageHistoryEntry(stage=entry["stage"], at=entry["at"])
        for entry in metadata.get("job_stage_history") or []
        if isinstance(entry, dict) and entry.get("stage") in JOB_STAGES and isinstance(entry.get("at"), str)
    ]
    return ProcessingJob(
        id=str(payload["id"]),
        file_name=str(payload.get("fileName") or payload.get("file_name") or "Unknown"),
        stage=stage if stage in JOB_STAGES else "registered",
        stage_history=history,
        metadata=metadata,
    )


def _context_from_payload(item: dict[str, Any], mode: SearchMode) -> DocumentContext:
    job_id = str(item.get("jobId"))
    return DocumentContext(
        job_id=job_id,
        file_name=str(item.get("fileName") or "Unknown"),
        chunks=[
            ContextChunk(
                id=str(chunk.get("id")),
                content=str(chunk.get("content", "")),
                similarity=chunk.get("similarity"),
            )
            for chunk in item.get("chunks", [])
        ],
        search_mode=mode,
        token=str(item.get("token") or context_token(job_id)),
        stage=item.get("stage"),
    )
