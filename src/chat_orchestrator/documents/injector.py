"""Document context injection for a single chat turn."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from chat_orchestrator.config import RetrievalConfig, TimeoutConfig
from chat_orchestrator.documents.clients import JobStore, RetrievalClient
from chat_orchestrator.documents.stages import is_ready
from chat_orchestrator.errors import UpstreamTimeout
from chat_orchestrator.types import (
    ConversationMessage,
    DocumentContext,
    DocumentReference,
    ProcessingJob,
    SearchMode,
)

logger = logging.getLogger(__name__)

CONTEXT_START = "--- DOCUMENT CONTEXT ---"
CONTEXT_END = "--- END DOCUMENT CONTEXT ---"

_GREETING = re.compile(
    r"^\s*(?:hi|hello|hey|yo|thanks|thank you|good (?:morning|afternoon|evening))\b[\s!.,?]*(?:there)?[\s!.,?]*$",
    re.IGNORECASE,
)


def is_bare_greeting(text: str) -> bool:
    return bool(_GREETING.match(text))


def still_processing_message(names: Sequence[str]) -> str:
    return f"Still processing: {', '.join(names)}. Please try again in a moment once processing finishes."


@dataclass(slots=True)
class InjectionOutcome:
    """What the injector did to the conversation.

    `short_circuit` is set when no attached document is usable yet; the caller answers
    with it directly and makes no provider call.
    """

    conversation: list[ConversationMessage]
    contexts: list[DocumentContext] = field(default_factory=list)
    search_mode: SearchMode | None = None
    short_circuit: str | None = None
    notices: list[str] = field(default_factory=list)
    used_job_ids: list[str] = field(default_factory=list)


class DocumentContextInjector:
    def __init__(
        self,
        *,
        retrieval: RetrievalClient,
        jobs: JobStore,
        config: RetrievalConfig | None = None,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self.retrieval = retrieval
        self.jobs = jobs
        self.config = config or RetrievalConfig()
        self.timeouts = timeouts or TimeoutConfig()
        self._pending: set[asyncio.Task[None]] = set()

    async def inject(
        self,
        conversation: Sequence[ConversationMessage],
        documents: Sequence[DocumentReference],
        query: str,
    ) -> InjectionOutcome:
        outcome = InjectionOutcome(conversation=list(conversation))
        if not documents:
            return outcome

        requested = list(dict.fromkeys(doc.job_id for doc in documents))
        jobs = await self._load_jobs(requested, outcome)
        if jobs is None:
            return outcome
        known = {job.id for job in jobs}
        for job_id in requested:
            if job_id not in known:
                logger.warning("Dropping unknown document job id %s", job_id)
        if not jobs:
            return outcome

        ready = [job for job in jobs if is_ready(job)]
        failed = [job for job in jobs if job.stage == "failed"]
        pending = [job for job in jobs if job not in ready and job not in failed]

        if not ready:
            parts: list[str] = []
            if pending:
                parts.append(still_processing_message([job.file_name for job in pending]))
            if failed:
                parts.append(_failed_message(failed))
            outcome.short_circuit = " ".join(parts)
            return outcome
        if failed:
            outcome.notices.append(_failed_message(failed))
        if pending:
            outcome.notices.append(f"Skipping documents still processing: {', '.join(job.file_name for job in pending)}")

        use_vector = (
            self.config.embeddings_enabled
            and len(query.strip()) >= self.config.min_vector_query_chars
            and not is_bare_greeting(query)
        )
        job_ids = [job.id for job in ready]
        try:
            result = await asyncio.wait_for(
                self.retrieval.fetch(
                    job_ids=job_ids,
                    query=query if use_vector else None,
                    limit=self.config.limit,
                    similarity_threshold=self.config.similarity_threshold,
                ),
                timeout=self.timeouts.document_context_seconds,
            )
        except asyncio.TimeoutError:
            error = UpstreamTimeout("Document context service", self.timeouts.document_context_seconds)
            logger.warning("%s; continuing without document context", error)
            outcome.notices.append(f"Document context unavailable: {error}")
            return outcome
        except Exception as exc:
            logger.error("Document context retrieval failed; continuing without it", exc_info=True)
            outcome.notices.append(f"Document context unavailable: {exc}")
            return outcome

        contexts = [context for context in result.contexts if context.chunks]
        if not contexts:
            return outcome

        outcome.contexts = contexts
        outcome.search_mode = result.search_mode
        outcome.used_job_ids = [context.job_id for context in contexts]
        outcome.conversation = splice_context(outcome.conversation, render_context_block(contexts))
        self._schedule_injected(outcome.used_job_ids)
        return outcome

    @property
    def pending_updates(self) -> int:
        return len(self._pending)

    async def wait_pending(self) -> None:
        """Wait for scheduled stage updates; used on shutdown and in tests."""
        pending = list(self._pending)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _load_jobs(self, job_ids: list[str], outcome: InjectionOutcome) -> list[ProcessingJob] | None:
        try:
            return await asyncio.wait_for(
                self.jobs.get_many(job_ids),
                timeout=self.timeouts.document_context_seconds,
            )
        except asyncio.TimeoutError:
            error = UpstreamTimeout("Job store", self.timeouts.document_context_seconds)
            logger.warning("%s; continuing without document context", error)
            outcome.notices.append(f"Document context unavailable: {error}")
        except Exception as exc:
            logger.error("Job lookup failed; continuing without document context", exc_info=True)
            outcome.notices.append(f"Document context unavailable: {exc}")
        return None

    def _schedule_injected(self, job_ids: list[str]) -> None:
        task = asyncio.create_task(self._mark_injected(job_ids))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _mark_injected(self, job_ids: list[str]) -> None:
        results = await asyncio.gather(
            *(self.jobs.update_stage(job_id, "injected") for job_id in job_ids),
            return_exceptions=True,
        )
        for job_id, result in zip(job_ids, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Failed to mark job %s injected: %s", job_id, result)


def render_context_block(contexts: Sequence[DocumentContext]) -> str:
    lines = [CONTEXT_START]
    for context in contexts:
        lines.append(f"[{context.file_name}] ({context.token}, {context.search_mode})")
        for chunk in context.chunks:
            score = f" similarity={chunk.similarity:.2f}" if chunk.similarity is not None else ""
            lines.append(f"<{chunk.id}>{score}")
            lines.append(chunk.content.strip())
        lines.append("")
    lines.append(CONTEXT_END)
    lines.append("Answer using the document context above when it is relevant, and cite chunk ids.")
    return "\n".join(lines)


def splice_context(conversation: list[ConversationMessage], block: str) -> list[ConversationMessage]:
    """Insert `block` as a system message directly before the last user turn."""
    message = ConversationMessage(role="system", content=block)
    for index in range(len(conversation) - 1, -1, -1):
        if conversation[index].role == "user":
            return [*conversation[:index], message, *conversation[index:]]
    return [*conversation, message]


def _failed_message(jobs: Sequence[ProcessingJob]) -> str:
    return f"Processing failed for: {', '.join(job.file_name for job in jobs)}. Please re-upload the file."
