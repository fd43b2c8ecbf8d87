"""Processing-job stage lifecycle."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from chat_orchestrator.types import ProcessingJob, StageHistoryEntry

JOB_STAGES: tuple[str, ...] = ("registered", "uploaded", "processing", "extracted", "indexed", "injected", "failed")
READY_STAGES = frozenset({"extracted", "indexed", "injected"})
MAX_STAGE_HISTORY = 25

_RANK = {stage: index for index, stage in enumerate(JOB_STAGES)}


def is_ready(job: ProcessingJob) -> bool:
    return job.stage in READY_STAGES


def advance_stage(job: ProcessingJob, stage: str, *, at: str | None = None) -> ProcessingJob:
    """Return `job` moved to `stage`.

    Transitions only move forward, except that any stage may move to `failed`;
    `failed` itself is terminal. A transition to the current stage leaves the history
    untouched, and the history keeps the most recent entries only.
    """

    if stage not in _RANK:
        raise ValueError(f"Unknown job stage: {stage}")
    if job.stage == "failed" or (stage != "failed" and _RANK.get(job.stage, -1) > _RANK[stage]):
        return job

    timestamp = at or datetime.now(timezone.utc).isoformat()
    history = list(job.stage_history)
    if not history or history[-1].stage != stage:
        history = [*history, StageHistoryEntry(stage=stage, at=timestamp)][-MAX_STAGE_HISTORY:]

    metadata = dict(job.metadata)
    if job.stage != stage:
        metadata["job_stage_updated_at"] = timestamp
        if stage == "injected":
            metadata["injected_at"] = timestamp
    return replace(job, stage=stage, stage_history=history, metadata=metadata)
