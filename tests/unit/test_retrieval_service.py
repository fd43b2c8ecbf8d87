from chat_orchestrator.documents.clients import InMemoryJobStore, InMemoryRetrievalService, job_from_payload
from chat_orchestrator.types import ProcessingJob


async def test_legacy_mode_returns_every_chunk_with_stable_ids() -> None:
    service = InMemoryRetrievalService()
    service.add_document("job-1", "notes.txt", "a" * 2500, stage="indexed")

    result = await service.fetch(job_ids=["job-1", "job-x"], query=None, limit=5, similarity_threshold=0.7)

    assert result.search_mode == "legacy"
    (context,) = result.contexts
    assert context.token == "ctx://job-1"
    assert context.stage == "indexed"
    assert [chunk.id for chunk in context.chunks] == [
        "ctx://job-1#chunk/1",
        "ctx://job-1#chunk/2",
        "ctx://job-1#chunk/3",
    ]
    assert [len(chunk.content) for chunk in context.chunks] == [1200, 1200, 100]


async def test_vector_mode_ranks_matching_chunks() -> None:
    service = InMemoryRetrievalService(chunk_chars=60)
    service.add_document(
        "job-1",
        "handbook.txt",
        "Employees must encrypt customer data at rest always. "
        "The cafeteria serves lunch from noon until two daily.",
    )

    result = await service.fetch(
        job_ids=["job-1"],
        query="encrypt customer data at rest",
        limit=1,
        similarity_threshold=0.3,
    )

    assert result.search_mode == "vector"
    chunk = result.contexts[0].chunks[0]
    assert "encrypt" in chunk.content
    assert chunk.similarity is not None and chunk.similarity >= 0.3


async def test_vector_mode_falls_back_to_legacy_without_hits() -> None:
    service = InMemoryRetrievalService()
    service.add_document("job-1", "notes.txt", "alpha beta gamma")

    result = await service.fetch(job_ids=["job-1"], query="zebra migration", limit=5, similarity_threshold=0.9)

    assert result.search_mode == "legacy"
    assert result.contexts[0].chunks[0].content == "alpha beta gamma"


async def test_job_store_advances_and_skips_unknown_ids() -> None:
    store = InMemoryJobStore([ProcessingJob(id="job-1", file_name="a.pdf", stage="indexed")])

    assert [job.id for job in await store.get_many(["job-1", "nope"])] == ["job-1"]
    updated = await store.update_stage("job-1", "injected")
    assert updated is not None and updated.stage == "injected"
    assert await store.update_stage("nope", "injected") is None


def test_job_from_payload_reads_metadata_stage() -> None:
    job = job_from_payload(
        {
            "id": "job-9",
            "fileName": "scan.png",
            "metadata": {
                "job_stage": "extracted",
                "job_stage_history": [{"stage": "uploaded", "at": "t1"}, {"stage": "bogus", "at": "t2"}],
            },
        }
    )

    assert job.stage == "extracted"
    assert [entry.stage for entry in job.stage_history] == ["uploaded"]
