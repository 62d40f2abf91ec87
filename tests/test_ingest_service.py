"""Tests for the ingestion orchestrator: job lifecycle, idempotency, rollback and serialisation."""

import asyncio

import pytest

from fakes import make_csv
from services.csv_ingest.IngestService import IngestService
from services.db_health.HealthAuditor import HealthAuditor
from shared.errors import JobNotFound
from shared.models.ingest import JobStatus


@pytest.fixture
def service(helper_config, doc_client, rag_client, embed_client):
    return IngestService(helper_config, doc_client, rag_client, embed_client)


async def ingest(service, data, file_name="products.csv", namespace="default"):
    job = await service.start_ingest(data, file_name, namespace)
    return await service.wait_for_job(job.id)


def rows(codes):
    return [(c, f"text for {c}") for c in codes]


TEN = [f"P{i}" for i in range(10)]


@pytest.mark.asyncio
async def test_ten_row_file_lands_in_both_stores(service, doc_client, rag_client):
    job = await ingest(service, make_csv(rows(TEN)))

    assert job.status == JobStatus.DONE
    assert (job.total_records, job.successful, job.failed) == (10, 10, 0)
    assert job.finished_at is not None
    assert sorted(r.code for r in doc_client.records) == sorted(TEN)
    assert sorted(rag_client.vectors["default"]) == sorted(TEN)


@pytest.mark.asyncio
async def test_reingesting_the_same_file_is_idempotent(service, doc_client, rag_client):
    await ingest(service, make_csv(rows(TEN)))
    job = await ingest(service, make_csv(rows(TEN)))

    assert job.status == JobStatus.DONE
    assert len(doc_client.records) == 10
    assert len(rag_client.vectors["default"]) == 10


@pytest.mark.asyncio
async def test_reupload_with_different_codes_replaces_the_file(service, doc_client, rag_client):
    await ingest(service, make_csv(rows(TEN)))
    await ingest(service, make_csv(rows(["N1", "N2", "N3"])))

    assert sorted(r.code for r in doc_client.records) == ["N1", "N2", "N3"]
    assert sorted(rag_client.vectors["default"]) == ["N1", "N2", "N3"]


@pytest.mark.asyncio
async def test_other_files_are_untouched(service, doc_client, rag_client):
    await ingest(service, make_csv(rows(["A1", "A2"])), file_name="a.csv")
    await ingest(service, make_csv(rows(["B1"])), file_name="b.csv")
    await ingest(service, make_csv(rows(["B2"])), file_name="b.csv")

    assert sorted(r.code for r in doc_client.records) == ["A1", "A2", "B2"]
    assert sorted(rag_client.vectors["default"]) == ["A1", "A2", "B2"]


@pytest.mark.asyncio
async def test_row_without_code_is_skipped(service, doc_client):
    data = make_csv(rows(TEN[:4]) + [("", "orphan text")] + rows(TEN[4:9]))
    job = await ingest(service, data)

    assert job.status == JobStatus.DONE
    assert (job.total_records, job.skipped_rows, job.successful) == (9, 1, 9)
    assert len(doc_client.records) == 9


@pytest.mark.asyncio
async def test_vector_store_failure_rolls_back_documents(service, doc_client, rag_client):
    rag_client.fail_upsert = True
    job = await ingest(service, make_csv(rows(TEN)))

    assert job.status == JobStatus.FAILED
    assert job.rolled_back is True
    assert job.successful == 0
    assert doc_client.records == []


@pytest.mark.asyncio
async def test_partial_embedding_failure_keeps_the_job_done(service, embed_client, doc_client):
    embed_client.fail_codes = {"P3"}
    job = await ingest(service, make_csv(rows(TEN)))

    assert job.status == JobStatus.DONE
    assert (job.successful, job.failed) == (9, 1)
    assert "P3" not in {r.code for r in doc_client.records}


@pytest.mark.asyncio
async def test_missing_header_column_fails_the_job(service, doc_client):
    job = await ingest(service, b"code;other\nA;x\n")

    assert job.status == JobStatus.FAILED
    assert job.error.startswith("Parse failed")
    assert doc_client.insert_calls == 0


@pytest.mark.asyncio
async def test_file_without_valid_rows_fails(service):
    job = await ingest(service, make_csv([("", "x")]))
    assert job.status == JobStatus.FAILED
    assert job.error == "No valid records found in file."


@pytest.mark.asyncio
async def test_cleanup_failure_fails_before_parsing(service, doc_client):
    doc_client.fail_delete = True
    job = await ingest(service, make_csv(rows(TEN)))

    assert job.status == JobStatus.FAILED
    assert job.error.startswith("Cleanup failed")
    assert job.total_records == 0


@pytest.mark.asyncio
async def test_same_file_uploads_are_serialised(service, doc_client, rag_client):
    first = await service.start_ingest(make_csv(rows(TEN)), "products.csv")
    second = await service.start_ingest(make_csv(rows(["N1", "N2"])), "products.csv")
    await asyncio.gather(service.wait_for_job(first.id), service.wait_for_job(second.id))

    assert first.status == JobStatus.DONE
    assert second.status == JobStatus.DONE
    assert first.finished_at <= second.finished_at
    assert sorted(r.code for r in doc_client.records) == ["N1", "N2"]
    assert sorted(rag_client.vectors["default"]) == ["N1", "N2"]


@pytest.mark.asyncio
async def test_cancel_before_start(service, doc_client):
    job = await service.start_ingest(make_csv(rows(TEN)), "products.csv")
    service.cancel_job(job.id)
    job = await service.wait_for_job(job.id)

    assert job.status == JobStatus.CANCELLED
    assert doc_client.records == []


@pytest.mark.asyncio
async def test_cancel_of_finished_job_is_a_no_op(service):
    job = await ingest(service, make_csv(rows(TEN)))
    assert service.cancel_job(job.id).status == JobStatus.DONE


@pytest.mark.asyncio
async def test_unknown_job_raises(service):
    with pytest.raises(JobNotFound):
        service.get_job("nope")


@pytest.mark.asyncio
async def test_empty_file_name_is_rejected(service):
    with pytest.raises(ValueError):
        await service.start_ingest(b"code;metadata_small\n", "  ")


@pytest.mark.asyncio
async def test_job_history_is_bounded(helper_config, doc_client, rag_client, embed_client, monkeypatch):
    monkeypatch.setenv("INGEST_JOB_HISTORY", "2")
    service = IngestService(helper_config, doc_client, rag_client, embed_client)
    jobs = [await ingest(service, make_csv(rows([f"X{i}"])), file_name=f"f{i}.csv") for i in range(3)]

    assert [j.id for j in service.list_jobs()] == [jobs[2].id, jobs[1].id]
    with pytest.raises(JobNotFound):
        service.get_job(jobs[0].id)


@pytest.mark.asyncio
async def test_list_and_delete_files(service, doc_client, rag_client):
    await ingest(service, make_csv(rows(["A1", "A2"])), file_name="a.csv")
    await ingest(service, make_csv(rows(["S1"])), file_name="s.csv", namespace="shop")

    summaries = await service.list_files()
    assert [(s.namespace, s.file_name, s.document_count) for s in summaries] == [
        ("default", "a.csv", 2),
        ("shop", "s.csv", 1),
    ]

    result = await service.delete_file("a.csv", "default")
    assert (result.documents_deleted, result.vectors_deleted) == (2, 2)
    assert [s.file_name for s in await service.list_files()] == ["s.csv"]
    assert list(rag_client.vectors["shop"]) == ["S1"]


@pytest.mark.asyncio
async def test_code_already_stored_for_another_file_is_rejected(service, doc_client, rag_client, helper_config):
    await ingest(service, make_csv(rows(["X1"])), file_name="a.csv")
    job = await ingest(service, make_csv(rows(["X1", "X2"])), file_name="b.csv")

    assert job.status == JobStatus.DONE
    assert (job.successful, job.failed) == (1, 1)
    assert job.conflicting_codes == ["X1"]
    assert sorted((r.code, r.file_name) for r in doc_client.records) == [("X1", "a.csv"), ("X2", "b.csv")]
    assert rag_client.vectors["default"]["X1"].metadata["fileName"] == "a.csv"

    report = await HealthAuditor(helper_config, doc_client, rag_client, dimension=4).audit()
    assert report.healthy is True


@pytest.mark.asyncio
async def test_file_of_only_foreign_codes_fails(service, doc_client):
    await ingest(service, make_csv(rows(["X1"])), file_name="a.csv")
    job = await ingest(service, make_csv(rows(["X1"])), file_name="b.csv")

    assert job.status == JobStatus.FAILED
    assert job.conflicting_codes == ["X1"]
    assert "already stored for another file" in job.error
    assert [(r.code, r.file_name) for r in doc_client.records] == [("X1", "a.csv")]


@pytest.mark.asyncio
async def test_concurrent_files_with_the_same_code_store_it_once(service, doc_client, rag_client):
    first = await service.start_ingest(make_csv(rows(["X1", "A1"])), "a.csv")
    second = await service.start_ingest(make_csv(rows(["X1", "B1"])), "b.csv")
    await asyncio.gather(service.wait_for_job(first.id), service.wait_for_job(second.id))

    assert [r.code for r in doc_client.records].count("X1") == 1
    owner = next(r.file_name for r in doc_client.records if r.code == "X1")
    assert rag_client.vectors["default"]["X1"].metadata["fileName"] == owner
    assert first.conflicting_codes + second.conflicting_codes == ["X1"]


@pytest.mark.asyncio
async def test_file_locks_are_released_after_use(service):
    await ingest(service, make_csv(rows(TEN)))
    await service.delete_file("products.csv", "default")

    assert service._key_locks == {}
    assert service._key_lock_users == {}


@pytest.mark.asyncio
async def test_file_lock_survives_while_a_job_waits(service):
    first = await service.start_ingest(make_csv(rows(TEN)), "products.csv")
    second = await service.start_ingest(make_csv(rows(["N1"])), "products.csv")
    await asyncio.sleep(0)

    assert service._key_lock_users[("products.csv", "default")] == 2
    await asyncio.gather(service.wait_for_job(first.id), service.wait_for_job(second.id))
    assert service._key_locks == {}
