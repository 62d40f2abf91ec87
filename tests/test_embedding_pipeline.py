"""Tests for the chunked embedding pipeline."""

import asyncio

import pytest

from services.csv_ingest.DualStoreWriter import DualStoreWriter
from services.csv_ingest.EmbeddingPipeline import EmbeddingPipeline
from shared.clients.doc.models.Record import Record
from shared.errors import ConfigurationError


def records(n, file_name="f.csv"):
    return [Record(code=f"C{i:02d}", file_name=file_name, metadata_small=f"text {i}") for i in range(n)]


@pytest.fixture
def pipeline(helper_config, doc_client, rag_client, embed_client):
    writer = DualStoreWriter(helper_config, doc_client, rag_client, dimension=4)
    return EmbeddingPipeline(helper_config, embed_client, writer)


@pytest.mark.asyncio
async def test_one_failed_embedding_in_a_chunk_of_twenty(pipeline, embed_client, doc_client, rag_client):
    embed_client.fail_codes = {"C07"}
    result = await pipeline.run(records(20))

    assert (result.total_processed, result.successful, result.failed) == (20, 19, 1)
    assert len(doc_client.records) == 19
    assert len(rag_client.vectors["default"]) == 19
    assert "C07" not in rag_client.vectors["default"]


@pytest.mark.asyncio
async def test_rate_limited_record_is_retried(pipeline, embed_client):
    embed_client.rate_limit_codes = {"C01": 2}
    result = await pipeline.run(records(3))
    assert result.successful == 3
    assert embed_client.calls.count("C01\ntext 1") == 3


@pytest.mark.asyncio
async def test_rate_limit_retries_are_bounded(helper_config, doc_client, rag_client, embed_client, monkeypatch):
    monkeypatch.setenv("INGEST_RATE_LIMIT_RETRIES", "1")
    pipeline = EmbeddingPipeline(helper_config, embed_client, DualStoreWriter(helper_config, doc_client, rag_client, dimension=4))
    embed_client.rate_limit_codes = {"C00": 5}
    result = await pipeline.run(records(2))
    assert (result.successful, result.failed) == (1, 1)
    assert embed_client.calls.count("C00\ntext 0") == 2


def test_negative_retry_count_is_rejected(helper_config, doc_client, rag_client, embed_client, monkeypatch):
    monkeypatch.setenv("INGEST_RATE_LIMIT_RETRIES", "-1")
    with pytest.raises(ConfigurationError):
        EmbeddingPipeline(helper_config, embed_client, DualStoreWriter(helper_config, doc_client, rag_client, dimension=4))


@pytest.mark.asyncio
async def test_wrong_dimension_counts_as_failure(pipeline, embed_client):
    embed_client.wrong_dimension_codes = {"C02"}
    result = await pipeline.run(records(4))
    assert (result.successful, result.failed) == (3, 1)


@pytest.mark.asyncio
async def test_chunks_run_in_order_with_callback(helper_config, doc_client, rag_client, embed_client, monkeypatch):
    monkeypatch.setenv("INGEST_EMBED_BATCH_SIZE", "4")
    pipeline = EmbeddingPipeline(helper_config, embed_client, DualStoreWriter(helper_config, doc_client, rag_client, dimension=4))
    progress = []

    async def on_chunk(index, result):
        progress.append((index, result.total_processed, len(doc_client.records)))

    result = await pipeline.run(records(10), on_chunk=on_chunk)

    assert progress == [(0, 4, 4), (1, 8, 8), (2, 10, 10)]
    assert [r.code for r in doc_client.records] == [f"C{i:02d}" for i in range(10)]
    assert result.successful == 10


@pytest.mark.asyncio
async def test_vector_store_failure_leaves_dangling_codes(pipeline, rag_client, doc_client):
    rag_client.fail_upsert = True
    result = await pipeline.run(records(3))
    assert result.vector_failure is True
    assert result.dangling_codes == ["C00", "C01", "C02"]
    assert (result.successful, result.failed) == (0, 3)
    assert len(doc_client.records) == 3


@pytest.mark.asyncio
async def test_document_store_failure_fails_the_chunk(pipeline, doc_client, rag_client):
    doc_client.fail_insert = True
    result = await pipeline.run(records(3))
    assert (result.successful, result.failed) == (0, 3)
    assert result.vector_failure is False
    assert rag_client.upsert_calls == 0


@pytest.mark.asyncio
async def test_cancel_stops_before_next_chunk(helper_config, doc_client, rag_client, embed_client, monkeypatch):
    monkeypatch.setenv("INGEST_EMBED_BATCH_SIZE", "2")
    pipeline = EmbeddingPipeline(helper_config, embed_client, DualStoreWriter(helper_config, doc_client, rag_client, dimension=4))
    cancel = asyncio.Event()

    async def on_chunk(index, result):
        cancel.set()

    result = await pipeline.run(records(6), on_chunk=on_chunk, cancel_event=cancel)
    assert result.cancelled is True
    assert result.total_processed == 2
    assert len(doc_client.records) == 2
