"""Tests for the repair engine: vector re-creation, metadata patching and the confirmation gate."""

import pytest

from fakes import fake_vector, make_csv
from services.db_health.HealthAuditor import HealthAuditor
from services.db_health.RepairService import RepairService
from shared.clients.doc.models.Record import Record
from shared.clients.rag.models.VectorEntry import VectorEntry
from shared.models.health import RepairTarget


@pytest.fixture
def service(helper_config, doc_client, rag_client, embed_client):
    return RepairService(helper_config, doc_client, rag_client, embed_client)


def target(code, file_name="products.csv"):
    return RepairTarget(code=code, file_name=file_name, metadata_small=f"text {code}")


@pytest.mark.asyncio
async def test_orphan_repair_round_trip(helper_config, service, doc_client, rag_client):
    rag_client.add(VectorEntry(id="LOST", values=fake_vector("LOST", 4), metadata={"code": "LOST"}))
    auditor = HealthAuditor(helper_config, doc_client, rag_client, dimension=4)
    assert (await auditor.audit()).total_orphans == 1

    result = await service.repair([target("LOST")], auto=True)

    assert (result.metadata_updated, result.vectors_created, result.documents_upserted) == (1, 0, 1)
    report = await auditor.audit()
    assert report.total_orphans == 0
    assert report.healthy is True
    assert rag_client.vectors["default"]["LOST"].metadata["fileName"] == "products.csv"


@pytest.mark.asyncio
async def test_missing_vector_is_created(service, doc_client, rag_client, embed_client):
    doc_client.records.append(Record(code="A", file_name="products.csv", metadata_small="text A"))

    result = await service.repair([target("A")], auto=True)

    assert result.vectors_created == 1
    assert rag_client.vectors["default"]["A"].values == fake_vector("A\ntext A", 4)
    assert len(doc_client.records) == 1


@pytest.mark.asyncio
async def test_healthy_target_only_upserts_document(service, doc_client, rag_client, embed_client):
    rag_client.add(VectorEntry.from_record("A", "products.csv", "text A", "default", fake_vector("A", 4)))

    result = await service.repair([target("A")], auto=True)

    assert result.already_healthy == 1
    assert embed_client.calls == []
    assert [r.code for r in doc_client.records] == ["A"]


@pytest.mark.asyncio
async def test_dimension_mismatch_is_skipped(service, rag_client, doc_client):
    rag_client.add(VectorEntry(id="BAD", values=[0.1, 0.2], metadata={"code": "BAD"}))

    result = await service.repair([target("BAD"), target("OK")], auto=True)

    assert result.dimension_mismatches == 1
    assert result.failed_codes == ["BAD"]
    assert result.vectors_created == 1
    assert [r.code for r in doc_client.records] == ["OK"]


@pytest.mark.asyncio
async def test_embedding_failure_is_counted(service, embed_client):
    embed_client.fail_codes = {"A"}
    result = await service.repair([target("A"), target("B")], auto=True)
    assert (result.failed, result.vectors_created) == (1, 1)
    assert result.failed_codes == ["A"]


@pytest.mark.asyncio
async def test_unconfirmed_batches_are_not_mutated(helper_config, doc_client, rag_client, embed_client, monkeypatch):
    monkeypatch.setenv("REPAIR_BATCH_SIZE", "2")
    service = RepairService(helper_config, doc_client, rag_client, embed_client)
    asked = []

    async def confirm(batch):
        asked.append([t.code for t in batch])
        return len(asked) == 2

    result = await service.repair([target(c) for c in "ABCDE"], confirm=confirm)

    assert asked == [["A", "B"], ["C", "D"], ["E"]]
    assert result.skipped_batches == 2
    assert sorted(rag_client.vectors["default"]) == ["C", "D"]
    assert sorted(r.code for r in doc_client.records) == ["C", "D"]


@pytest.mark.asyncio
async def test_without_confirm_or_auto_nothing_changes(service, rag_client, doc_client):
    result = await service.repair([target("A")])
    assert result.skipped_batches == 1
    assert doc_client.records == []
    assert rag_client.upsert_calls == 0


def test_load_targets_from_csv(service, tmp_path):
    path = tmp_path / "products.csv"
    path.write_bytes(make_csv([("A", "a"), ("", "skipped"), ("B", "b")]))
    targets = service.load_targets_from_csv(str(path))
    assert [(t.code, t.file_name, t.metadata_small) for t in targets] == [("A", "products.csv", "a"), ("B", "products.csv", "b")]


def test_load_targets_from_log(service, tmp_path):
    path = tmp_path / "repair.log"
    path.write_text(
        '=== Extra MongoDB Documents for p.csv ===\n\n{"code": "A", "metadata_small": "a"}\n\n{"metadata_small": "no code"}\n',
        encoding="utf-8",
    )
    targets = service.load_targets_from_log(str(path))
    assert [(t.code, t.file_name) for t in targets] == [("A", "p.csv")]
