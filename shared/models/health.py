"""Pydantic models for the health audit and repair paths."""

from pydantic import Field

from shared.models.base import CamelModel


class FileAudit(CamelModel):
    """Document vs. vector counts for one (namespace, fileName).

    delta > 0 means dangling documents, delta < 0 means surplus vectors.
    truncated is set when the vector count hit the audit query's top-K,
    so the real count may be higher.
    """

    namespace: str
    file_name: str
    document_count: int = 0
    vector_count: int = 0
    delta: int = 0
    truncated: bool = False
    error: str | None = None


class AuditReport(CamelModel):
    """Result of one audit pass over both stores."""

    files: list[FileAudit] = []
    total_documents: int = 0
    total_vectors: int = 0
    total_orphans: int = 0
    total_dangling: int = 0
    orphan_ids: dict[str, list[str]] = {}
    index_dimension: int | None = None
    healthy: bool = True

    def per_file(self) -> dict[tuple[str, str], FileAudit]:
        return {(f.namespace, f.file_name): f for f in self.files}


class RepairTarget(CamelModel):
    """A record that must exist in both stores after repair."""

    code: str = Field(min_length=1)
    file_name: str
    metadata_small: str = ""
    source: str | None = None


class RepairResult(CamelModel):
    """Per-outcome counts of a repair run."""

    total: int = 0
    vectors_created: int = 0
    metadata_updated: int = 0
    already_healthy: int = 0
    documents_upserted: int = 0
    dimension_mismatches: int = 0
    failed: int = 0
    skipped_batches: int = 0
    failed_codes: list[str] = []
