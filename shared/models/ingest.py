"""Pydantic models for CSV ingestion: parse output, pipeline counters, deletes and jobs."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import Field

from shared.clients.doc.models.Record import Record
from shared.models.base import CamelModel


class ParseResult(CamelModel):
    """Outcome of parsing one CSV file.

    Attributes:
        records:         Valid records in file order (first occurrence of each code).
        skipped_rows:    Rows dropped for a missing code or metadata_small.
        duplicate_codes: Codes that appeared more than once (later rows dropped).
        warnings:        One human-readable line per dropped row.
    """

    records: list[Record] = []
    skipped_rows: int = 0
    duplicate_codes: list[str] = []
    warnings: list[str] = []


class PipelineResult(CamelModel):
    """Counters of one embedding pipeline run.

    Attributes:
        total_processed:   Records handled, successful or not.
        successful:        Records written to both stores.
        failed:            Records that were not written to both stores.
        dangling_codes:    Codes written to the document store whose vectors were not stored.
        conflicting_codes: Codes rejected because another file of the namespace already owns them.
        vector_failure:    True when at least one chunk failed on the vector store side.
        cancelled:         True when the run stopped at a chunk boundary on request.
    """

    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    dangling_codes: list[str] = []
    conflicting_codes: list[str] = []
    vector_failure: bool = False
    cancelled: bool = False


class DeleteResult(CamelModel):
    """Counts actually confirmed by each store for a delete.

    Attributes:
        documents_deleted: Records removed from the document store.
        vectors_deleted:   Vector entries confirmed removed (only batches whose delete call succeeded).
        vector_failures:   Codes whose vector delete batch failed.
        document_error:    Error text if the document side failed, else None.
    """

    documents_deleted: int = 0
    vectors_deleted: int = 0
    vector_failures: list[str] = []
    document_error: str | None = None


class FileSummary(CamelModel):
    """One entry of a file listing."""

    file_name: str
    namespace: str
    document_count: int


class JobStatus(str, Enum):
    RECEIVED = "RECEIVED"
    CLEANING_UP = "CLEANING_UP"
    PARSING = "PARSING"
    EMBEDDING = "EMBEDDING"
    WRITING = "WRITING"
    DONE = "DONE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED, JobStatus.CANCELLED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IngestJob(CamelModel):
    """In-memory status record of one file ingestion."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    file_name: str
    namespace: str = "default"
    status: JobStatus = JobStatus.RECEIVED
    total_records: int = 0
    skipped_rows: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    dangling_codes: list[str] = []
    conflicting_codes: list[str] = []
    error: str | None = None
    rolled_back: bool = False
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    finished_at: datetime | None = None

    def set_status(self, status: JobStatus) -> None:
        self.status = status
        self.updated_at = _now()
        if status.is_terminal:
            self.finished_at = self.updated_at


class SyncError(CamelModel):
    code: str
    error: str


class SyncResult(CamelModel):
    """Outcome of copying one file's records into the mirror vector store.

    Attributes:
        total:  Records of the file found in the document store.
        synced: Records whose vector the mirror accepted.
        errors: One entry per record that was not synced.
    """

    file_name: str
    namespace: str
    total: int = 0
    synced: int = 0
    errors: list[SyncError] = []
