from typing import Any

from shared.logging.LogBuffer import LogEntry
from shared.models.base import CamelModel


class UploadResponse(CamelModel):
    job_id: str
    status: str


class QuerySource(CamelModel):
    file_name: str
    code: str
    context: str
    score: float


class QueryResponse(CamelModel):
    query: str
    answer: str | None = None
    sources: list[QuerySource] = []
    context: list[dict[str, Any]] | None = None


class LogsResponse(CamelModel):
    logs: list[LogEntry]
    count: int
    oldest_timestamp: int | None = None
    newest_timestamp: int | None = None
