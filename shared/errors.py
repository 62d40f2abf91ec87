"""Error taxonomy shared by clients, services and the API layer.

Provider-specific error shapes never leave the client adapters: everything a
service sees is one of the classes below.
"""


class CsvRagError(Exception):
    """Base class for all errors raised by csv_rag_sync."""


class ConfigurationError(CsvRagError, ValueError):
    """A required environment value is missing or invalid. Fatal at startup."""


class ParseError(CsvRagError):
    """A CSV row (or the whole header) could not be turned into a Record.

    Attributes:
        row_number: 1-based line number in the source file, None for header errors.
        reason:     Human-readable description of the problem.
    """

    def __init__(self, reason: str, row_number: int | None = None) -> None:
        self.reason = reason
        self.row_number = row_number
        where = f"row {row_number}: " if row_number is not None else ""
        super().__init__(f"{where}{reason}")


class EmbeddingFailure(CsvRagError):
    """An embedding (or chat) provider call failed.

    Attributes:
        engine:      Engine name of the client that raised (e.g. "openai").
        status_code: HTTP status code if a response was received.
        retriable:   Whether the caller may retry the same request.
    """

    retriable: bool = False

    def __init__(self, message: str, engine: str = "", status_code: int | None = None, retriable: bool | None = None) -> None:
        self.engine = engine
        self.status_code = status_code
        if retriable is not None:
            self.retriable = retriable
        super().__init__(message)


class ProviderError(EmbeddingFailure):
    """Network failure or 5xx from the provider."""

    retriable = True


class RateLimited(EmbeddingFailure):
    """HTTP 429 or a provider resource-exhaustion signal."""

    retriable = True


class InvalidResponse(EmbeddingFailure):
    """Malformed or empty provider payload."""

    retriable = False


class StorageWriteFailure(CsvRagError):
    """A write or delete against one of the two stores failed.

    Attributes:
        store:    "document" or "vector", the side that failed.
        codes:    Record codes affected by the failed call.
        cause:    The underlying exception.
        rejected: Codes of the same batch refused earlier because another file owns them.
    """

    def __init__(self, store: str, codes: list[str], cause: Exception, engine: str = "", rejected: list[str] | None = None) -> None:
        self.store = store
        self.codes = list(codes)
        self.rejected = list(rejected or [])
        self.cause = cause
        self.engine = engine
        label = f"{store} store ({engine})" if engine else f"{store} store"
        super().__init__(f"{label} write failed for {len(self.codes)} record(s): {cause}")


class DimensionMismatch(CsvRagError):
    """A vector does not have the configured embedding dimension."""

    def __init__(self, code: str, expected: int, actual: int) -> None:
        self.code = code
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector for code '{code}' has dimension {actual}, expected {expected}.")


class JobNotFound(CsvRagError):
    """No ingestion job with the given id is known to this process."""


class BackendRequestError(CsvRagError):
    """A document or vector store request returned a non-2xx status.

    Attributes:
        status_code: HTTP status code of the response.
        url:         The requested URL.
    """

    def __init__(self, message: str, status_code: int | None = None, url: str = "") -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class DuplicateCodes(CsvRagError):
    """An insert hit the unique (code, namespace) key of the document store.

    Attributes:
        codes:     Codes that already existed and were not inserted.
        inserted:  Number of documents of the same call that were inserted.
        namespace: Namespace of the colliding codes.
    """

    def __init__(self, codes: list[str], inserted: int = 0, namespace: str = "") -> None:
        self.codes = list(codes)
        self.inserted = inserted
        self.namespace = namespace
        super().__init__(f"{len(self.codes)} code(s) already exist in namespace '{namespace}': {', '.join(self.codes[:10])}")
