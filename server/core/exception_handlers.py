from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from shared.errors import BackendRequestError, EmbeddingFailure, JobNotFound, ParseError, RateLimited, StorageWriteFailure


def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": str(exc)})


async def _job_not_found(request: Request, exc: JobNotFound) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, "Not Found", exc)


async def _bad_request(request: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, "Validation Error", exc)


async def _rate_limited(request: Request, exc: RateLimited) -> JSONResponse:
    return _error(status.HTTP_429_TOO_MANY_REQUESTS, "Rate Limited", exc)


async def _upstream_failure(request: Request, exc: Exception) -> JSONResponse:
    request.app.state.logging.error("Upstream failure on %s %s: %s", request.method, request.url.path, exc)
    return _error(status.HTTP_502_BAD_GATEWAY, "Upstream Error", exc)


def register_exception_handlers(app: FastAPI) -> None:
    """Map the shared error taxonomy to HTTP status codes.

    Lookup follows the exception's MRO, so RateLimited wins over
    EmbeddingFailure and ConfigurationError falls back to ValueError.
    """
    app.add_exception_handler(JobNotFound, _job_not_found)
    app.add_exception_handler(ParseError, _bad_request)
    app.add_exception_handler(ValueError, _bad_request)
    app.add_exception_handler(RateLimited, _rate_limited)
    app.add_exception_handler(EmbeddingFailure, _upstream_failure)
    app.add_exception_handler(StorageWriteFailure, _upstream_failure)
    app.add_exception_handler(BackendRequestError, _upstream_failure)
