from fastapi import APIRouter, Query, Request

from server.models.responses import LogsResponse

router = APIRouter(prefix="/logs", tags=["logs"])


@router.get("")
async def get_logs(
    request: Request,
    since: int | None = Query(default=None, description="Epoch milliseconds; defaults to the last 10 seconds."),
    timestamp: int | None = Query(default=None, include_in_schema=False),
) -> LogsResponse:
    """Return the buffered log entries newer than since."""
    log_buffer = request.app.state.log_buffer
    logs = log_buffer.get_logs(since if since is not None else timestamp)
    return LogsResponse(
        logs=logs,
        count=len(logs),
        oldest_timestamp=logs[0].timestamp if logs else None,
        newest_timestamp=logs[-1].timestamp if logs else None,
    )
