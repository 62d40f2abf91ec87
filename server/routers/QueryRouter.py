from fastapi import APIRouter, Request

from server.models.requests import QueryRequest
from server.models.responses import QueryResponse

router = APIRouter(prefix="/query", tags=["query"])


@router.post("")
async def query_records(request: Request, body: QueryRequest) -> QueryResponse:
    """Answer a question from the nearest stored records.

    Args:
        request (Request): FastAPI request (provides app.state.query_service).
        body (QueryRequest): JSON body with query, limit, namespace and onlyContext.

    Returns:
        QueryResponse: The answer (omitted with onlyContext) and its sources.
    """
    query_service = request.app.state.query_service
    return await query_service.answer(body)
