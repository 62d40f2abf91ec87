from fastapi import APIRouter, HTTPException, Query, Request, status

from server.models.requests import RepairRequest
from shared.models.health import AuditReport, RepairResult

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/audit")
async def audit(request: Request, namespace: list[str] | None = Query(default=None)) -> AuditReport:
    """Compare both stores and report per-file deltas and orphan vectors.

    Args:
        request (Request): FastAPI request (provides app.state.health_auditor).
        namespace (list[str] | None): Namespaces to audit, all when omitted.

    Returns:
        AuditReport: Per-file counts, totals and the healthy flag.
    """
    return await request.app.state.health_auditor.audit(namespace)


@router.post("/repair")
async def repair(request: Request, body: RepairRequest) -> RepairResult:
    """Repair the given targets in both stores.

    There is no way to confirm batches over HTTP, so only auto mode is accepted.
    """
    if not body.auto:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Repair over HTTP requires auto=true; use the db_health_runner for interactive repair.",
        )
    return await request.app.state.repair_service.repair(body.targets, auto=True, namespace=body.namespace)
