from fastapi import APIRouter, File, Form, Request, UploadFile, status

from server.models.requests import SyncRequest
from server.models.responses import UploadResponse
from shared.models.ingest import DeleteResult, FileSummary, IngestJob, SyncResult

router = APIRouter(prefix="/csv", tags=["csv"])


@router.post("/upload", status_code=status.HTTP_202_ACCEPTED)
async def upload_csv(
    request: Request,
    file: UploadFile = File(...),
    namespace: str = Form("default"),
) -> UploadResponse:
    """Accept a CSV file and start its ingestion in the background.

    Args:
        request (Request): FastAPI request (provides app.state.ingest_service).
        file (UploadFile): The CSV file; its name becomes the records' fileName.
        namespace (str): Target namespace.

    Returns:
        UploadResponse: The id of the started job, to poll via GET /csv/jobs/{id}.
    """
    ingest_service = request.app.state.ingest_service
    data = await file.read()
    job = await ingest_service.start_ingest(data, file.filename or "", namespace)
    return UploadResponse(job_id=job.id, status=job.status.value)


@router.get("/jobs")
async def list_jobs(request: Request) -> list[IngestJob]:
    return request.app.state.ingest_service.list_jobs()


@router.get("/jobs/{job_id}")
async def get_job(request: Request, job_id: str) -> IngestJob:
    return request.app.state.ingest_service.get_job(job_id)


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(request: Request, job_id: str) -> IngestJob:
    """Request cancellation; the job stops before its next chunk."""
    return request.app.state.ingest_service.cancel_job(job_id)


@router.get("/files")
async def list_files(request: Request, namespace: str | None = None) -> list[FileSummary]:
    return await request.app.state.ingest_service.list_files(namespace)


@router.delete("/files/{file_name}")
async def delete_file(request: Request, file_name: str, namespace: str = "default") -> DeleteResult:
    """Delete a file's records and vectors from both stores.

    Returns:
        DeleteResult: Counts confirmed by each store.
    """
    return await request.app.state.ingest_service.delete_file(file_name, namespace)


@router.post("/sync")
async def sync_file(request: Request, body: SyncRequest) -> SyncResult:
    """Copy a stored file's records into the mirror vector store (RAG_MIRROR_ENGINE).

    Returns:
        SyncResult: Records found, records synced and one error per record left out.
    """
    mirror_service = getattr(request.app.state, "mirror_service", None)
    if mirror_service is None:
        raise ValueError("No mirror vector store is configured, set RAG_MIRROR_ENGINE.")
    return await mirror_service.sync_file(body.file_name, body.namespace)
