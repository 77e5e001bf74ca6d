"""
Uploads Router

Endpoints for spreadsheet intake, location preview and ingestion progress.
"""
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile

from src.codeleads.api.dependencies import get_current_user, get_services
from src.codeleads.api.schemas import (
    JobCreationResult,
    LocationPreview,
    PasteUploadRequest,
    PreviewRequest,
    PreviewResponse,
    SubmissionResponse,
)
from src.codeleads.ingestion.aggregator import merge_statuses
from src.codeleads.ingestion.orchestrator import SubmissionResult
from src.codeleads.models.jobs import AggregateProgress, JobStatus
from src.codeleads.services import CodeLeadsServices
from src.codeleads.storage import sanitize_filename
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/uploads", tags=["uploads"])

MAX_PROGRESS_JOBS = 200


def decode_upload(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def to_response(result: SubmissionResult) -> SubmissionResponse:
    return SubmissionResponse(
        upload_id=result.upload_id,
        total_rows=result.total_rows,
        skipped_rows=result.skipped_rows,
        job_ids=result.job_ids,
        jobs=[
            JobCreationResult(
                key=c.key, city=c.city, state=c.state, row_count=c.row_count, job_id=c.job_id, error=c.error
            )
            for c in result.creations
        ],
    )


async def _submit(services: CodeLeadsServices, background_tasks: BackgroundTasks, csv_text: str, owner_id: str,
                  filename: str, fallback_city: Optional[str], fallback_state: Optional[str],
                  fallback_county: Optional[str], process: bool) -> SubmissionResponse:
    result = await services.orchestrator.submit(
        csv_text,
        owner_id=owner_id,
        filename=sanitize_filename(filename),
        fallback_city=fallback_city or None,
        fallback_state=fallback_state or None,
        fallback_county=fallback_county or None,
    )
    if process and result.job_ids:
        background_tasks.add_task(services.orchestrator.process_jobs, result.job_ids)
    logger.info("upload_accepted", upload_id=result.upload_id, owner_id=owner_id, jobs=len(result.job_ids))
    return to_response(result)


@router.post("", response_model=SubmissionResponse, status_code=201)
async def upload_spreadsheet(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    fallback_city: Optional[str] = Form(None),
    fallback_state: Optional[str] = Form(None),
    fallback_county: Optional[str] = Form(None),
    process: bool = Form(True),
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """
    Upload a CSV of code violations.

    The file is split by location and one ingestion job is created per
    city/state group. With process=true the jobs are worked in the
    background; poll /progress with the returned job ids.

    Raises:
        HTTPException: 400 if the file is empty or yields no location group
    """
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    return await _submit(
        services, background_tasks, decode_upload(data), user_id, file.filename or "upload.csv",
        fallback_city, fallback_state, fallback_county, process,
    )


@router.post("/paste", response_model=SubmissionResponse, status_code=201)
async def upload_pasted(
    request: PasteUploadRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """Same as the file upload, for CSV text pasted into the client."""
    return await _submit(
        services, background_tasks, request.csv_text, user_id, request.filename,
        request.fallback_city, request.fallback_state, request.fallback_county, request.process,
    )


@router.post("/preview", response_model=PreviewResponse)
def preview_locations(
    request: PreviewRequest,
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """Detect the city/state groups a CSV would be split into, without creating jobs."""
    detection = services.detector.detect(request.csv_text)
    return PreviewResponse(
        total_rows=detection.total_rows,
        undetected_rows=len(detection.undetected_rows),
        city_column=detection.city_column,
        state_column=detection.state_column,
        locations=[
            LocationPreview(city=c.city, state=c.state, row_count=c.row_count)
            for c in detection.candidates
        ],
    )


@router.get("/jobs", response_model=List[JobStatus])
def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """The caller's most recent ingestion jobs, newest first."""
    return services.list_jobs(user_id, limit=limit)


@router.get("/jobs/{job_id}", response_model=JobStatus)
def get_job(
    job_id: str,
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """
    Get one ingestion job's status.

    Raises:
        HTTPException: 404 if the job is unknown or belongs to another user
    """
    job = services.get_job_status(job_id)
    if job.owner_id != user_id:
        raise HTTPException(status_code=404, detail=f"Ingestion job not found: {job_id}")
    return job


@router.get("/progress", response_model=AggregateProgress)
def get_progress(
    job_ids: List[str] = Query(...),
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """
    Merged progress over several jobs.

    Unknown ids, and jobs owned by someone else, are reported in
    missing_job_ids rather than failing the request.
    """
    if len(job_ids) > MAX_PROGRESS_JOBS:
        raise HTTPException(status_code=400, detail=f"At most {MAX_PROGRESS_JOBS} job ids per request")
    own = [job for job in services.aggregator.snapshots(job_ids) if job.owner_id == user_id]
    return merge_statuses(own, job_ids)
