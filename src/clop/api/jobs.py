"""
FastAPI router for job endpoints.

Provides REST API for submitting, cancelling, removing and restoring
optimisation jobs.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel, Field

from clop.jobs import (
    InvalidSourceError,
    JobManager,
    JobNotFoundError,
    JobNotRemovableError,
    JobRecord,
    JobState,
    NothingToRestoreError,
    OptimisationOptions,
    source_from_bytes,
)
from clop.utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def get_job_manager(request: Request) -> JobManager:
    """Job manager attached to the app by ``create_app``."""
    return request.app.state.job_manager


class JobResponse(BaseModel):
    """Response model for job data."""
    id: str
    state: str
    source_path: str
    source_kind: str
    media_type: str
    is_original: bool
    aggressive: Optional[bool] = None
    downscale_factor: float = 1.0
    original_size: Optional[int] = None
    optimised_size: Optional[int] = None
    saved_bytes: Optional[int] = None
    error: Optional[str] = None
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class SubmitRequest(BaseModel):
    """Request model for submitting a file."""
    path: str = Field(min_length=1, description="File to optimise")
    aggressive: Optional[bool] = Field(
        default=None,
        description="Force aggressive optimisation on or off (default: per-format setting)"
    )
    downscale_factor: float = Field(default=1.0, gt=0.0, le=1.0)


class SubmitResponse(BaseModel):
    """Response model for submit requests."""
    job_id: str
    message: str


class UndoResponse(BaseModel):
    """Response model for the undo stack state."""
    can_restore_last: bool
    depth: int


class RestoreLastResponse(BaseModel):
    """Response model for restore-last; job is null when nothing was removed."""
    job: Optional[JobResponse] = None


def to_response(record: JobRecord) -> JobResponse:
    result = record.result
    return JobResponse(
        id=record.id,
        state=record.state.value,
        source_path=str(record.source.path),
        source_kind=record.source.kind.value,
        media_type=record.source.media_type.value,
        is_original=record.is_original,
        aggressive=record.options.aggressive,
        downscale_factor=record.options.downscale_factor,
        original_size=result.original_size if result else None,
        optimised_size=result.optimised_size if result else None,
        saved_bytes=result.saved_bytes if result else None,
        error=record.error,
        created_at=record.created_at.isoformat(),
        started_at=record.started_at.isoformat() if record.started_at else None,
        completed_at=record.completed_at.isoformat() if record.completed_at else None,
    )


def _get_or_404(manager: JobManager, job_id: str) -> JobRecord:
    record = manager.get(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return record


@router.get("/", response_model=List[JobResponse])
def list_jobs(
    state: Optional[JobState] = None,
    limit: int = Query(default=100, ge=1, le=100),
    manager: JobManager = Depends(get_job_manager)
):
    """
    Get active jobs, most recent first.

    Args:
        state: Only return jobs in this state
        limit: Maximum number of jobs to return (max 100)
        manager: Job manager (injected)
    """
    return [to_response(record) for record in manager.list_jobs(state)[:limit]]


@router.get("/removed", response_model=UndoResponse)
def get_undo_state(manager: JobManager = Depends(get_job_manager)):
    """Whether a removed job can be restored, for enabling an undo button."""
    return UndoResponse(
        can_restore_last=manager.can_restore_last(),
        depth=manager.store.undo_depth(),
    )


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, manager: JobManager = Depends(get_job_manager)):
    """
    Get a specific job by ID.

    Raises:
        HTTPException: If job not found
    """
    return to_response(_get_or_404(manager, job_id))


@router.post("/", response_model=SubmitResponse, status_code=202)
def submit_job(request: SubmitRequest, manager: JobManager = Depends(get_job_manager)):
    """
    Submit a file for optimisation.

    Raises:
        HTTPException: 400 if the file cannot be read
    """
    options = OptimisationOptions(
        aggressive=request.aggressive,
        downscale_factor=request.downscale_factor,
    )
    try:
        job_id = manager.submit(request.path, options)
    except InvalidSourceError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SubmitResponse(job_id=job_id, message="Job queued for optimisation.")


@router.post("/clipboard", response_model=SubmitResponse, status_code=202)
async def submit_clipboard(
    file: UploadFile = File(...),
    aggressive: Optional[bool] = Form(default=None),
    downscale_factor: float = Form(default=1.0, gt=0.0, le=1.0),
    manager: JobManager = Depends(get_job_manager)
):
    """
    Submit a clipboard payload for optimisation.

    The payload is stored in the workdir and optimised like a file.

    Raises:
        HTTPException: 400 if the payload is empty or has no format suffix
    """
    data = await file.read()
    suffix = ""
    if file.filename and "." in file.filename:
        suffix = file.filename.rsplit(".", 1)[1]
    elif file.content_type and "/" in file.content_type:
        suffix = file.content_type.split("/", 1)[1]

    options = OptimisationOptions(aggressive=aggressive, downscale_factor=downscale_factor)
    try:
        source = source_from_bytes(data, suffix, manager.settings.workdir)
        job_id = manager.submit(source, options)
    except InvalidSourceError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SubmitResponse(job_id=job_id, message="Clipboard item queued for optimisation.")


@router.post("/restore-last", response_model=RestoreLastResponse)
def restore_last(manager: JobManager = Depends(get_job_manager)):
    """Restore the most recently removed job, if any."""
    record = manager.restore_last()
    return RestoreLastResponse(job=to_response(record) if record else None)


@router.post("/{job_id}/cancel", response_model=JobResponse, status_code=202)
def cancel_job(job_id: str, manager: JobManager = Depends(get_job_manager)):
    """
    Cancel a job. Running jobs stop asynchronously; poll the job to observe it.

    Raises:
        HTTPException: If job not found
    """
    try:
        manager.cancel(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return to_response(_get_or_404(manager, job_id))


@router.post("/{job_id}/restore-original", response_model=JobResponse)
def restore_original(job_id: str, manager: JobManager = Depends(get_job_manager)):
    """
    Put the original file back in place of the optimised one.

    Raises:
        HTTPException: 404 if not found, 409 if already original,
            410 if the backup was cleaned up
    """
    try:
        record = manager.restore_original(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NothingToRestoreError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except FileNotFoundError as e:
        raise HTTPException(status_code=410, detail=str(e))
    return to_response(record)


@router.delete("/{job_id}")
def remove_job(job_id: str, manager: JobManager = Depends(get_job_manager)):
    """
    Remove a finished job. It can be brought back with restore-last.

    Raises:
        HTTPException: 404 if not found, 409 if still running
    """
    try:
        manager.remove(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except JobNotRemovableError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {"message": f"Job {job_id} removed"}
