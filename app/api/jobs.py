from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask

from app.core import errors
from app.models.job import Job
from app.services.jobs import JobService, status_message

router = APIRouter(prefix="/api", tags=["jobs"])


def get_job_service(request: Request) -> JobService:
    return request.app.state.job_service


class MetadataOut(BaseModel):
    title: str
    thumbnail: str | None = None
    duration: int | float | None = None
    uploader: str
    view_count: int | None = None


def _metadata_out(job: Job) -> MetadataOut:
    return MetadataOut(**job.metadata.to_dict())


class PrepareRequest(BaseModel):
    url: str


class PrepareResponse(BaseModel):
    ok: bool
    job_id: str
    metadata: MetadataOut
    message: str


@router.post("/prepare", response_model=PrepareResponse)
def prepare(req: PrepareRequest, svc: JobService = Depends(get_job_service)) -> PrepareResponse:
    # sync route: the metadata probe blocks a threadpool worker, not the event loop
    try:
        job = svc.prepare(req.url)
    except errors.ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except errors.MetadataFetchError as e:
        raise HTTPException(status_code=502, detail=f"Failed to prepare conversion: {e.message}")

    return PrepareResponse(
        ok=True,
        job_id=job.id,
        metadata=_metadata_out(job),
        message="Job prepared successfully",
    )


class ConvertRequest(BaseModel):
    job_id: str
    format: str
    quality: str | None = None


class ConvertResponse(BaseModel):
    ok: bool
    job_id: str
    status: str
    message: str


@router.post("/convert", response_model=ConvertResponse)
async def convert(req: ConvertRequest, svc: JobService = Depends(get_job_service)) -> ConvertResponse:
    try:
        job, started = svc.convert(req.job_id, req.format, req.quality)
    except errors.JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    except errors.UnsupportedFormat as e:
        raise HTTPException(status_code=400, detail=e.message)

    message = "Conversion started" if started else status_message(job)
    return ConvertResponse(ok=True, job_id=job.id, status=job.status.value, message=message)


class StatusResponse(BaseModel):
    ok: bool
    job_id: str
    status: str
    progress: int = Field(ge=0, le=100)
    message: str
    error: str | None
    error_code: str | None
    metadata: MetadataOut


@router.get("/status/{job_id}", response_model=StatusResponse)
def get_status(job_id: str, svc: JobService = Depends(get_job_service)) -> StatusResponse:
    try:
        job = svc.status(job_id)
    except errors.JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")

    return StatusResponse(
        ok=True,
        job_id=job.id,
        status=job.status.value,
        progress=job.progress,
        message=status_message(job),
        error=job.error,
        error_code=job.error_code,
        metadata=_metadata_out(job),
    )


@router.get("/download/{job_id}")
def download(job_id: str, svc: JobService = Depends(get_job_service)) -> FileResponse:
    try:
        path = svc.artifact_for_download(job_id)
    except errors.JobNotFound:
        raise HTTPException(status_code=404, detail="File not ready for download")
    except errors.DownloadNotReady as e:
        raise HTTPException(status_code=404, detail=e.message)

    # the background task runs once the body has been fully sent
    return FileResponse(
        path,
        media_type="application/octet-stream",
        filename=path.name,
        background=BackgroundTask(svc.delivered, job_id),
    )


class CleanupRequest(BaseModel):
    max_age_sec: float | None = Field(default=None, ge=0)


class CleanupResponse(BaseModel):
    ok: bool
    removed: int
    message: str


@router.post("/cleanup", response_model=CleanupResponse)
def cleanup(req: CleanupRequest | None = None, svc: JobService = Depends(get_job_service)) -> CleanupResponse:
    max_age = req.max_age_sec if req is not None else None
    removed = svc.sweep(max_age)
    return CleanupResponse(ok=True, removed=removed, message=f"Cleaned up {removed} old jobs")


class HealthResponse(BaseModel):
    status: str
    jobs: int
    active_jobs: int
    uptime: float


@router.get("/health", response_model=HealthResponse)
def health(svc: JobService = Depends(get_job_service)) -> HealthResponse:
    return HealthResponse(**svc.health())
