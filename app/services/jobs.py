from __future__ import annotations

import logging
import shutil
import time
from datetime import timedelta
from pathlib import Path
from typing import Any

from app.core.config import Settings
from app.core.errors import DownloadNotReady, ValidationError
from app.models.job import Job, JobStatus, OutputFormat
from app.services import metadata as metadata_service
from app.services.conversion import ConversionOrchestrator
from app.services.registry import JobRegistry
from app.services.retention import RetentionManager
from app.services.youtube import is_valid_youtube_url

logger = logging.getLogger(__name__)


def status_message(job: Job) -> str:
    if job.status is JobStatus.QUEUED:
        return "Preparing conversion..."
    if job.status is JobStatus.DOWNLOADING:
        return "Downloading video..."
    if job.status is JobStatus.CONVERTING:
        target = "MP3" if job.format is OutputFormat.AUDIO else "MP4"
        return f"Converting to {target}..."
    if job.status is JobStatus.READY:
        return "Conversion complete!"
    if job.status is JobStatus.ERROR:
        return "Conversion failed"
    return "Processing..."


def clear_directory(path: Path) -> int:
    """Empty ``path`` (creating it if needed). Returns how many entries were removed."""
    path.mkdir(parents=True, exist_ok=True)
    removed = 0
    for child in path.iterdir():
        try:
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("could not remove %s: %s", child, e)
    return removed


class JobService:
    """Operations the HTTP layer calls. Holds the registry and its collaborators."""

    def __init__(self, cfg: Settings, registry: JobRegistry | None = None) -> None:
        self.cfg = cfg
        self.registry = registry or JobRegistry()
        self.orchestrator = ConversionOrchestrator(self.registry, cfg)
        self.retention = RetentionManager(self.registry, grace_sec=cfg.download_grace_sec)
        self.started_at = time.monotonic()

    def prepare(self, source_url: str) -> Job:
        source_url = (source_url or "").strip()
        if not is_valid_youtube_url(source_url):
            raise ValidationError("Please provide a valid YouTube URL")

        logger.info("Preparing job for URL: %s", source_url)
        meta = metadata_service.fetch_metadata(source_url, cfg=self.cfg)
        job = self.registry.create(source_url, meta)
        logger.info("Created job %s (%s)", job.id, meta.title)
        return job

    def convert(self, job_id: str, fmt: str, quality: str | int | None = None) -> tuple[Job, bool]:
        """Returns the job and whether this call started its conversion."""
        # fail fast on unknown ids before touching the format
        self.registry.get(job_id)
        return self.orchestrator.start(job_id, fmt, quality)

    def status(self, job_id: str) -> Job:
        return self.registry.get(job_id)

    def artifact_for_download(self, job_id: str) -> Path:
        job = self.registry.get(job_id)
        if job.status is not JobStatus.READY or job.output_path is None:
            raise DownloadNotReady("File not ready for download")
        if not job.output_path.is_file():
            raise DownloadNotReady("File not found")
        return job.output_path

    async def delivered(self, job_id: str) -> None:
        await self.retention.schedule_deletion(job_id)

    def sweep(self, max_age: timedelta | float | None = None) -> int:
        if max_age is None:
            max_age = self.cfg.max_job_age_sec
        return self.retention.sweep(max_age)

    def health(self) -> dict[str, Any]:
        jobs = self.registry.snapshot()
        return {
            "status": "ok",
            "jobs": len(jobs),
            "active_jobs": sum(1 for j in jobs if not j.is_terminal()),
            "uptime": round(time.monotonic() - self.started_at, 3),
        }

    async def startup(self) -> None:
        self.started_at = time.monotonic()
        self.cfg.work_dir.mkdir(parents=True, exist_ok=True)
        if self.cfg.clear_work_dir:
            n = clear_directory(self.cfg.work_dir)
            logger.info("Cleaned work directory on startup (%d entries)", n)
        await self.retention.start()

    async def shutdown(self) -> None:
        logger.info("Shutting down gracefully...")
        await self.orchestrator.shutdown()
        await self.retention.stop(flush=True)
        if self.cfg.clear_work_dir:
            clear_directory(self.cfg.work_dir)
