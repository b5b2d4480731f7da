from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class JobStatus(str, Enum):
    """queued -> downloading -> converting -> ready | error (error from any non-terminal)."""

    QUEUED = "queued"
    DOWNLOADING = "downloading"
    CONVERTING = "converting"
    READY = "ready"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.READY, JobStatus.ERROR)

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.DOWNLOADING: 1,
    JobStatus.CONVERTING: 2,
    JobStatus.READY: 3,
    JobStatus.ERROR: 3,
}


class OutputFormat(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


# Legacy names accepted by the API ("mp3"/"mp4" from the old frontend).
FORMAT_ALIASES = {
    "audio": OutputFormat.AUDIO,
    "mp3": OutputFormat.AUDIO,
    "video": OutputFormat.VIDEO,
    "mp4": OutputFormat.VIDEO,
}


@dataclass(frozen=True)
class VideoMetadata:
    title: str = "Unknown Title"
    thumbnail: str | None = None
    duration: int | float | None = None  # seconds; whole values kept as int
    uploader: str = "Unknown"
    view_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    id: str
    source_url: str
    metadata: VideoMetadata
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0  # 0-100
    format: OutputFormat | None = None
    quality: str | None = None
    output_path: Path | None = None
    error: str | None = None
    error_code: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def is_terminal(self) -> bool:
        return self.status.is_terminal
