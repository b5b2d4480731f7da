"""
Progress scraping for yt-dlp's diagnostic output.

Everything here is pure and total: bad input yields None, never an exception.

Overall job progress is split into phases:
  - downloading: 10..70   (download percentage p scaled to min(70, p * 0.7))
  - converting:  80       (download hit 100% or a post-processor started)
  - ready:       100      (set by the orchestrator, never by a log line)
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from app.models.job import JobStatus

DOWNLOAD_TAG = "[download]"

# yt-dlp post-processors that run after the download phase
POSTPROCESS_TAGS = (
    "[ExtractAudio]",
    "[Merger]",
    "[VideoConvertor]",
    "[VideoRemuxer]",
    "[FixupM3u8]",
    "[FixupM4a]",
    "[FixupStretched]",
    "[FixupDuplicateMoov]",
)

DOWNLOAD_CEILING = 70
DOWNLOAD_SCALE = 0.7
CONVERTING_PROGRESS = 80

_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")


@dataclass(frozen=True)
class ProgressUpdate:
    status: JobStatus
    progress: int


def parse_percentage(line: str) -> float | None:
    """First ``NN%`` / ``NN.N%`` token in ``line``, clamped to [0, 100]."""
    if not isinstance(line, str):
        return None
    m = _PERCENT_RE.search(line)
    if not m:
        return None
    try:
        value = float(m.group(1))
    except ValueError:
        return None
    return max(0.0, min(100.0, value))


def scale_download(pct: float) -> int:
    return int(min(DOWNLOAD_CEILING, pct * DOWNLOAD_SCALE))


def interpret_line(line: str) -> ProgressUpdate | None:
    if not isinstance(line, str):
        return None
    text = line.strip()

    if text.startswith(POSTPROCESS_TAGS):
        return ProgressUpdate(JobStatus.CONVERTING, CONVERTING_PROGRESS)

    if DOWNLOAD_TAG not in text:
        return None

    pct = parse_percentage(text)
    if pct is None:
        return None
    if pct >= 100:
        return ProgressUpdate(JobStatus.CONVERTING, CONVERTING_PROGRESS)
    return ProgressUpdate(JobStatus.DOWNLOADING, scale_download(pct))
