"""
Conversion orchestration: one asyncio task per job supervising one yt-dlp process.

The task owns the subprocess, reads its merged stdout/stderr line by line while it runs,
turns recognised lines into registry updates, and writes exactly one terminal state:
ready, or error (non-zero exit, timeout, missing output, cancellation).
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import deque
from pathlib import Path
from typing import Iterable

from app.core.config import Settings
from app.core.errors import (
    ConversionError,
    ConversionTimeout,
    JobNotFound,
    OutputMissing,
    UnsupportedFormat,
)
from app.models.job import FORMAT_ALIASES, Job, JobStatus, OutputFormat, utcnow
from app.services.progress import ProgressUpdate, interpret_line
from app.services.registry import JobRegistry
from app.services.youtube import sanitize_filename

logger = logging.getLogger(__name__)

QUALITY_CEILINGS = (360, 720, 1080)
INITIAL_DOWNLOAD_PROGRESS = 10
DIAGNOSTIC_TAIL = 20
TITLE_MAX_LEN = 80

# per-line read limit; longer lines are dropped as unrecognised
STREAM_LIMIT = 1024 * 1024

# yt-dlp may keep the source container instead of the one we asked for
FALLBACK_EXTENSIONS = (".mp3", ".mp4", ".webm", ".m4a")

_QUALITY_RE = re.compile(r"^\s*(\d+)\s*p?\s*$", re.IGNORECASE)


# -----------------------------
# Request normalization
# -----------------------------
def resolve_format(value: str | OutputFormat | None) -> OutputFormat:
    if isinstance(value, OutputFormat):
        return value
    fmt = FORMAT_ALIASES.get(str(value or "").strip().lower())
    if fmt is None:
        raise UnsupportedFormat(f"Invalid format '{value}'. Use audio or video")
    return fmt


def height_ceiling(quality: str | int | None) -> int:
    """'1080p' / '720' / 360 -> height; anything unrecognised gets the lowest ceiling."""
    m = _QUALITY_RE.match(str(quality if quality is not None else ""))
    if m and int(m.group(1)) in QUALITY_CEILINGS:
        return int(m.group(1))
    return QUALITY_CEILINGS[0]


def requested_extension(fmt: OutputFormat, *, cfg: Settings) -> str:
    return f".{cfg.audio_format}" if fmt is OutputFormat.AUDIO else ".mp4"


# -----------------------------
# Command + artifact paths
# -----------------------------
def build_output_base(
    title: str, work_dir: Path, *, now_ms: int | None = None, tag: str | None = None
) -> Path:
    """
    Artifact path without extension; yt-dlp appends the one it actually produced.
    Only the title is truncated, so the timestamp (and ``tag``) always survive.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    name = f"{sanitize_filename(title, TITLE_MAX_LEN) or 'video'}_{now_ms}"
    if tag:
        name = f"{name}_{tag}"
    return work_dir / name


def build_conversion_command(
    source_url: str,
    fmt: OutputFormat,
    quality: str | int | None,
    output_base: Path,
    *,
    cfg: Settings,
) -> list[str]:
    cmd = [*cfg.ytdlp_cmd, "--no-playlist", "--newline"]

    if fmt is OutputFormat.AUDIO:
        cmd.extend(
            [
                "--extract-audio",
                "--audio-format",
                cfg.audio_format,
                "--audio-quality",
                cfg.audio_quality,
            ]
        )
    else:
        cmd.extend(
            [
                "--format",
                f"best[height<={height_ceiling(quality)}]",
                "--merge-output-format",
                "mp4",
            ]
        )

    cmd.extend(["--output", f"{output_base}.%(ext)s"])

    if cfg.cookies_file:
        cmd.extend(["--cookies", cfg.cookies_file])
    if cfg.proxy_url:
        cmd.extend(["--proxy", cfg.proxy_url])

    cmd.append(source_url)
    return cmd


def artifact_candidates(output_base: Path, requested_ext: str) -> list[Path]:
    seen: set[str] = set()
    out: list[Path] = []
    for ext in (requested_ext, *FALLBACK_EXTENSIONS):
        if ext in seen:
            continue
        seen.add(ext)
        out.append(output_base.with_name(output_base.name + ext))
    return out


def resolve_artifact(output_base: Path, requested_ext: str) -> Path | None:
    for candidate in artifact_candidates(output_base, requested_ext):
        if candidate.is_file():
            return candidate
    return None


def error_detail(lines: Iterable[str], returncode: int | None) -> str:
    lines = list(lines)
    errors = [ln for ln in lines if ln.startswith("ERROR:")]
    text = "\n".join(errors or lines).strip()
    return text or f"yt-dlp exited with code {returncode}"


# -----------------------------
# Registry mutations
# -----------------------------
def _advance(update: ProgressUpdate):
    def mutate(job: Job) -> None:
        if job.is_terminal():
            return
        job.progress = max(job.progress, update.progress)
        if update.status.rank > job.status.rank:
            job.status = update.status

    return mutate


def _mark_ready(path: Path):
    def mutate(job: Job) -> None:
        if job.is_terminal():
            return
        job.status = JobStatus.READY
        job.progress = 100
        job.output_path = path
        job.completed_at = utcnow()

    return mutate


def _mark_error(exc: ConversionError):
    def mutate(job: Job) -> None:
        if job.is_terminal():
            return
        # progress stays where it was
        job.status = JobStatus.ERROR
        job.error = exc.message
        job.error_code = exc.code

    return mutate


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


class ConversionOrchestrator:
    """
    Starts and supervises conversions. The number of concurrent processes is not capped;
    admission control belongs in front of this class.
    """

    def __init__(self, registry: JobRegistry, cfg: Settings) -> None:
        self._registry = registry
        self._cfg = cfg
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    def start(
        self, job_id: str, fmt: str | OutputFormat, quality: str | int | None = None
    ) -> tuple[Job, bool]:
        """
        Claim the job (queued -> downloading) and schedule its supervision task.
        Must be called from a running event loop. Returns the job and whether this call
        started it; a job that already left queued is returned as-is with False, so a
        job never gets a second orchestrator.
        """
        fmt = resolve_format(fmt)
        if fmt is OutputFormat.VIDEO:
            quality = str(quality or self._cfg.default_quality)
        else:
            quality = None

        claimed = False

        def claim(job: Job) -> None:
            nonlocal claimed
            if job.status is not JobStatus.QUEUED:
                return
            job.status = JobStatus.DOWNLOADING
            job.progress = max(job.progress, INITIAL_DOWNLOAD_PROGRESS)
            job.format = fmt
            job.quality = quality
            claimed = True

        job = self._registry.update(job_id, claim)
        if not claimed:
            logger.info("job %s is already %s; not starting another conversion", job_id, job.status.value)
            return job, False

        task = asyncio.get_running_loop().create_task(self.run(job_id, fmt, quality), name=f"convert-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._tasks.pop(jid, None))
        return job, True

    async def join(self, job_id: str | None = None) -> None:
        """Wait for one (or every) running conversion to finish."""
        if job_id is not None:
            tasks = [self._tasks[job_id]] if job_id in self._tasks else []
        else:
            tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run(self, job_id: str, fmt: OutputFormat, quality: str | None) -> None:
        try:
            await self._run(job_id, fmt, quality)
        except Exception as e:
            logger.exception("conversion task for job %s crashed", job_id)
            self._fail(job_id, ConversionError(f"Internal error: {e}"))

    async def _run(self, job_id: str, fmt: OutputFormat, quality: str | None) -> None:
        try:
            job = self._registry.update(
                job_id, _advance(ProgressUpdate(JobStatus.DOWNLOADING, INITIAL_DOWNLOAD_PROGRESS))
            )
        except JobNotFound:
            logger.warning("job %s vanished before conversion started", job_id)
            return

        self._cfg.work_dir.mkdir(parents=True, exist_ok=True)
        output_base = build_output_base(job.metadata.title, self._cfg.work_dir, tag=job_id[:8])
        cmd = build_conversion_command(job.source_url, fmt, quality, output_base, cfg=self._cfg)
        logger.info("Starting conversion for job %s: %s", job_id, " ".join(cmd))

        diagnostics: deque[str] = deque(maxlen=DIAGNOSTIC_TAIL)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            self._fail(job_id, ConversionError(f"Could not start yt-dlp: {e}"))
            return

        timeout = self._cfg.conversion_timeout_sec
        try:
            returncode = await asyncio.wait_for(self._consume(job_id, proc, diagnostics), timeout=timeout)
        except asyncio.TimeoutError:
            await _terminate(proc)
            self._fail(job_id, ConversionTimeout(f"Conversion timeout after {timeout:g}s"))
            return
        except asyncio.CancelledError:
            await _terminate(proc)
            self._fail(job_id, ConversionError("Conversion cancelled"))
            raise
        finally:
            # no-op once the process has exited and been reaped
            await _terminate(proc)

        if returncode != 0:
            self._fail(job_id, ConversionError(error_detail(diagnostics, returncode)))
            return

        artifact = resolve_artifact(output_base, requested_extension(fmt, cfg=self._cfg))
        if artifact is None:
            self._fail(job_id, OutputMissing("Output file not generated"))
            return

        self._complete(job_id, artifact)

    async def _consume(self, job_id: str, proc: asyncio.subprocess.Process, diagnostics: deque[str]) -> int:
        assert proc.stdout is not None
        while True:
            try:
                raw = await proc.stdout.readline()
            except ValueError:
                # over STREAM_LIMIT; the reader has already discarded the chunk
                logger.debug("job %s: skipped an oversized output line", job_id)
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            diagnostics.append(line)
            update = interpret_line(line)
            if update is None:
                continue
            try:
                self._registry.update(job_id, _advance(update))
            except JobNotFound:
                # swept mid-conversion; keep draining so the process can exit
                pass
        return await proc.wait()

    def _complete(self, job_id: str, artifact: Path) -> None:
        try:
            job = self._registry.update(job_id, _mark_ready(artifact))
        except JobNotFound:
            logger.info("job %s was removed during conversion; discarding %s", job_id, artifact.name)
            artifact.unlink(missing_ok=True)
            return
        if job.output_path == artifact:
            logger.info("Conversion completed for job %s: %s", job_id, artifact)

    def _fail(self, job_id: str, exc: ConversionError) -> None:
        logger.error("Conversion failed for job %s (%s): %s", job_id, exc.code, exc.message)
        try:
            self._registry.update(job_id, _mark_error(exc))
        except JobNotFound:
            pass
