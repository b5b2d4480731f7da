from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from app.core.errors import FileSystemError
from app.models.job import utcnow
from app.services.registry import JobRegistry

logger = logging.getLogger(__name__)


def remove_artifact(path: Path | None) -> bool:
    """
    Delete an artifact file. Missing is fine (returns False).
    Anything else the OS complains about becomes FileSystemError.
    """
    if path is None:
        return False
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise FileSystemError(f"Could not remove {path}: {e}") from e


class DeletionQueue:
    """
    Scheduled-work queue for deferred deletions.

    A heap of (due, seq, job_id) drained by a single asyncio task. stop(flush=True)
    runs whatever is still pending right away, so a shutdown never leaves delivered
    artifacts behind.
    """

    def __init__(self, action: Callable[[str], object]) -> None:
        self._action = action
        self._heap: list[tuple[float, int, str]] = []
        self._seq = itertools.count()
        self._wakeup: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._wakeup = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._drain(), name="deletion-queue")

    async def stop(self, flush: bool = True) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if flush:
            while self._heap:
                _, _, job_id = heapq.heappop(self._heap)
                self._run(job_id)
        else:
            self._heap.clear()

    async def schedule(self, job_id: str, delay: float) -> None:
        due = asyncio.get_running_loop().time() + max(0.0, delay)
        heapq.heappush(self._heap, (due, next(self._seq), job_id))
        if self._wakeup is not None:
            self._wakeup.set()

    async def _drain(self) -> None:
        assert self._wakeup is not None
        loop = asyncio.get_running_loop()
        while True:
            if not self._heap:
                await self._wakeup.wait()
                self._wakeup.clear()
                continue

            wait = self._heap[0][0] - loop.time()
            if wait > 0:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=wait)
                except asyncio.TimeoutError:
                    pass
                self._wakeup.clear()
                continue

            _, _, job_id = heapq.heappop(self._heap)
            self._run(job_id)

    def _run(self, job_id: str) -> None:
        try:
            self._action(job_id)
        except Exception:
            logger.exception("deferred deletion failed for job %s", job_id)


class RetentionManager:
    """
    Decides when a job and its artifact go away:

    - sweep(): age-based, over the whole registry. Backstop for any missed cleanup.
    - schedule_deletion(): after a download, with a grace period for client retries.

    Both are idempotent and treat an already-missing file as success.
    """

    def __init__(self, registry: JobRegistry, *, grace_sec: float = 5.0) -> None:
        self._registry = registry
        self._grace_sec = grace_sec
        self._queue = DeletionQueue(self.discard)

    @property
    def pending_deletions(self) -> int:
        return len(self._queue)

    async def start(self) -> None:
        self._queue.start()

    async def stop(self, flush: bool = True) -> None:
        await self._queue.stop(flush=flush)

    def discard(self, job_id: str) -> bool:
        job = self._registry.delete(job_id)
        if job is None:
            return False
        try:
            remove_artifact(job.output_path)
        except FileSystemError as e:
            logger.warning("job %s removed but its artifact was not: %s", job_id, e)
        logger.info("Cleaned up job %s and file %s", job_id, job.output_path)
        return True

    def sweep(self, max_age: timedelta | float, now: datetime | None = None) -> int:
        if not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=max_age)
        cutoff = (now or utcnow()) - max_age

        removed = 0
        for job in self._registry.snapshot():
            if job.created_at >= cutoff:
                continue
            try:
                if self.discard(job.id):
                    removed += 1
            except Exception:
                logger.exception("sweep could not remove job %s", job.id)
        if removed:
            logger.info("Cleaned up %d old jobs", removed)
        return removed

    async def schedule_deletion(self, job_id: str, delay: float | None = None) -> None:
        delay = self._grace_sec if delay is None else delay
        logger.info("job %s delivered; deleting in %.1fs", job_id, delay)
        await self._queue.schedule(job_id, delay)

    async def run_periodic_sweeps(self, interval: float, max_age: timedelta | float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep(max_age)
