from __future__ import annotations

import dataclasses
import threading
import uuid
from typing import Callable

from app.core.errors import JobNotFound
from app.models.job import Job, VideoMetadata


class JobRegistry:
    """
    In-memory store of jobs. The only place a Job lives.

    - One lock guards the map, one lock per entry serializes update().
    - update() applies the mutation to a private draft and swaps it in, so readers
      only ever see whole entries.
    - Every returned Job is a copy; mutating it does nothing to the registry.
    - No transition rules here: callers decide what a legal mutation is.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._entry_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def create(self, source_url: str, metadata: VideoMetadata) -> Job:
        job = Job(id=str(uuid.uuid4()), source_url=source_url, metadata=metadata)
        with self._lock:
            self._jobs[job.id] = job
            self._entry_locks[job.id] = threading.Lock()
        return dataclasses.replace(job)

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return dataclasses.replace(job)

    def update(self, job_id: str, mutation: Callable[[Job], None]) -> Job:
        with self._lock:
            entry_lock = self._entry_locks.get(job_id)
        if entry_lock is None:
            raise JobNotFound(job_id)

        with entry_lock:
            with self._lock:
                current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFound(job_id)

            draft = dataclasses.replace(current)
            mutation(draft)

            with self._lock:
                # deleted while the mutation ran
                if job_id not in self._jobs:
                    raise JobNotFound(job_id)
                self._jobs[job_id] = draft

        return dataclasses.replace(draft)

    def delete(self, job_id: str) -> Job | None:
        with self._lock:
            self._entry_locks.pop(job_id, None)
            return self._jobs.pop(job_id, None)

    def snapshot(self) -> list[Job]:
        with self._lock:
            return [dataclasses.replace(j) for j in self._jobs.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs
