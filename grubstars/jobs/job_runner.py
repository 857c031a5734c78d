"""Bounded background execution of indexing runs with pollable status."""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

DEFAULT_MAX_WORKERS = 3


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    id: str
    status: str = PENDING
    result: Any = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.status in (PENDING, RUNNING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class JobRunner:
    """Runs callables on a fixed pool of worker threads.

    ``enqueue`` returns at once; extra jobs wait in the executor's queue until
    a worker frees up. Jobs are kept in memory for the life of the runner.
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="index-job")
        self._jobs: Dict[str, Job] = {}
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._closed = False

    def enqueue(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> str:
        job = Job(id=str(uuid.uuid4()))
        with self._lock:
            if self._closed:
                raise RuntimeError("job runner is shut down")
            self._jobs[job.id] = job
            self._futures[job.id] = self._executor.submit(self._run, job, fn, args, kwargs)
        logger.info("Queued job %s", job.id)
        return job.id

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def all(self) -> List[Job]:
        with self._lock:
            jobs = list(self._jobs.values())
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for job in self._jobs.values() if job.active)

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop taking work, drop queued jobs and wait up to ``timeout`` for running ones."""
        with self._lock:
            self._closed = True
            futures = dict(self._futures)

        for job_id, future in futures.items():
            if future.cancel():
                self._finish(job_id, FAILED, error="Job cancelled during shutdown")

        running = [future for future in futures.values() if not future.done()]
        _, not_done = wait(running, timeout=timeout)
        if not_done:
            logger.warning("Abandoning %d running job(s) after %.1fs shutdown wait", len(not_done), timeout)
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ---------- Internals ----------

    def _run(self, job: Job, fn: Callable[..., Any], args: tuple, kwargs: Dict[str, Any]) -> None:
        with self._lock:
            job.status = RUNNING
            job.started_at = _now()

        try:
            result = fn(*args, **kwargs)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Job %s failed: %s", job.id, exc)
            self._finish(job.id, FAILED, error=str(exc))
            return

        self._finish(job.id, COMPLETED, result=result)
        logger.info("Job %s completed", job.id)

    def _finish(self, job_id: str, status: str, result: Any = None, error: Optional[str] = None) -> None:
        with self._lock:
            job = self._jobs[job_id]
            job.status = status
            job.result = result
            job.error = error
            job.completed_at = _now()
