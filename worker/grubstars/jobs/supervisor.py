"""Bounded background execution for indexing jobs."""

from __future__ import annotations

import enum
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 3
DEFAULT_RETENTION_SECONDS = 3600


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def finished(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class TooManyJobs(RuntimeError):
    """Raised at submission time when every worker slot is busy."""

    def __init__(self, max_workers: int) -> None:
        super().__init__(f"Maximum concurrent jobs ({max_workers}) reached. Try again later.")
        self.max_workers = max_workers


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    id: str
    kind: str
    params: Dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Any = None
    error: Optional[str] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "status": self.status.value,
            "params": dict(self.params),
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "result": self.result,
            "error": self.error,
        }


class JobRegistry:
    """Thread-safe in-memory job table. Jobs do not survive a restart."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def add(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def update(self, job_id: str, **changes: Any) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            for key, value in changes.items():
                setattr(job, key, value)
            return replace(job)

    def all(self) -> List[Job]:
        with self._lock:
            jobs = [replace(job) for job in self._jobs.values()]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for job in self._jobs.values() if not job.status.finished)

    def sweep(self, ttl_seconds: float, now: Optional[datetime] = None) -> int:
        """Drop finished jobs older than ``ttl_seconds``; ``0`` keeps everything."""
        if ttl_seconds <= 0:
            return 0
        cutoff = (now or _utcnow()) - timedelta(seconds=ttl_seconds)
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status.finished and (job.completed_at or job.created_at) < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.debug("Evicted %d finished jobs", len(expired))
        return len(expired)


class JobSupervisor:
    """Runs at most ``max_workers`` jobs at once and rejects the rest.

    Admission is decided synchronously in :meth:`submit`; a rejected job is
    never registered and never queued behind running work.
    """

    def __init__(
        self,
        registry: Optional[JobRegistry] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
    ) -> None:
        self.registry = registry or JobRegistry()
        self.max_workers = max_workers
        self.retention_seconds = retention_seconds
        self._slots = threading.BoundedSemaphore(max_workers)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="index-job")

    def submit(self, kind: str, fn: Callable[..., Any], *args: Any, **params: Any) -> Dict[str, Any]:
        self.registry.sweep(self.retention_seconds)
        if not self._slots.acquire(blocking=False):
            logger.warning("Rejecting %s job: %d jobs already running", kind, self.max_workers)
            raise TooManyJobs(self.max_workers)

        job = Job(id=uuid.uuid4().hex, kind=kind, params=dict(params))
        snapshot = job.snapshot()
        try:
            self.registry.add(job)
            future: Future = self._executor.submit(self._run, job.id, fn, args, params)
        except Exception:
            self._slots.release()
            raise
        logger.info("Queued %s job %s: %s", kind, job.id, params)
        future.add_done_callback(_log_unexpected)
        return snapshot

    def submit_area_index(self, indexer, location: str, category: Optional[str] = None) -> Dict[str, Any]:
        # Configuration problems belong to the caller, not to a failed job.
        indexer.require_configured_adapters()
        return self.submit("index_area", indexer.index_area, location=location, category=category)

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        self.registry.sweep(self.retention_seconds)
        job = self.registry.get(job_id)
        return job.snapshot() if job else None

    def list_jobs(self) -> List[Dict[str, Any]]:
        self.registry.sweep(self.retention_seconds)
        return [job.snapshot() for job in self.registry.all()]

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _run(self, job_id: str, fn: Callable[..., Any], args: tuple, params: Dict[str, Any]) -> None:
        try:
            self.registry.update(job_id, status=JobStatus.RUNNING, started_at=_utcnow())
            logger.info("Job %s started", job_id)
            try:
                result = fn(*args, **params)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Job %s failed: %s", job_id, exc)
                self.registry.update(job_id, status=JobStatus.FAILED, error=str(exc), completed_at=_utcnow())
                return
            self.registry.update(job_id, status=JobStatus.COMPLETED, result=result, completed_at=_utcnow())
            logger.info("Job %s completed", job_id)
        finally:
            self._slots.release()


def _log_unexpected(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Job runner crashed: %s", exc)
