"""
Tracks long-running discovery operations per case.

Background jobs (document extraction started from an upload) are polled by
id. The same registry doubles as the busy flag: a second request for an
operation that is still running on the same case is rejected rather than
cancelling the one in flight.
"""
import threading
import time
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
from enum import Enum

from services.errors import BusyError

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    """A tracked operation on one case."""
    id: str
    case_id: str
    kind: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0  # 0-100
    total_steps: int = 0
    completed_steps: int = 0
    message: str = ""
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def active(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.RUNNING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "case_id": self.case_id,
            "kind": self.kind,
            "status": self.status.value,
            "progress": self.progress,
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "message": self.message,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at
        }


class JobManager:
    """Thread-safe registry of case operations."""

    def __init__(self, cleanup_after_seconds: int = 3600):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()
        self._cleanup_after = cleanup_after_seconds

    def create_job(self, case_id: str, kind: str, total_steps: int = 0, job_id: Optional[str] = None) -> Job:
        """Register a new job, refusing if the same kind is already active for the case."""
        with self._lock:
            self._cleanup_old_jobs()

            active = self._find_active(case_id, kind)
            if active:
                raise BusyError(
                    f"{kind.replace('_', ' ').capitalize()} is already in progress for this case",
                    details={'job_id': active.id, 'kind': kind}
                )

            job = Job(
                id=job_id or f"{kind}_{uuid.uuid4().hex[:8]}",
                case_id=case_id,
                kind=kind,
                total_steps=total_steps,
                message="Starting..."
            )
            self._jobs[job.id] = job
            logger.info(f"Created job {job.id} ({kind}) for case {case_id}")
            return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def get_active_job(self, case_id: str, kind: str) -> Optional[Job]:
        with self._lock:
            return self._find_active(case_id, kind)

    def _find_active(self, case_id: str, kind: str) -> Optional[Job]:
        for job in self._jobs.values():
            if job.case_id == case_id and job.kind == kind and job.active:
                return job
        return None

    def update_progress(self, job_id: str, completed_steps: int, message: str = "") -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job.completed_steps = completed_steps
                job.progress = int((completed_steps / job.total_steps) * 100) if job.total_steps > 0 else 0
                job.message = message or f"Working... ({completed_steps}/{job.total_steps})"
                job.updated_at = time.time()
                logger.debug(f"Job {job_id} progress: {job.progress}% - {job.message}")

    def set_running(self, job_id: str, message: str = "") -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job.status = JobStatus.RUNNING
                job.message = message or "Running..."
                job.updated_at = time.time()

    def set_completed(self, job_id: str, result: Optional[Dict[str, Any]] = None, message: str = "") -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job.status = JobStatus.COMPLETED
                job.progress = 100
                job.result = result
                job.message = message or "Complete"
                job.updated_at = time.time()
                logger.info(f"Job {job_id} completed")

    def set_failed(self, job_id: str, error: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job.status = JobStatus.FAILED
                job.error = error
                job.message = f"Failed: {error}"
                job.updated_at = time.time()
                logger.error(f"Job {job_id} failed: {error}")

    @contextmanager
    def busy(self, case_id: str, kind: str):
        """
        Hold the busy flag for a synchronous operation.

        Raises BusyError if the same kind is already running for the case.
        """
        job = self.create_job(case_id, kind)
        self.set_running(job.id)
        try:
            yield job
        except Exception as e:
            self.set_failed(job.id, str(e))
            raise
        else:
            self.set_completed(job.id)

    def _cleanup_old_jobs(self) -> None:
        """Remove completed/failed jobs older than cleanup_after_seconds."""
        now = time.time()
        to_delete = [
            job_id for job_id, job in self._jobs.items()
            if not job.active and now - job.updated_at > self._cleanup_after
        ]
        for job_id in to_delete:
            del self._jobs[job_id]
            logger.debug(f"Cleaned up old job {job_id}")


# Global instance
job_manager = JobManager()
