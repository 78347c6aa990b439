from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Collection, Dict, Iterable, Optional, Tuple

from .config import job_store_backend
from .errors import JobNotFoundError
from .paths import job_dir, job_meta_path, jobs_root
from .persistence import ensure_dir, iter_meta, load_json, write_meta
from .types import ACTIVE_STATUSES, DeploymentJob, JobStatus, utc_iso

LOGGER = logging.getLogger(__name__)


class JobRepository(ABC):
    """
    Owns every job record and all of its status transitions.

    Each public operation runs under one lock, so callers never need
    check-then-write sequences. Transitions are compare-and-set:

      - in_progress / success / cancelled are only written over an active
        (pending or in_progress) status
      - fail is only written over an active status, so a second FAIL is a no-op
      - a terminal status is never replaced

    Writes return True when the record changed.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    # storage primitives, always called with the lock held

    @abstractmethod
    def _load(self, job_id: str) -> Optional[DeploymentJob]:
        raise NotImplementedError

    @abstractmethod
    def _store(self, job: DeploymentJob) -> None:
        raise NotImplementedError

    @abstractmethod
    def _iter_jobs(self) -> Iterable[DeploymentJob]:
        raise NotImplementedError

    def _require(self, job_id: str) -> DeploymentJob:
        job = self._load((job_id or "").strip())
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _transition(
        self,
        job_id: str,
        status: JobStatus,
        *,
        allowed_from: Collection[JobStatus],
        message: Optional[str] = None,
        pid: Optional[int] = None,
    ) -> bool:
        with self._lock:
            job = self._require(job_id)
            if job.status not in allowed_from:
                LOGGER.debug(
                    "job %s: ignoring %s write, status is already %s",
                    job_id,
                    status.value,
                    job.status.value,
                )
                return False

            if status is JobStatus.IN_PROGRESS and job.started_at is None:
                job.started_at = utc_iso()
            if status.is_terminal:
                job.finished_at = utc_iso()
            job.status = status
            if message is not None:
                job.message = message
            if pid is not None:
                job.pid = pid
            self._store(job)
            return True

    def try_create_if_vacant(
        self, project: str, service: str
    ) -> Tuple[bool, DeploymentJob]:
        with self._lock:
            for existing in self._iter_jobs():
                if (
                    existing.project == project
                    and existing.service == service
                    and existing.status in ACTIVE_STATUSES
                ):
                    return False, copy.copy(existing)

            job = DeploymentJob(
                id=uuid.uuid4().hex[:12],
                project=project,
                service=service,
                status=JobStatus.PENDING,
                created_at=utc_iso(),
            )
            self._store(job)
            return True, copy.copy(job)

    def get_job(self, job_id: str) -> DeploymentJob:
        with self._lock:
            return copy.copy(self._require(job_id))

    def check_job_status(self, job_id: str, status: JobStatus) -> bool:
        with self._lock:
            return self._require(job_id).status is status

    def set_in_progress(
        self, job_id: str, message: str, pid: Optional[int] = None
    ) -> bool:
        return self._transition(
            job_id,
            JobStatus.IN_PROGRESS,
            allowed_from=ACTIVE_STATUSES,
            message=message,
            pid=pid,
        )

    def set_success(self, job_id: str) -> bool:
        return self._transition(
            job_id,
            JobStatus.SUCCESS,
            allowed_from=ACTIVE_STATUSES,
            message="Deployment finished successfully.",
        )

    def set_fail(self, job_id: str, message: str) -> bool:
        return self._transition(
            job_id, JobStatus.FAIL, allowed_from=ACTIVE_STATUSES, message=message
        )

    def cancel_job(self, job_id: str) -> bool:
        return self._transition(
            job_id,
            JobStatus.CANCELLED,
            allowed_from=ACTIVE_STATUSES,
            message="Deployment cancelled.",
        )


class InMemoryJobRepository(JobRepository):
    def __init__(self) -> None:
        super().__init__()
        self._jobs: Dict[str, DeploymentJob] = {}

    def _load(self, job_id: str) -> Optional[DeploymentJob]:
        job = self._jobs.get(job_id)
        return copy.copy(job) if job is not None else None

    def _store(self, job: DeploymentJob) -> None:
        self._jobs[job.id] = copy.copy(job)

    def _iter_jobs(self) -> Iterable[DeploymentJob]:
        return list(self._jobs.values())


class FileJobRepository(JobRepository):
    """
    Filesystem-backed repository.

    Layout:
      ${STATE_DIR}/jobs/<job_id>/job.json

    Records survive a restart. Jobs that were still pending or in progress
    when the previous process stopped have no thread left to finish them, so
    they are failed on startup and their (project, service) keys freed.
    Atomicity holds per process; run a single API worker against one STATE_DIR.
    """

    INTERRUPTED_MESSAGE = "Interrupted by service restart."

    def __init__(self) -> None:
        super().__init__()
        ensure_dir(jobs_root())
        self._fail_interrupted()

    def _fail_interrupted(self) -> None:
        with self._lock:
            orphaned = [j.id for j in self._iter_jobs() if j.status in ACTIVE_STATUSES]
            for job_id in orphaned:
                LOGGER.warning("job %s was interrupted by a restart, failing it", job_id)
                self.set_fail(job_id, self.INTERRUPTED_MESSAGE)

    def _load(self, job_id: str) -> Optional[DeploymentJob]:
        if not job_id.isalnum():
            return None
        meta = load_json(job_meta_path(job_id))
        if not meta:
            return None
        return DeploymentJob.from_dict(meta)

    def _store(self, job: DeploymentJob) -> None:
        ensure_dir(job_dir(job.id))
        write_meta(job_meta_path(job.id), job.to_dict())

    def _iter_jobs(self) -> Iterable[DeploymentJob]:
        for meta in iter_meta(jobs_root()):
            try:
                yield DeploymentJob.from_dict(meta)
            except (KeyError, ValueError) as exc:
                LOGGER.warning("skipping malformed job record: %s", exc)


def build_repository() -> JobRepository:
    backend = job_store_backend()
    if backend == "memory":
        return InMemoryJobRepository()
    if backend == "file":
        return FileJobRepository()
    raise ValueError("DEPLOY_JOB_STORE must be 'memory' or 'file'")
