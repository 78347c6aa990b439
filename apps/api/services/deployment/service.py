from __future__ import annotations

import logging
import queue
import threading
from typing import List, Optional, Sequence, Tuple

from .config import log_buffer_size, log_retention_seconds
from .log_hub import LogHub, LogLine
from .orchestrator import JobOrchestrator
from .repository import JobRepository, build_repository
from .runner import ScriptRunner
from .types import DeploymentJob, DeploymentScript

LOGGER = logging.getLogger(__name__)


class DeploymentService:
    """
    Entry point for starting and cancelling deployment jobs.

    A started job runs on its own daemon thread; callers follow its progress
    only through ``get_job`` (or the log stream), never through the start call.
    """

    def __init__(
        self,
        repository: Optional[JobRepository] = None,
        *,
        log_hub: Optional[LogHub] = None,
    ) -> None:
        self._repository = repository if repository is not None else build_repository()
        self._log_hub = log_hub if log_hub is not None else LogHub(
            buffer_size=log_buffer_size(), retention_seconds=log_retention_seconds()
        )
        self._orchestrator = JobOrchestrator(
            self._repository,
            ScriptRunner(self._repository, on_line=self._log_hub.publish),
        )

    @property
    def repository(self) -> JobRepository:
        return self._repository

    def try_start_job(
        self, project: str, service: str, scripts: Sequence[DeploymentScript]
    ) -> Tuple[bool, DeploymentJob]:
        created, job = self._repository.try_create_if_vacant(project, service)
        if not created:
            LOGGER.info(
                "Job %s for %s/%s is still running, not starting another",
                job.id,
                project,
                service,
            )
            return False, job

        t = threading.Thread(
            target=self._run_job,
            args=(job.id, list(scripts)),
            name=f"deploy-{job.id}",
            daemon=True,
        )
        t.start()
        LOGGER.info("Started job %s for %s/%s", job.id, project, service)
        return True, job

    def _run_job(self, job_id: str, scripts: List[DeploymentScript]) -> None:
        try:
            self._orchestrator.run(job_id, scripts)
        finally:
            self._log_hub.close(job_id)

    def cancel_job(self, job_id: str) -> bool:
        try:
            return self._repository.cancel_job(job_id)
        except Exception:
            LOGGER.exception("Failed to cancel job with id %s.", job_id)
            raise

    def get_job(self, job_id: str) -> DeploymentJob:
        return self._repository.get_job(job_id)

    def subscribe_logs(self, job_id: str) -> Tuple[queue.Queue[LogLine], List[LogLine]]:
        return self._log_hub.subscribe(job_id)

    def unsubscribe_logs(self, job_id: str, q: queue.Queue[LogLine]) -> None:
        self._log_hub.unsubscribe(job_id, q)
