from __future__ import annotations

import logging
import os
from typing import Sequence

from .errors import DeploymentError
from .repository import JobRepository
from .runner import ScriptRunner
from .types import DeploymentScript, JobStatus

LOGGER = logging.getLogger(__name__)


class JobOrchestrator:
    """
    Sequential run loop of one job.

    Cancellation is cooperative: the status is polled before every step, a
    script that is already running is always allowed to finish.
    """

    def __init__(self, repository: JobRepository, runner: ScriptRunner) -> None:
        self._repository = repository
        self._runner = runner

    def run(self, job_id: str, scripts: Sequence[DeploymentScript]) -> None:
        try:
            for script in scripts:
                if not os.path.isfile(script.path):
                    raise DeploymentError(f"File cannot be found: {script.path}")

                if self._repository.check_job_status(job_id, JobStatus.CANCELLED):
                    LOGGER.info(
                        "Job %s has been cancelled. Exiting deployment.", job_id
                    )
                    return

                self._runner.run(job_id, script)

            if not self._repository.set_success(job_id):
                LOGGER.info(
                    "Job %s finished its scripts after reaching a terminal status",
                    job_id,
                )
        except Exception as exc:
            LOGGER.exception("Error running deployables for job %s", job_id)
            try:
                self._repository.set_fail(job_id, str(exc))
            except Exception:
                LOGGER.exception("Failed to record failure of job %s", job_id)
