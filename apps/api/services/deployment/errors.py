from __future__ import annotations


class DeploymentError(RuntimeError):
    """A script step (and therefore its job) failed."""


class JobNotFoundError(RuntimeError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"job not found: {job_id}")
        self.job_id = job_id


class DeploymentSettingsError(RuntimeError):
    pass
