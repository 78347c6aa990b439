from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


JobStatus = Literal[
    "pending",
    "in_progress",
    "success",
    "fail",
    "cancelled",
]


class DeploymentStartIn(BaseModel):
    """
    Start a deployment for one (project, service) target.

    The scripts come from the deployment settings file. Unknown fields are
    rejected, so a body cannot smuggle in paths of its own.
    """

    model_config = ConfigDict(extra="forbid")

    project: str = Field(..., min_length=1)
    service: str = Field(..., min_length=1)

    @field_validator("project", "service")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class DeploymentJobOut(BaseModel):
    job_id: str
    project: str
    service: str
    status: JobStatus
    message: Optional[str] = None
    pid: Optional[int] = None

    created_at: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


class DeploymentStartOut(BaseModel):
    # False means a job for this target was already running; `job` is that job.
    started: bool
    job: DeploymentJobOut


class DeploymentCancelOut(BaseModel):
    ok: bool
