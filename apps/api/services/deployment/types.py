from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAIL = "fail"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.SUCCESS, JobStatus.FAIL, JobStatus.CANCELLED}
)
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.IN_PROGRESS})


def utc_iso() -> str:
    """Current UTC time as used in job records, e.g. 2024-05-01T12:00:00.123456Z."""
    now = _dt.datetime.now(tz=_dt.timezone.utc)
    return now.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class DeploymentScript:
    path: str
    arguments: str = ""

    @property
    def name(self) -> str:
        return Path(self.path).name


@dataclass
class DeploymentJob:
    """
    Snapshot of a job record.

    Repositories hand out copies; mutating one never changes stored state.
    """

    id: str
    project: str
    service: str
    status: JobStatus = JobStatus.PENDING
    message: Optional[str] = None
    pid: Optional[int] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.id,
            "project": self.project,
            "service": self.service,
            "status": self.status.value,
            "message": self.message,
            "pid": self.pid,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentJob":
        return cls(
            id=str(data["job_id"]),
            project=str(data.get("project") or ""),
            service=str(data.get("service") or ""),
            status=JobStatus(data.get("status") or JobStatus.PENDING.value),
            message=data.get("message"),
            pid=data.get("pid"),
            created_at=data.get("created_at"),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
        )
