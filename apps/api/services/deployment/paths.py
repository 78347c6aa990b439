from __future__ import annotations

import os
from pathlib import Path


def state_dir() -> Path:
    raw = (os.getenv("STATE_DIR", "/state") or "/state").strip()
    return Path(raw)


def jobs_root() -> Path:
    return state_dir() / "jobs"


def job_dir(job_id: str) -> Path:
    return jobs_root() / job_id


def job_meta_path(job_id: str) -> Path:
    return job_dir(job_id) / "job.json"
