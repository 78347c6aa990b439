from __future__ import annotations

import os


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def job_store_backend() -> str:
    return (os.getenv("DEPLOY_JOB_STORE") or "file").strip().lower()


def settings_path() -> str:
    return (os.getenv("DEPLOY_SETTINGS_PATH") or "").strip()


def log_buffer_size() -> int:
    return env_int("DEPLOY_LOG_BUFFER_SIZE", 200)


def log_level() -> str:
    return (os.getenv("LOG_LEVEL") or "INFO").strip().upper()


def log_retention_seconds() -> int:
    return env_int("DEPLOY_LOG_RETENTION_SECONDS", 300)
