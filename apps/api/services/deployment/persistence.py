from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping

LOGGER = logging.getLogger(__name__)


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_json(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        LOGGER.warning("unreadable job metadata %s: %s", path, exc)
        return {}
    return loaded if isinstance(loaded, dict) else {}


def write_meta(path: Path, meta: Mapping[str, Any]) -> None:
    """
    Replace a job.json in one step.

    Readers either see the previous record or the new one, never a partial
    write. The temp file sits next to the target so the rename stays on one
    filesystem.
    """
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        tmp.write_text(json.dumps(dict(meta), indent=2), encoding="utf-8")
        tmp.replace(path)
    finally:
        if tmp.exists():
            tmp.unlink()


def iter_meta(root: Path) -> Iterator[Dict[str, Any]]:
    """Yield every readable job.json below root, skipping broken entries."""
    if not root.is_dir():
        return
    for entry in sorted(root.iterdir()):
        meta = load_json(entry / "job.json")
        if meta.get("job_id"):
            yield meta
