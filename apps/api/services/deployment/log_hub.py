from __future__ import annotations

import queue
import threading
import time
from collections import deque
from typing import Deque, Dict, List, NamedTuple, Tuple


class LogLine(NamedTuple):
    stream: str  # "stdout" | "stderr"
    text: str


class LogHub:
    """
    Per-job fan-out of script output to live log subscribers.

    The last ``buffer_size`` lines of each job are kept so a subscriber that
    attaches mid-run can replay them before following the live queue. Once a
    job is closed its backlog is kept for ``retention_seconds`` more, then
    dropped on the next publish or subscribe.
    """

    def __init__(
        self, *, buffer_size: int = 200, retention_seconds: float = 300.0
    ) -> None:
        self._lock = threading.Lock()
        self._backlog: Dict[str, Deque[LogLine]] = {}
        self._listeners: Dict[str, List[queue.Queue[LogLine]]] = {}
        self._closed_at: Dict[str, float] = {}
        self._buffer_size = buffer_size
        self._retention_seconds = retention_seconds

    def _prune(self, now: float) -> None:
        expired = [
            job_id
            for job_id, closed_at in self._closed_at.items()
            if now - closed_at >= self._retention_seconds
        ]
        for job_id in expired:
            self._closed_at.pop(job_id, None)
            self._backlog.pop(job_id, None)

    def publish(self, job_id: str, line: LogLine) -> None:
        with self._lock:
            self._prune(time.monotonic())
            backlog = self._backlog.get(job_id)
            if backlog is None:
                backlog = self._backlog[job_id] = deque(maxlen=self._buffer_size)
            backlog.append(line)
            listeners = list(self._listeners.get(job_id, ()))

        for q in listeners:
            try:
                q.put_nowait(line)
            except queue.Full:
                # slow consumer, drop
                continue

    def close(self, job_id: str) -> None:
        """Mark a job's output as complete; its backlog starts to age out."""
        with self._lock:
            self._closed_at[job_id] = time.monotonic()

    def subscribe(self, job_id: str) -> Tuple[queue.Queue[LogLine], List[LogLine]]:
        q: queue.Queue[LogLine] = queue.Queue(maxsize=1000)
        with self._lock:
            self._prune(time.monotonic())
            self._listeners.setdefault(job_id, []).append(q)
            replay = list(self._backlog.get(job_id, ()))
        return q, replay

    def unsubscribe(self, job_id: str, q: queue.Queue[LogLine]) -> None:
        with self._lock:
            remaining = [s for s in self._listeners.get(job_id, ()) if s is not q]
            if remaining:
                self._listeners[job_id] = remaining
            else:
                self._listeners.pop(job_id, None)
