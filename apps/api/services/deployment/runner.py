from __future__ import annotations

import codecs
import logging
import os
import queue
import shlex
import subprocess
import threading
from pathlib import Path
from typing import IO, Callable, List, Optional, Tuple

from .errors import DeploymentError
from .log_hub import LogLine
from .repository import JobRepository
from .types import DeploymentScript, JobStatus

LOGGER = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"

# Some deploy tools print one of these banners and still exit 0.
FAILURE_PHRASES = ("deploy failed", "there were errors")
CLASSIFIED_FAILURE_MESSAGE = "Deploy failed. Check logs for more information."

# (stream, line); None marks the end of one stream.
_Item = Optional[Tuple[str, str]]


def has_deployment_errors(line: str) -> bool:
    lowered = line.lower()
    return any(phrase in lowered for phrase in FAILURE_PHRASES)


def _split_stream_buffer(buffer: str) -> tuple[list[str], str]:
    lines: list[str] = []
    while True:
        idx_n = buffer.find("\n")
        idx_r = buffer.find("\r")

        if idx_n == -1 and idx_r == -1:
            break

        if idx_n == -1:
            idx = idx_r
        elif idx_r == -1:
            idx = idx_n
        else:
            idx = idx_n if idx_n < idx_r else idx_r

        lines.append(buffer[:idx])
        buffer = buffer[idx + 1 :]

    return lines, buffer


def _pump(stream_name: str, pipe: IO[bytes], sink: "queue.Queue[_Item]") -> None:
    # incremental, so a character split across two reads is kept whole
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buf = ""
    try:
        while True:
            chunk = os.read(pipe.fileno(), 4096)
            if not chunk:
                buf += decoder.decode(b"", final=True)
                break
            buf += decoder.decode(chunk)
            lines, buf = _split_stream_buffer(buf)
            for line in lines:
                sink.put((stream_name, line))
        if buf:
            sink.put((stream_name, buf))
    finally:
        pipe.close()
        sink.put(None)


def build_command(script: DeploymentScript) -> List[str]:
    path = str(Path(script.path).resolve())
    return [path, *shlex.split(script.arguments or "")]


class ScriptRunner:
    """
    Runs one deployment script as a child process.

    Both output streams are read by their own pump thread and merged into a
    single queue. The calling thread is the only consumer, so classification,
    logging and publishing happen strictly one line at a time.
    """

    def __init__(
        self,
        repository: JobRepository,
        *,
        on_line: Callable[[str, LogLine], None] | None = None,
    ) -> None:
        self._repository = repository
        self._on_line = on_line

    def run(self, job_id: str, script: DeploymentScript) -> int:
        LOGGER.info("Starting script %s", script.name)
        proc = subprocess.Popen(
            build_command(script),
            cwd=str(Path(script.path).resolve().parent),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            bufsize=0,
        )

        # pumps keep draining the pipes even if the consumer below bails out,
        # so the child can always run to completion and be reaped
        merged: "queue.Queue[_Item]" = queue.Queue()
        pumps = [
            threading.Thread(
                target=_pump, args=(STDOUT, proc.stdout, merged), daemon=True
            ),
            threading.Thread(
                target=_pump, args=(STDERR, proc.stderr, merged), daemon=True
            ),
        ]
        for t in pumps:
            t.start()

        try:
            self._repository.set_in_progress(
                job_id, f"Running script {script.name}", proc.pid
            )

            open_streams = len(pumps)
            while open_streams:
                item = merged.get()
                if item is None:
                    open_streams -= 1
                    continue
                self._handle_line(job_id, LogLine(*item))
        finally:
            exit_code = proc.wait()
            for t in pumps:
                t.join()

        if exit_code != 0 or self._repository.check_job_status(job_id, JobStatus.FAIL):
            raise DeploymentError(
                f"Error running script {script.name}, exit code: {exit_code}"
            )
        return exit_code

    def _handle_line(self, job_id: str, line: LogLine) -> None:
        if not line.text.strip():
            return

        if has_deployment_errors(line.text):
            self._repository.set_fail(job_id, CLASSIFIED_FAILURE_MESSAGE)

        if line.stream == STDERR:
            LOGGER.error("[%s] %s", job_id, line.text)
        else:
            LOGGER.info("[%s] %s", job_id, line.text)

        if self._on_line is not None:
            self._on_line(job_id, line)
