import os
import queue
import subprocess
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from services.deployment.errors import DeploymentError
from services.deployment.log_hub import LogLine
from services.deployment.repository import InMemoryJobRepository
from services.deployment.runner import (
    CLASSIFIED_FAILURE_MESSAGE,
    STDOUT,
    ScriptRunner,
    _pump,
    _split_stream_buffer,
    build_command,
    has_deployment_errors,
)
from services.deployment.types import DeploymentScript, JobStatus


def _write_script(root: str, name: str, body: str) -> str:
    path = Path(root) / name
    path.write_text("#!/usr/bin/env bash\n" + body + "\n", encoding="utf-8")
    path.chmod(0o755)
    return str(path)


class TestClassifier(unittest.TestCase):
    def test_matches_phrases_case_insensitively(self) -> None:
        self.assertTrue(has_deployment_errors("There were errors during publish"))
        self.assertTrue(has_deployment_errors("*** DEPLOY FAILED ***"))

    def test_ignores_other_lines(self) -> None:
        self.assertFalse(has_deployment_errors("deploy finished, no errors"))
        self.assertFalse(has_deployment_errors(""))

    def test_split_stream_buffer_handles_cr_and_lf(self) -> None:
        lines, rest = _split_stream_buffer("one\rtwo\nthree")

        self.assertEqual(lines, ["one", "two"])
        self.assertEqual(rest, "three")

    def test_pump_keeps_multibyte_characters_across_reads(self) -> None:
        r, w = os.pipe()
        # the two bytes of "\u00e9" straddle the 4096 byte read boundary
        os.write(w, b"a" * 4095 + "\u00e9\n".encode("utf-8"))
        os.close(w)
        sink = queue.Queue()

        _pump(STDOUT, os.fdopen(r, "rb"), sink)

        self.assertEqual(sink.get_nowait(), (STDOUT, "a" * 4095 + "\u00e9"))
        self.assertIsNone(sink.get_nowait())

    def test_build_command_splits_arguments(self) -> None:
        cmd = build_command(
            DeploymentScript(path="/opt/deploy/run.sh", arguments="--env 'prod eu'")
        )

        self.assertEqual(cmd, ["/opt/deploy/run.sh", "--env", "prod eu"])


class _UnwritableFailures(InMemoryJobRepository):
    def set_fail(self, job_id, message):
        raise OSError("read-only file system")


class TestScriptRunner(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)

        self.repo = InMemoryJobRepository()
        _, job = self.repo.try_create_if_vacant("shop", "web")
        self.job_id = job.id
        self.lines = []
        self.runner = ScriptRunner(
            self.repo, on_line=lambda job_id, line: self.lines.append((job_id, line))
        )

    def test_successful_script_logs_by_stream(self) -> None:
        path = _write_script(
            self._tmp.name,
            "ok.sh",
            "echo out-line\necho\necho err-line 1>&2\nexit 0",
        )

        with self.assertLogs("services.deployment.runner", level="INFO") as cm:
            rc = self.runner.run(self.job_id, DeploymentScript(path=path))

        self.assertEqual(rc, 0)
        by_level = {(r.levelname, r.getMessage()) for r in cm.records}
        self.assertIn(("INFO", "Starting script ok.sh"), by_level)
        self.assertIn(("INFO", f"[{self.job_id}] out-line"), by_level)
        self.assertIn(("ERROR", f"[{self.job_id}] err-line"), by_level)
        # blank lines are dropped
        self.assertEqual(len(self.lines), 2)
        self.assertIn((self.job_id, LogLine("stdout", "out-line")), self.lines)
        self.assertIn((self.job_id, LogLine("stderr", "err-line")), self.lines)

    def test_marks_job_in_progress_with_pid(self) -> None:
        path = _write_script(self._tmp.name, "step.sh", "exit 0")

        self.runner.run(self.job_id, DeploymentScript(path=path))

        job = self.repo.get_job(self.job_id)
        self.assertEqual(job.status, JobStatus.IN_PROGRESS)
        self.assertEqual(job.message, "Running script step.sh")
        self.assertIsInstance(job.pid, int)

    def test_passes_arguments(self) -> None:
        path = _write_script(self._tmp.name, "args.sh", 'echo "$1|$2"')

        self.runner.run(
            self.job_id, DeploymentScript(path=path, arguments="'hello world' two")
        )

        self.assertEqual(self.lines, [(self.job_id, LogLine("stdout", "hello world|two"))])

    def test_runs_in_script_directory(self) -> None:
        path = _write_script(self._tmp.name, "pwd.sh", "pwd")

        self.runner.run(self.job_id, DeploymentScript(path=path))

        self.assertEqual(
            os.path.realpath(self.lines[0][1].text), os.path.realpath(self._tmp.name)
        )

    def test_non_zero_exit_raises(self) -> None:
        path = _write_script(self._tmp.name, "broken.sh", "echo working\nexit 3")

        with self.assertRaises(DeploymentError) as ctx:
            self.runner.run(self.job_id, DeploymentScript(path=path))

        self.assertEqual(
            str(ctx.exception), "Error running script broken.sh, exit code: 3"
        )

    def test_error_banner_with_exit_zero_fails(self) -> None:
        path = _write_script(
            self._tmp.name, "masked.sh", "echo 'There were errors'\necho done\nexit 0"
        )

        with self.assertRaises(DeploymentError) as ctx:
            self.runner.run(self.job_id, DeploymentScript(path=path))

        self.assertIn("exit code: 0", str(ctx.exception))
        job = self.repo.get_job(self.job_id)
        self.assertEqual(job.status, JobStatus.FAIL)
        self.assertEqual(job.message, CLASSIFIED_FAILURE_MESSAGE)

    def test_error_banner_on_stderr_fails(self) -> None:
        path = _write_script(self._tmp.name, "stderr.sh", "echo 'Deploy failed' 1>&2")

        with self.assertRaises(DeploymentError):
            self.runner.run(self.job_id, DeploymentScript(path=path))

        self.assertTrue(self.repo.check_job_status(self.job_id, JobStatus.FAIL))

    def test_large_output_on_both_streams_does_not_block(self) -> None:
        path = _write_script(
            self._tmp.name,
            "noisy.sh",
            "for i in $(seq 1 2000); do echo out-$i; echo err-$i 1>&2; done",
        )

        self.runner.run(self.job_id, DeploymentScript(path=path))

        stdout = [line.text for _, line in self.lines if line.stream == "stdout"]
        self.assertEqual(len(self.lines), 4000)
        self.assertEqual(stdout[0], "out-1")
        self.assertEqual(stdout[-1], "out-2000")

    def test_child_is_reaped_when_handling_a_line_fails(self) -> None:
        path = _write_script(
            self._tmp.name, "late.sh", "echo 'deploy failed'\nsleep 0.2\nexit 0"
        )
        repo = _UnwritableFailures()
        _, job = repo.try_create_if_vacant("shop", "web")
        started = []
        real_popen = subprocess.Popen

        def _popen(*args, **kwargs):
            proc = real_popen(*args, **kwargs)
            started.append(proc)
            return proc

        with patch("services.deployment.runner.subprocess.Popen", side_effect=_popen):
            with self.assertRaises(OSError):
                ScriptRunner(repo).run(job.id, DeploymentScript(path=path))

        self.assertEqual(len(started), 1)
        self.assertEqual(started[0].returncode, 0)
