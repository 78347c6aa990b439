import os
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from services.deployment.persistence import ensure_dir, iter_meta, load_json, write_meta


class TestPersistence(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)

    def test_write_meta_replaces_file_without_leftovers(self) -> None:
        path = ensure_dir(self.root / "abc") / "job.json"

        write_meta(path, {"job_id": "abc", "status": "pending"})
        write_meta(path, {"job_id": "abc", "status": "success"})

        self.assertEqual(load_json(path), {"job_id": "abc", "status": "success"})
        self.assertEqual(os.listdir(path.parent), ["job.json"])

    def test_load_json_of_broken_file_warns_and_returns_empty(self) -> None:
        path = self.root / "job.json"
        path.write_text("{not json", encoding="utf-8")

        with self.assertLogs("services.deployment.persistence", level="WARNING"):
            self.assertEqual(load_json(path), {})

    def test_load_json_of_missing_file_is_empty(self) -> None:
        self.assertEqual(load_json(self.root / "missing.json"), {})

    def test_iter_meta_skips_broken_entries(self) -> None:
        write_meta(ensure_dir(self.root / "good") / "job.json", {"job_id": "good"})
        write_meta(ensure_dir(self.root / "anon") / "job.json", {"status": "fail"})
        ensure_dir(self.root / "empty")
        (ensure_dir(self.root / "bad") / "job.json").write_text("[", encoding="utf-8")

        with self.assertLogs("services.deployment.persistence", level="WARNING"):
            metas = list(iter_meta(self.root))

        self.assertEqual(metas, [{"job_id": "good"}])

    def test_iter_meta_of_missing_root_is_empty(self) -> None:
        self.assertEqual(list(iter_meta(self.root / "nope")), [])
