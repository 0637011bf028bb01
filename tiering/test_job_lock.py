"""Unit tests for the advisory job locks and writable-path fallback."""

import tempfile
import unittest
from pathlib import Path

from job_lock import JobLock, LockBusy, is_held
from runtime_paths import resolve_writable_path


class JobLockTest(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.lock_path = self.tmp / "locks" / "storage.lock"
        self.runtime = self.tmp / "runtime"

    def tearDown(self):
        self._tmp.cleanup()

    def test_second_holder_is_rejected(self):
        with JobLock(self.lock_path, self.runtime) as first:
            self.assertTrue(first.held)
            with self.assertRaises(LockBusy):
                JobLock(self.lock_path, self.runtime).acquire()

    def test_released_on_exit(self):
        with JobLock(self.lock_path, self.runtime):
            self.assertTrue(is_held(self.lock_path))
        self.assertFalse(is_held(self.lock_path))
        with JobLock(self.lock_path, self.runtime) as again:
            self.assertTrue(again.held)

    def test_released_when_body_raises(self):
        with self.assertRaises(RuntimeError):
            with JobLock(self.lock_path, self.runtime):
                raise RuntimeError("boom")
        self.assertFalse(is_held(self.lock_path))

    def test_domains_are_independent(self):
        with JobLock(self.lock_path, self.runtime):
            with JobLock(self.tmp / "locks" / "media.lock", self.runtime) as media:
                self.assertTrue(media.held)

    def test_falls_back_to_runtime_dir(self):
        blocker = self.tmp / "blocker"
        blocker.write_text("a file where a directory should be")
        lock = JobLock(blocker / "storage.lock", self.runtime)
        with lock:
            self.assertEqual(lock.path, self.runtime / "storage.lock")
            with self.assertRaises(LockBusy):
                JobLock(blocker / "storage.lock", self.runtime).acquire()

    def test_is_held_for_missing_file(self):
        self.assertFalse(is_held(self.tmp / "never-created.lock"))


class ResolveWritablePathTest(unittest.TestCase):

    def test_primary_and_fallback(self):
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            self.assertEqual(resolve_writable_path(tmp / "logs" / "a.log", tmp / "rt"), tmp / "logs" / "a.log")
            (tmp / "file").write_text("")
            self.assertEqual(resolve_writable_path(tmp / "file" / "a.log", tmp / "rt"), tmp / "rt" / "a.log")
            self.assertTrue((tmp / "rt" / "a.log").exists())

    def test_raises_when_nothing_is_writable(self):
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            (tmp / "file").write_text("")
            with self.assertRaises(OSError):
                resolve_writable_path(tmp / "file" / "a.log", tmp / "file" / "rt")


if __name__ == "__main__":
    unittest.main()
