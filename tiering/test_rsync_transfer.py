"""Unit tests for the rsync wrapper. rsync itself is mocked."""

import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from rsync_transfer import RsyncTransfer, TransferError, parse_stats

STATS = """
Number of files: 12 (reg: 10, dir: 2)
Number of created files: 3
Number of regular files transferred: 3
Total file size: 9,000 bytes
Total transferred file size: 1,234,567 bytes
"""


def completed(returncode=0, stdout=STATS, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class RsyncTransferTest(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.runner = MagicMock(return_value=completed())

    def tearDown(self):
        self._tmp.cleanup()

    def last_cmd(self):
        return self.runner.call_args[0][0]

    def test_parse_stats(self):
        self.assertEqual(parse_stats(STATS), (3, 1234567))
        self.assertEqual(parse_stats(""), (0, 0))
        self.assertEqual(parse_stats("Number of files transferred: 4\n"), (4, 0))

    def test_copy_tree_arguments(self):
        transfer = RsyncTransfer(bwlimit=20000, owner="1000:1000", runner=self.runner)
        result = transfer.copy_tree(self.tmp / "src", self.tmp / "dst")
        self.assertEqual(
            self.last_cmd(),
            ["rsync", "-a", "--stats", "--bwlimit=20000", "--chown=1000:1000",
             f"{self.tmp / 'src'}/", f"{self.tmp / 'dst'}/"],
        )
        self.assertTrue(result.ok)
        self.assertEqual((result.files, result.bytes), (3, 1234567))
        self.assertTrue((self.tmp / "dst").is_dir())

    def test_skip_existing_and_unlimited_bandwidth(self):
        transfer = RsyncTransfer(bwlimit=0, runner=self.runner)
        transfer.copy_tree(self.tmp / "a", self.tmp / "b", skip_existing=True)
        cmd = self.last_cmd()
        self.assertIn("--ignore-existing", cmd)
        self.assertFalse(any(arg.startswith("--bwlimit") for arg in cmd))
        self.assertFalse(any(arg.startswith("--chown") for arg in cmd))

    def test_with_bwlimit_keeps_other_options(self):
        transfer = RsyncTransfer(bwlimit=500, owner="1:2", runner=self.runner).with_bwlimit(0)
        self.assertEqual(transfer.bwlimit, 0)
        self.assertEqual(transfer.owner, "1:2")

    def test_copy_file_creates_parent(self):
        transfer = RsyncTransfer(runner=self.runner)
        transfer.copy_file(self.tmp / "a.jpg", self.tmp / "x" / "y" / "a.jpg")
        self.assertTrue((self.tmp / "x" / "y").is_dir())
        self.assertEqual(self.last_cmd()[-2:], [str(self.tmp / "a.jpg"), str(self.tmp / "x" / "y" / "a.jpg")])

    def test_copy_files_sends_null_separated_list(self):
        transfer = RsyncTransfer(runner=self.runner)
        transfer.copy_files(self.tmp / "src", self.tmp / "dst", ["a/1.mp4", "b/2.mp4"])
        cmd = self.last_cmd()
        for flag in ("--ignore-existing", "--ignore-missing-args", "--from0", "--files-from=-"):
            self.assertIn(flag, cmd)
        self.assertEqual(self.runner.call_args[1]["input"], "a/1.mp4\0b/2.mp4\0")

    def test_copy_files_empty_batch_is_noop(self):
        result = RsyncTransfer(runner=self.runner).copy_files(self.tmp, self.tmp / "d", [])
        self.assertTrue(result.ok)
        self.runner.assert_not_called()

    def test_failure_carries_stderr(self):
        self.runner.return_value = completed(returncode=23, stdout="", stderr="some files could not be transferred")
        result = RsyncTransfer(runner=self.runner).copy_tree(self.tmp / "a", self.tmp / "b")
        self.assertFalse(result.ok)
        self.assertEqual(result.returncode, 23)
        self.assertIn("could not be transferred", result.error)

    def test_vanished_source_files_are_not_a_failure(self):
        self.runner.return_value = completed(returncode=24, stderr="file has vanished")
        result = RsyncTransfer(runner=self.runner).copy_tree(self.tmp / "a", self.tmp / "b")
        self.assertTrue(result.ok)

    def test_timeout(self):
        self.runner.side_effect = subprocess.TimeoutExpired(cmd="rsync", timeout=5)
        result = RsyncTransfer(runner=self.runner, timeout=5).copy_tree(self.tmp / "a", self.tmp / "b")
        self.assertFalse(result.ok)
        self.assertIn("timed out", result.error)

    def test_missing_binary_raises(self):
        self.runner.side_effect = FileNotFoundError("rsync")
        with self.assertRaises(TransferError):
            RsyncTransfer(runner=self.runner).copy_tree(self.tmp / "a", self.tmp / "b")

    def test_progress_streams_to_terminal(self):
        self.runner.return_value = completed(stdout=None)
        RsyncTransfer(progress=True, runner=self.runner).copy_tree(self.tmp / "a", self.tmp / "b")
        self.assertIn("--info=progress2", self.last_cmd())
        self.assertIsNone(self.runner.call_args[1]["stdout"])


if __name__ == "__main__":
    unittest.main()
