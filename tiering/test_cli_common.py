"""Tests for the shared job runner and the job entry points."""

import io
import logging
import tempfile
import time
import unittest
from argparse import Namespace
from pathlib import Path
from unittest.mock import MagicMock, patch

import eviction
import reconcile
import retention
from cli_common import (
    EXIT_CONFIG, EXIT_FAILURE, EXIT_OK, base_parser, load_or_exit, print_status, run_job,
)
from fixtures_fs import make_settings, write_file
from job_lock import MEDIA, JobLock

DAY = 86400


class CliTestBase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.settings = make_settings(self.tmp)
        self.env_file = self.tmp / "tiering.env"
        self.env_file.write_text("\n".join([
            f"SSD_ROOT={self.tmp / 'ssd'}",
            f"HD_MOUNT={self.tmp / 'hd'}",
            "ARCHIVE_REQUIRE_MOUNT=0",
            f"RUNTIME_DIR={self.tmp / 'runtime'}",
            f"LOG_DIR={self.tmp / 'logs'}",
            f"LOCK_STORAGE={self.tmp / 'locks' / 'storage.lock'}",
            f"LOCK_MEDIA={self.tmp / 'locks' / 'media.lock'}",
            "CLIPS_KEEP_DAYS=2",
            "MIN_FREE_PCT=0",
        ]) + "\n")

    def tearDown(self):
        root = logging.getLogger("tiering")
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        self._tmp.cleanup()

    def args(self, **overrides):
        values = {"dry_run": False, "verbose": False, "progress": False, "status": False,
                  "stdout": False, "env_file": None}
        values.update(overrides)
        return Namespace(**values)


class RunJobTest(CliTestBase):

    def test_runs_body_under_lock(self):
        seen = {}

        def body(alerts):
            seen["held"] = True
            return EXIT_OK

        self.assertEqual(run_job(self.args(), self.settings, "retention", MEDIA, body), EXIT_OK)
        self.assertTrue(seen["held"])
        self.assertTrue((self.tmp / "logs" / "frigate-retention.log").exists())

    def test_busy_lock_exits_cleanly_without_running(self):
        body = MagicMock(return_value=EXIT_FAILURE)
        with JobLock(self.settings.lock_path(MEDIA), self.settings.runtime_dir):
            code = run_job(self.args(), self.settings, "vacuum", MEDIA, body)
        self.assertEqual(code, EXIT_OK)
        body.assert_not_called()

    def test_unexpected_error_is_logged_and_fails(self):
        def body(alerts):
            raise RuntimeError("disk exploded")

        with patch("cli_common.AlertClient.notify") as notify:
            code = run_job(self.args(), self.settings, "prune", MEDIA, body)
        self.assertEqual(code, EXIT_FAILURE)
        notify.assert_called_once()
        self.assertIn("disk exploded", (self.tmp / "logs" / "frigate-prune.log").read_text())

    def test_unwritable_log_fails_without_running(self):
        body = MagicMock()
        with patch("cli_common.setup_logging", side_effect=PermissionError("read-only fs")), \
                patch("cli_common.AlertClient.notify") as notify, \
                patch("sys.stderr", new_callable=io.StringIO) as err:
            code = run_job(self.args(), self.settings, "vacuum", MEDIA, body)
        self.assertEqual(code, EXIT_FAILURE)
        body.assert_not_called()
        notify.assert_called_once()
        self.assertIn("read-only fs", err.getvalue())

    def test_status_does_not_take_lock_or_run(self):
        body = MagicMock()
        with patch("cli_common.print_status") as status:
            code = run_job(self.args(status=True), self.settings, "mover", "storage", body)
        self.assertEqual(code, EXIT_OK)
        status.assert_called_once()
        body.assert_not_called()

    def test_print_status(self):
        write_file(self.tmp / "hd" / "clips" / "a.jpg", size=3)
        out = io.StringIO()
        print_status(self.settings, out=out)
        text = out.getvalue()
        self.assertIn("[fast]", text)
        self.assertIn("[archive]", text)
        self.assertIn("lock storage: free", text)


class LoadOrExitTest(CliTestBase):

    def test_missing_env_file(self):
        with self.assertRaises(SystemExit) as ctx:
            load_or_exit(str(self.tmp / "nope.env"))
        self.assertEqual(ctx.exception.code, EXIT_CONFIG)

    def test_invalid_value(self):
        self.env_file.write_text(self.env_file.read_text() + "KEEP_SSD_DAYS=zero\n")
        with patch("sys.stderr", new_callable=io.StringIO) as err:
            with self.assertRaises(SystemExit) as ctx:
                load_or_exit(str(self.env_file))
        self.assertEqual(ctx.exception.code, EXIT_CONFIG)
        self.assertIn("KEEP_SSD_DAYS", err.getvalue())

    def test_base_parser_flags(self):
        args = base_parser("nvr-test", "x").parse_args(["--dry-run", "-v", "--env-file", "a.env"])
        self.assertTrue(args.dry_run)
        self.assertTrue(args.verbose)
        self.assertEqual(args.env_file, "a.env")


class EntryPointTest(CliTestBase):

    def test_retention_main(self):
        old = write_file(self.tmp / "ssd" / "clips" / "old.jpg", age=5 * DAY)
        fresh = write_file(self.tmp / "ssd" / "clips" / "fresh.jpg", age=60)
        self.assertEqual(retention.main(["--env-file", str(self.env_file)]), EXIT_OK)
        self.assertFalse(old.exists())
        self.assertTrue(fresh.exists())

    def test_retention_main_respects_media_lock(self):
        old = write_file(self.tmp / "ssd" / "clips" / "old.jpg", age=5 * DAY)
        with JobLock(self.settings.lock_path(MEDIA), self.settings.runtime_dir):
            self.assertEqual(retention.main(["--env-file", str(self.env_file)]), EXIT_OK)
        self.assertTrue(old.exists())

    def test_prune_main_nothing_to_do(self):
        write_file(self.tmp / "hd" / "clips" / "2024-01-01" / "a.jpg")
        code = eviction.prune_main(["--env-file", str(self.env_file)])
        self.assertEqual(code, EXIT_OK)
        self.assertTrue((self.tmp / "hd" / "clips" / "2024-01-01").exists())

    def test_vacuum_main_before_dry_run(self):
        write_file(self.tmp / "hd" / "clips" / "2024-01-01" / "a.jpg")
        code = eviction.vacuum_main(["--env-file", str(self.env_file), "--before", "2024-02-01", "--dry-run"])
        self.assertEqual(code, EXIT_OK)
        self.assertTrue((self.tmp / "hd" / "clips" / "2024-01-01").exists())

    def test_reconcile_main_without_gaps(self):
        now = time.gmtime(time.time() - 5 * 3600)
        hour_dir = Path(time.strftime("%Y-%m-%d", now)) / time.strftime("%H", now) / "front"
        write_file(self.tmp / "ssd" / "recordings" / hour_dir / "a.mp4")
        write_file(self.tmp / "hd" / "recordings" / hour_dir / "a.mp4")
        self.assertEqual(reconcile.main(["--env-file", str(self.env_file)]), EXIT_OK)


if __name__ == "__main__":
    unittest.main()
