"""
rsync wrapper used for every fast -> archive copy.

Copies preserve metadata (-a), optionally normalize ownership (--chown) and
honour a bandwidth limit in KB/s (0 = unlimited). Counts come from
rsync --stats.
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger("tiering.rsync")

# "Partial transfer due to vanished source files": the recorder rotated a
# file away while it was being copied.
VANISHED_SOURCE = 24

_FILES_RE = re.compile(r"Number of (?:regular )?files transferred:\s*([\d,]+)")
_BYTES_RE = re.compile(r"Total transferred file size:\s*([\d,]+)")


class TransferError(RuntimeError):
    """Raised when rsync cannot be executed at all."""
    pass


@dataclass
class TransferResult:
    ok: bool
    returncode: int
    files: int = 0
    bytes: int = 0
    error: str = ""


def parse_stats(output: str) -> tuple[int, int]:
    files = _FILES_RE.search(output or "")
    size = _BYTES_RE.search(output or "")
    return (
        int(files.group(1).replace(",", "")) if files else 0,
        int(size.group(1).replace(",", "")) if size else 0,
    )


class RsyncTransfer:
    """Copy files and trees with rsync."""

    def __init__(self, bwlimit: int = 0, owner: str | None = None, progress: bool = False,
                 runner=subprocess.run, timeout: int | None = None):
        self.bwlimit = bwlimit
        self.owner = owner
        self.progress = progress
        self.timeout = timeout
        self._runner = runner

    def with_bwlimit(self, bwlimit: int) -> "RsyncTransfer":
        return RsyncTransfer(bwlimit, self.owner, self.progress, self._runner, self.timeout)

    def _command(self, skip_existing: bool) -> list[str]:
        cmd = ["rsync", "-a", "--stats"]
        if self.bwlimit > 0:
            cmd.append(f"--bwlimit={self.bwlimit}")
        if self.owner:
            cmd.append(f"--chown={self.owner}")
        if skip_existing:
            cmd.append("--ignore-existing")
        if self.progress:
            cmd.append("--info=progress2")
        return cmd

    def _run(self, cmd: list[str], input: str | None = None) -> TransferResult:
        log.debug(f"Running: {' '.join(cmd)}")
        # with progress enabled rsync writes straight to the terminal, so no stats
        stdout = None if self.progress else subprocess.PIPE
        try:
            result = self._runner(cmd, stdout=stdout, stderr=subprocess.PIPE, text=True,
                                  input=input, timeout=self.timeout)
        except FileNotFoundError:
            raise TransferError("rsync is not installed or not on PATH")
        except subprocess.TimeoutExpired:
            return TransferResult(False, -1, error=f"rsync timed out after {self.timeout}s")

        files, nbytes = parse_stats(result.stdout)
        if result.returncode == 0:
            return TransferResult(True, 0, files, nbytes)
        if result.returncode == VANISHED_SOURCE:
            log.warning(f"Some source files vanished during transfer: {(result.stderr or '')[:300]}")
            return TransferResult(True, result.returncode, files, nbytes)
        return TransferResult(False, result.returncode, files, nbytes,
                              error=(result.stderr or "")[:500])

    def copy_file(self, src, dst) -> TransferResult:
        dst = Path(dst)
        dst.parent.mkdir(parents=True, exist_ok=True)
        return self._run(self._command(skip_existing=False) + [str(src), str(dst)])

    def copy_tree(self, src_dir, dst_dir, skip_existing: bool = False) -> TransferResult:
        """Copy the contents of src_dir into dst_dir."""
        Path(dst_dir).mkdir(parents=True, exist_ok=True)
        cmd = self._command(skip_existing) + [f"{src_dir}/", f"{dst_dir}/"]
        return self._run(cmd)

    def copy_files(self, src_root, dst_root, rel_paths: list[str],
                   skip_existing: bool = True) -> TransferResult:
        """Copy a batch of paths relative to src_root in a single rsync run."""
        if not rel_paths:
            return TransferResult(True, 0)
        Path(dst_root).mkdir(parents=True, exist_ok=True)
        cmd = self._command(skip_existing) + [
            "--ignore-missing-args", "--from0", "--files-from=-",
            f"{src_root}/", f"{dst_root}/",
        ]
        return self._run(cmd, input="\0".join(rel_paths) + "\0")
