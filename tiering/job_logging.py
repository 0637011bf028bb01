"""
Per-job logging.

Every job writes to its own log file (falling back to the runtime directory
when the configured file is not writable) and optionally mirrors to stdout.
All module loggers live under the "tiering" logger.
"""

import logging
import os
import sys
from logging.handlers import WatchedFileHandler
from pathlib import Path

from runtime_paths import resolve_writable_path

ROOT_LOGGER = "tiering"


def setup_logging(tag: str, log_file, runtime_dir, mirror_stdout: bool = False,
                  verbose: bool = False) -> tuple[logging.Logger, Path]:
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(f"%(asctime)s [{tag}] [%(levelname)s] %(message)s")
    path = resolve_writable_path(log_file, runtime_dir)
    file_handler = WatchedFileHandler(path)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if mirror_stdout or sys.stdout.isatty():
        stream = logging.StreamHandler(sys.stdout)
        stream.setFormatter(formatter)
        logger.addHandler(stream)

    if path != Path(log_file):
        logger.warning(f"Log file {log_file} is not writable, logging to {path}")
    logger.info(f"Logging to {path} (pid {os.getpid()}, uid {os.getuid()})")
    return logger, path


def bytes_human(n: int) -> str:
    value = float(n)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(value) < 1024 or unit == "TiB":
            return f"{int(value)}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
