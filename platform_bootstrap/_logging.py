"""Logging setup shared by the bootstrap CLIs."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

LOGGER_NAME = "platform_bootstrap"


def configure_logging(
    *,
    verbose: bool = False,
    log_dir: Path | None = None,
    run_name: str = "bootstrap",
) -> Path | None:
    """Attach console and per-run file handlers to the package logger.

    The console shows INFO (DEBUG with ``verbose``); the file under
    ``log_dir`` always records DEBUG. Returns the log file path, if any.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_dir is None:
        return None

    log_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    log_path = log_dir / f"{run_name}-{stamp}.log"
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    logger.debug("log_file=%s", log_path)
    return log_path
