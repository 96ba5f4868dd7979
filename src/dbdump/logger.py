from __future__ import annotations

import logging
import sys
from pathlib import Path

DIAGNOSTIC_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
JOB_LOG_FORMAT = "%(asctime)s %(message)s"
JOB_LOG_DATEFMT = "%Y/%m/%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Configure the process-wide diagnostic stream on stderr."""
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=DIAGNOSTIC_FORMAT, stream=sys.stderr, force=True)


def open_job_logger(path: Path) -> logging.Logger:
    """Return a logger writing only to ``path``; raises ``OSError`` if it cannot be opened.

    Each job gets its own logger keyed by the log file name so concurrent jobs never
    share a handler. Release it with :func:`close_job_logger`.
    """
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(JOB_LOG_FORMAT, datefmt=JOB_LOG_DATEFMT))

    logger = logging.getLogger(f"dbdump.jobs.{path.stem}")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.addHandler(handler)
    return logger


def close_job_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        try:
            handler.close()
        except OSError as exc:
            logging.getLogger(__name__).error("Error closing log file: %s", exc)
