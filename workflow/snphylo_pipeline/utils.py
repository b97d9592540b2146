from __future__ import annotations

import gzip
import logging
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter
from typing import IO


LOGGER_NAME = "snphylo_pipeline"
LOG_FORMAT = "[%(asctime)s] %(levelname)s - %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


@contextmanager
def step_logger(name: str):
    logger = get_logger()
    logger.info("> %s", name)
    start = perf_counter()
    try:
        yield logger
    finally:
        duration = perf_counter() - start
        logger.info("< %s (%.2fs)", name, duration)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def open_text(path: Path, errors: str = "strict") -> IO[str]:
    """Open a plain or gzip-compressed text file for reading."""
    if path.suffix == ".gz":
        return gzip.open(path, "rt", encoding="utf-8", errors=errors)
    return path.open("r", encoding="utf-8", errors=errors)


def open_binary(path: Path) -> IO[bytes]:
    if path.suffix == ".gz":
        return gzip.open(path, "rb")
    return path.open("rb")


def count_lines(path: Path) -> int:
    """Line count without decoding, so any byte encoding is accepted."""
    total = 0
    with open_binary(path) as handle:
        for _ in handle:
            total += 1
    return total


def remove_if_exists(path: Path) -> None:
    if path.exists():
        path.unlink()
