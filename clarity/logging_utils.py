from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def init_logger(name: str, log_dir: Path, level: str = "INFO") -> logging.Logger:
    log_dir.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(f"clarity.{name}")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT)
        file_handler = RotatingFileHandler(
            log_dir / f"{name}.log", maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)

        logger.addHandler(file_handler)
        logger.addHandler(console_handler)
        logger.propagate = False

    return logger


class ThrottledLog:
    """Log a repeating condition once, then again only after `every` seconds."""

    def __init__(self, log: logging.Logger, every: float = 60.0):
        self._logger = log
        self._every = every
        self._last_reason: str | None = None
        self._last_at = 0.0

    def log(self, level: int, reason: str, now: float, msg: str, *args) -> bool:
        if reason == self._last_reason and (now - self._last_at) < self._every:
            return False
        self._logger.log(level, msg, *args)
        self._last_reason = reason
        self._last_at = now
        return True

    def reset(self) -> None:
        self._last_reason = None
