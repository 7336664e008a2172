"""Console + rotating-file logging for optimizer runs."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

DEFAULT_LOG_DIR = os.path.join("storage", "logs")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class SafeRotatingFileHandler(RotatingFileHandler):
    """Rotating handler that tolerates missing rollover files."""

    def doRollover(self) -> None:  # type: ignore[override]
        if self.stream:
            try:
                self.stream.close()
            finally:
                self.stream = None

        for i in range(self.backupCount - 1, 0, -1):
            sfn = f"{self.baseFilename}.{i}"
            dfn = f"{self.baseFilename}.{i + 1}"
            try:
                os.replace(sfn, dfn)
            except OSError:
                continue

        try:
            os.replace(self.baseFilename, f"{self.baseFilename}.1")
        except OSError:
            pass

        if not self.delay:
            self.stream = self._open()


def resolve_level(level: Optional[str] = None) -> int:
    name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    return getattr(logging, name, logging.INFO)


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
    filename: str = "hyperopt.log",
) -> logging.Logger:
    """Configure console + rotating file logging (idempotent per file)."""

    log_level = resolve_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    )
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    directory = log_dir or DEFAULT_LOG_DIR
    try:
        os.makedirs(directory, exist_ok=True)
    except OSError:
        # Directory creation issues should not stop execution; logging remains console-only.
        return root_logger

    file_path = os.path.abspath(os.path.join(directory, filename))
    if not any(isinstance(h, RotatingFileHandler) and getattr(h, "baseFilename", "") == file_path for h in root_logger.handlers):
        try:
            file_handler = SafeRotatingFileHandler(file_path, maxBytes=5 * 1024 * 1024, backupCount=3)
        except OSError:
            # File handler is best-effort; fall back to console only if it fails.
            return root_logger
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return root_logger


__all__ = ["setup_logging", "resolve_level", "SafeRotatingFileHandler"]
