"""Log-file setup shared by the CLI, the supervisor and the hub process."""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

from paired.config import Settings

_HANDLER_NAME = "paired-file"
_LEVEL_LABELS = {"WARNING": "WARN", "CRITICAL": "ERROR"}


class LineFormatter(logging.Formatter):
    """Render ``[2026-01-01T00:00:00+00:00] [INFO] message`` lines."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds")
        level = _LEVEL_LABELS.get(record.levelname, record.levelname)
        line = f"[{timestamp}] [{level}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(
    settings: Settings,
    *,
    log_path: Path | None = None,
    to_stderr: bool = False,
) -> logging.Logger:
    """Attach the log-file handler to the ``paired`` logger once per process."""

    logger = logging.getLogger("paired")
    logger.setLevel(settings.log_level)
    target = log_path or settings.log_path
    if any(handler.get_name() == _HANDLER_NAME for handler in logger.handlers):
        return logger

    formatter = LineFormatter()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(target, encoding="utf-8")
    except OSError as error:
        print(f"Failed to open log file {target}: {error}", file=sys.stderr)
    else:
        file_handler.set_name(_HANDLER_NAME)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if to_stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)
    return logger
