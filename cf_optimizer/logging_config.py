"""
Logging setup for applications embedding the optimizer.

The library itself only creates module loggers (logging.getLogger(__name__))
and never configures handlers; call setup_logging() once from the host
application or a notebook.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Union

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def __init__(self, extra_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level":     record.levelname,
            "logger":    record.name,
            "message":   record.getMessage(),
        }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        data.update(self.extra_fields)
        return json.dumps(data, default=str)


def setup_logging(
    log_file: Optional[Union[str, Path]] = None,
    log_level: int = logging.INFO,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    enable_console: bool = True,
    structured_output: bool = False,
    log_format: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        log_file: Path to a rotating log file (None = console only)
        log_level: Logging level (default INFO)
        max_bytes: File size before rotation
        backup_count: Rotated files to keep
        enable_console: Log to stderr
        structured_output: JSON lines instead of plain text
        log_format: Custom format string for plain-text output

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers = []

    if structured_output:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(log_format or DEFAULT_LOG_FORMAT, DEFAULT_DATE_FORMAT)

    if enable_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        root.addHandler(console)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=max_bytes,
                                      backupCount=backup_count, encoding="utf-8")
        handler.setFormatter(formatter)
        root.addHandler(handler)

    return root
