"""
Logging helper service.

Structured JSON logging for the wizard core and the reference app. A context
variable carries the correlation id (wizard session or HTTP request) so every
record emitted while handling one of them can be traced back to it.
"""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator, Optional
import json
import logging


_FILE_HANDLER_TAG = "stratwiz_file_handler"

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Get the correlation id of the wizard session or request being handled."""
    return correlation_id_ctx.get("")


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind ``correlation_id`` to every log record emitted inside the block."""
    token = correlation_id_ctx.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_ctx.reset(token)


class StructuredFormatter(logging.Formatter):
    """JSON log formatter that includes the correlation id."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        cid = correlation_id_ctx.get("")
        if cid:
            payload["correlation_id"] = cid
        if record.exc_info and record.exc_info[1]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """
    Reconfigure root logger to use structured JSON formatting.
    Preserves existing file handlers but upgrades their formatter.
    """
    root = logging.getLogger()
    level = getattr(logging, log_level.upper(), logging.INFO)
    root.setLevel(level)

    formatter = StructuredFormatter()
    for handler in root.handlers:
        handler.setFormatter(formatter)

    # Add console handler if none exists
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in root.handlers):
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        root.addHandler(console)


def configure_file_logging(log_directory: str) -> Path:
    """Configure root logger to also write into a backend log file."""
    log_dir = Path(log_directory).expanduser().resolve()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "stratwiz.log"

    root_logger = logging.getLogger()
    existing = next((h for h in root_logger.handlers if getattr(h, "name", "") == _FILE_HANDLER_TAG), None)
    if existing:
        root_logger.removeHandler(existing)
        existing.close()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.name = _FILE_HANDLER_TAG
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(file_handler)
    if root_logger.level > logging.INFO:
        root_logger.setLevel(logging.INFO)
    return log_file


def configure_logging(log_level: str = "INFO", log_directory: Optional[str] = None) -> None:
    """Structured console logging, plus a log file when a directory is given."""
    configure_structured_logging(log_level)
    if log_directory:
        configure_file_logging(log_directory)
