"""Application logging configuration utilities."""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from docchat.config import get_settings

AUDIT_LOGGER_NAME = "docchat.audit"

# Chatty dependencies that would otherwise flood the JSON stream at INFO.
_QUIET_LOGGERS = ("chromadb", "httpx", "urllib3", "sentence_transformers", "PyPDF2")


class MinimalJSONFormatter(logging.Formatter):
    """Serialize log records to a compact JSON string."""

    _RESERVED_KEYS = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def __init__(self, max_field_chars: Optional[int] = None) -> None:
        super().__init__()
        self.max_field_chars = max_field_chars

    def _clip(self, value: Any) -> Any:
        if self.max_field_chars is not None and isinstance(value, str) and len(value) > self.max_field_chars:
            return value[: self.max_field_chars] + "..."
        return value

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z")
        )

        log_record: dict[str, Any] = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
        }

        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        else:
            message = record.getMessage()
            if message:
                log_record["message"] = message

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in self._RESERVED_KEYS or key.startswith("_"):
                continue
            log_record[key] = value

        if self.max_field_chars is not None:
            log_record = {
                key: value if key == "exc_info" else self._clip(value) for key, value in log_record.items()
            }
        return json.dumps(log_record, ensure_ascii=False, default=str)


def configure_logging(level: Optional[str] = None, log_dir: Path | str | None = None) -> None:
    """Configure JSON logging for the service and the audit trail.

    ``level`` and ``log_dir`` default to ``LOG_LEVEL`` and ``LOG_DIR``. The
    console stream clips long string fields to ``LOG_MAX_FIELD_CHARS`` while
    the audit file keeps questions in full.
    """

    settings = get_settings()
    level = (level or settings.log_level).upper()
    log_path = Path(log_dir if log_dir is not None else settings.log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": MinimalJSONFormatter, "max_field_chars": settings.log_max_field_chars},
                "audit": {"()": MinimalJSONFormatter},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                },
                "audit": {
                    "class": "logging.FileHandler",
                    "filename": str(log_path / "audit.log"),
                    "mode": "a",
                    "encoding": "utf-8",
                    "formatter": "audit",
                },
            },
            "root": {
                "level": level,
                "handlers": ["default"],
            },
            "loggers": {
                AUDIT_LOGGER_NAME: {
                    "level": "INFO",
                    "handlers": ["audit"],
                    "propagate": False,
                },
                **{name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
            },
        }
    )


__all__ = ["AUDIT_LOGGER_NAME", "MinimalJSONFormatter", "configure_logging"]
