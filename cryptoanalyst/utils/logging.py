"""
Logging setup shared by the API server, the CLI and the orchestrators.

Human-readable lines on the console by default; ``LOG_JSON=true`` switches to
one JSON object per record with every ``extra=`` field promoted to the top
level. Fields that could carry wallet keys or webhook secrets are masked before
they reach a handler.

Usage:
    from cryptoanalyst.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    log = get_logger(__name__)
    log.info("[PAYMENT CREATED]", extra={"payment_id": "..."})
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "extra"}

REDACTED = "***"
_SENSITIVE_FIELDS = frozenset({"private_key", "secret", "webhook_secret", "api_key", "x_signature"})


def _json_default(value: Any) -> str:
    return str(value)


def _redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: REDACTED if key.lower() in _SENSITIVE_FIELDS else value for key, value in fields.items()}


def render_json(record: logging.LogRecord) -> str:
    """Serialize a record and its ``extra=`` fields to a single JSON line."""
    fields: Dict[str, Any] = {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        fields.update(nested)

    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
        **_redact(fields),
    }
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    return json.dumps(payload, default=_json_default)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return render_json(record)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
) -> None:
    """
    Install the root handler for the API server or a CLI command.

    Parameters
    ----------
    level : str
        Level name from ``LOG_LEVEL`` (e.g., "DEBUG", "INFO").
    json_logs : bool
        Emit JSON lines (``LOG_JSON``) instead of console lines.
    """
    formatter_name = "json" if json_logs else "console"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {
                    "()": JsonFormatter,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": formatter_name,
                    "level": level,
                }
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
            "loggers": {
                "httpx": {"level": "WARNING"},
                "httpcore": {"level": "WARNING"},
            },
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "JsonFormatter", "render_json", "REDACTED"]
