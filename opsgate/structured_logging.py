"""
Structured logging (opt-in).

Provides a JSON formatter and a small helper to emit bounded metadata-only
structured events for the approval lifecycle. Default behavior remains plain
text unless explicitly enabled.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_CONFIGURED_LOGGERS: set[str] = set()
_LOCK = threading.RLock()

LOG_FORMAT = "[%(asctime)s] %(name)s %(levelname)s: %(message)s"


def is_structured_logging_enabled() -> bool:
    value = (os.environ.get("OPSGATE_LOG_FORMAT") or "").strip().lower()
    if value == "json":
        return True
    flag = (os.environ.get("OPSGATE_STRUCTURED_LOGS") or "").strip().lower()
    return flag in {"1", "true", "yes", "on"}


class OpsGateJsonFormatter(logging.Formatter):
    """JSON formatter for OpsGate logs (opt-in)."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "opsgate_event", None)
        if event:
            payload["event"] = str(event)
        fields = getattr(record, "opsgate_fields", None)
        if isinstance(fields, dict) and fields:
            payload["fields"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def configure_logger_for_structured_output(logger: logging.Logger) -> bool:
    """
    Replace existing handler formatters with JSON formatter when opt-in is enabled.
    Returns True when formatter was applied this call.
    """
    if not is_structured_logging_enabled():
        return False
    with _LOCK:
        if logger.name in _CONFIGURED_LOGGERS:
            return False
        formatter = OpsGateJsonFormatter()
        for handler in logger.handlers:
            handler.setFormatter(formatter)
        _CONFIGURED_LOGGERS.add(logger.name)
        return True


def setup_logging(debug: bool = False, stream=None) -> logging.Logger:
    """Configure the root `OpsGate` logger for CLI and connector entrypoints."""
    logger = logging.getLogger("OpsGate")
    if not logger.handlers:
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    configure_logger_for_structured_output(logger)
    return logger


def _sanitize_value(value: Any, *, max_len: int = 256) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        if len(value) > max_len:
            return value[:max_len] + "...[truncated]"
        return value
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(v, max_len=max_len) for v in list(value)[:20]]
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for idx, (k, v) in enumerate(value.items()):
            if idx >= 20:
                out["__truncated__"] = True
                break
            out[str(k)] = _sanitize_value(v, max_len=max_len)
        return out
    return str(value)[:max_len]


def emit_structured_log(
    logger: logging.Logger,
    *,
    level: int,
    event: str,
    message: Optional[str] = None,
    fields: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Emit a structured metadata-only log record.

    No-op unless structured logging is enabled; the plain-text log lines
    written next to each call cover the default mode.
    """
    if not is_structured_logging_enabled():
        return
    safe_fields = _sanitize_value(fields or {})
    if not isinstance(safe_fields, dict):
        safe_fields = {"value": safe_fields}
    logger.log(
        level,
        message or event,
        extra={"opsgate_event": event, "opsgate_fields": safe_fields},
    )


def reset_structured_logging_state_for_tests() -> None:
    with _LOCK:
        _CONFIGURED_LOGGERS.clear()
