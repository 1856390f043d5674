"""
JSON-lines logging for functions and clients.

Every line carries service/env/version, the bound request id (trigger event id
or a client call id), an `event_type` and a Cloud Logging severity. Extra
fields passed to `log_event` are merged into the line as-is.

Credentials are never logged: callers record token presence, not token values.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("zonemap_request_id", default=None)

# Attributes every LogRecord has; anything else on a record came from `extra`.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}
_PAYLOAD_KEYS = frozenset({"timestamp", "severity", "service", "env", "version", "request_id", "event_type", "logger"})

_SEVERITIES = ("DEFAULT", "DEBUG", "INFO", "NOTICE", "WARNING", "ERROR", "CRITICAL", "ALERT", "EMERGENCY")
_SEVERITY_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


def _clean_text(v: Any, *, max_len: int = 2000) -> str:
    s = "" if v is None else str(v)
    s = " ".join(s.splitlines()).strip()
    return s if len(s) <= max_len else s[: max_len - 1] + "…"


def _first_env(*names: str, default: str) -> str:
    for name in names:
        v = (os.getenv(name) or "").strip()
        if v:
            return _clean_text(v, max_len=128)
    return default


def _normalize_severity(level: str | int | None) -> str:
    if isinstance(level, int):
        level = logging.getLevelName(level)
    s = _clean_text(level or "INFO", max_len=16).upper()
    s = _SEVERITY_ALIASES.get(s, s)
    return s if s in _SEVERITIES else "INFO"


def default_service_name() -> str:
    return _first_env("SERVICE_NAME", "FUNCTION_TARGET", "K_SERVICE", default="zonemap")


def default_env_name() -> str:
    return _first_env("ENVIRONMENT", "ENV", default="unknown")


def default_version() -> str:
    return _first_env("APP_VERSION", "K_REVISION", default="unknown")


def get_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


@contextmanager
def bind_request_id(*, request_id: str | None = None) -> Iterator[str]:
    """
    Bind a correlation id (trigger event id, or a fresh uuid) for the block.
    """
    rid = _clean_text(request_id, max_len=128) or uuid.uuid4().hex
    token = _REQUEST_ID.set(rid)
    try:
        yield rid
    finally:
        _REQUEST_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, service: str | None = None, env: str | None = None, version: str | None = None) -> None:
        super().__init__()
        self._static = {
            "service": service or default_service_name(),
            "env": env or default_env_name(),
            "version": version or default_version(),
        }

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": _normalize_severity(record.levelname),
            **self._static,
            "request_id": get_request_id(),
            "event_type": getattr(record, "event_type", None) or "log",
            "message": _clean_text(record.getMessage(), max_len=4000),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]

        for k, v in vars(record).items():
            if k in _RECORD_ATTRS or k in _PAYLOAD_KEYS or k.startswith("_"):
                continue
            payload[k] = v

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def init_structured_logging(
    *,
    service: str | None = None,
    env: str | None = None,
    version: str | None = None,
    level: str | int | None = None,
) -> None:
    """
    Route the root logger to stdout as JSON lines. Repeated calls replace the handler.
    """
    lvl = level or os.getenv("LOG_LEVEL", "INFO").upper()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=service, env=env, version=version))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)
    logging.captureWarnings(True)


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    exc_info: bool = False,
    **fields: Any,
) -> None:
    """
    Emit a semantic event with a stable `event_type`; `fields` become top-level keys.
    """
    lvl = getattr(logging, _normalize_severity(severity), logging.INFO)
    logger.log(lvl, message or event_type, exc_info=exc_info, extra={"event_type": event_type, **fields})
