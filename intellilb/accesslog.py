"""Structured JSON access logging to stdout and an optional file."""

from __future__ import annotations

import json
import logging
import sys
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import IO, Any, Optional

__all__ = ["AccessLog", "init_file_logger", "close_file_logger", "info", "error"]

_log = logging.getLogger(__name__)

# (attribute, JSON key); the first three are always written.
_KEYS = (
    ("time", "time"),
    ("level", "level"),
    ("message", "msg"),
    ("request_id", "request_id"),
    ("client_ip", "client_ip"),
    ("method", "method"),
    ("path", "path"),
    ("priority", "priority"),
    ("server_name", "server_name"),
    ("target", "target"),
    ("status_code", "status_code"),
    ("latency_ms", "latency_ms"),
    ("attempt", "attempt"),
    ("backoff_ms", "backoff_ms"),
    ("error", "error"),
)
_ALWAYS = {"time", "level", "msg"}

_ESCAPES = {
    ord("<"): "\\u003c",
    ord(">"): "\\u003e",
    ord("&"): "\\u0026",
    0x2028: "\\u2028",
    0x2029: "\\u2029",
}


def _number(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


@dataclass
class AccessLog:
    """One access log entry."""

    time: str = ""
    level: str = ""
    message: str = ""
    request_id: str = ""
    client_ip: str = ""
    method: str = ""
    path: str = ""
    priority: str = ""
    server_name: str = ""
    target: str = ""
    status_code: int = 0
    latency_ms: float = 0.0
    attempt: int = 0
    backoff_ms: int = 0
    error: str = ""

    def to_json(self) -> str:
        """Encode as one compact JSON line, leaving out empty optional fields."""
        record = {}
        for attr, key in _KEYS:
            value = getattr(self, attr)
            if key in _ALWAYS or value:
                record[key] = _number(value)
        text = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
        return text.translate(_ESCAPES)


class _FileSink:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handle: Optional[IO[str]] = None

    def open(self, path: str) -> None:
        handle = open(path, "a", encoding="utf-8")
        with self._lock:
            previous, self._handle = self._handle, handle
        if previous is not None:
            previous.close()

    def close(self) -> None:
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.close()

    def write(self, line: str) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.write(line + "\n")
                self._handle.flush()


_sink = _FileSink()
_stdout_lock = threading.Lock()


def init_file_logger(path: str) -> None:
    """Open ``path`` in append mode as the access log file."""
    _sink.open(path)
    _log.info("[LOGGING] Access log file initialized: %s", path)


def close_file_logger() -> None:
    """Close the access log file, if one is open."""
    _sink.close()


def _timestamp() -> str:
    now = datetime.now(timezone.utc)
    fraction = f"{now.microsecond:06d}".rstrip("0")
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S")
    return f"{stamp}.{fraction}Z" if fraction else f"{stamp}Z"


def _emit(entry: AccessLog) -> None:
    line = entry.to_json()
    with _stdout_lock:
        sys.stdout.write(line + "\n")
    _sink.write(line)


def info(entry: AccessLog) -> None:
    """Log an entry, stamped with the current time; level defaults to INFO."""
    _emit(replace(entry, time=_timestamp(), level=entry.level or "INFO"))


def error(entry: AccessLog) -> None:
    """Log an entry at level ERROR, stamped with the current time."""
    _emit(replace(entry, time=_timestamp(), level="ERROR"))