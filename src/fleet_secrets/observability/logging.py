"""
fleet-secrets — structured logging

File: src/fleet_secrets/observability/logging.py
Last updated: 2026-10-19

Purpose
- Queue-backed JSON-lines logging for one CLI run, with correlation fields
  (``run_id``, ``target_id``, ``command``) carried by ``contextvars``.
- Route ``structlog`` decision events emitted by the engine, isolation layer,
  and rotation coordinator into the same stdlib pipeline.

Functional requirements
- Every record passes through the redactor before it is written.
- Records are dropped, never blocked on, when the queue is full.
- Log lines carry key names, sources, statuses and target ids only.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import sys
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Final, Literal

import structlog

from fleet_secrets.constants import DEFAULT_LOG_DIR
from fleet_secrets.domain.models import JSONValue
from fleet_secrets.security.redaction import REDACTED_VALUE, redact_value

LogRedactor = Callable[[JSONValue], JSONValue]
LogFormat = Literal["json", "text"]

_LOG_FILENAME: Final[str] = "fleet-secrets.jsonl"
_LOGGER_NAME: Final[str] = "fleet_secrets"
_QUEUE_SIZE: Final[int] = 4096

_CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "target_id", "command")
# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    {*vars(logging.makeLogRecord({})), "message", "asctime", "taskName", "correlation"}
)

_EMPTY: Final[Mapping[str, str]] = MappingProxyType({})
_CORRELATION: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "fleet_secrets_correlation", default=_EMPTY
)

_ACTIVE_LOCK = threading.Lock()
_ACTIVE_HANDLE: StructuredLoggingHandle | None = None
_ATEXIT_HOOKED = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Settings for one queue-backed logging session.

    Records land in ``<base_log_dir>/<run_id>/<log_filename>``.
    """

    run_id: str
    base_log_dir: Path | str = DEFAULT_LOG_DIR
    logger_name: str = _LOGGER_NAME
    level: int | str = "INFO"
    log_format: LogFormat = "json"
    queue_size: int = _QUEUE_SIZE
    log_filename: str = _LOG_FILENAME
    log_to_stderr: bool = False
    redactor: LogRedactor | None = None


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
    log_to_stderr: bool = False,
) -> logging.Logger:
    """Start a session from an ``[observability]`` table and return its logger.

    ``redact_secrets = false`` disables redaction, which is only useful while
    debugging the tool itself against throwaway keys.
    """

    section = observability_config or {}
    level = section.get("log_level", "INFO")
    base = log_dir if log_dir is not None else section.get("log_dir", DEFAULT_LOG_DIR)
    config = LoggingConfig(
        run_id=run_id,
        base_log_dir=base if isinstance(base, (str, Path)) else DEFAULT_LOG_DIR,
        level=level if isinstance(level, (int, str)) else "INFO",
        log_format="text" if section.get("log_format") == "text" else "json",
        log_to_stderr=log_to_stderr,
        redactor=None if section.get("redact_secrets", True) else _passthrough,
    )
    return setup_structured_logging(config).logger


def configure_structlog() -> None:
    """Send ``structlog`` events through stdlib logging as message + extra fields."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Stamps the caller's correlation context on records; counts records lost to a full queue."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._lock = threading.Lock()
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread runs in its own context.
        record.correlation = dict(_CORRELATION.get())
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._lock:
                self.dropped += 1


class _EventFormatter(logging.Formatter):
    def __init__(self, *, run_id: str, redactor: LogRedactor, log_format: LogFormat) -> None:
        super().__init__()
        self._run_id = run_id
        self._redact = redactor
        self._log_format = log_format

    def format(self, record: logging.LogRecord) -> str:
        event = self._event(record)
        if self._log_format == "text":
            return _text_line(event)
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _event(self, record: logging.LogRecord) -> dict[str, JSONValue]:
        stamp = datetime.fromtimestamp(record.created, tz=UTC)
        event: dict[str, JSONValue] = {
            "timestamp": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": self._clean_text(record.getMessage()),
            "run_id": self._run_id,
        }
        captured = getattr(record, "correlation", None)
        if isinstance(captured, Mapping):
            event.update((k, v) for k, v in captured.items() if isinstance(v, str) and v)
        for key in _CORRELATION_KEYS:
            explicit = getattr(record, key, None)
            if isinstance(explicit, str) and explicit.strip():
                event[key] = explicit.strip()

        extras = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES
            and key not in _CORRELATION_KEYS
            and not key.startswith("_")
        }
        if extras:
            event["fields"] = self._redact(extras)
        if record.exc_info:
            event["exception"] = self._clean_text(self.formatException(record.exc_info))
        return event

    def _clean_text(self, text: str) -> str:
        redacted = self._redact(text)
        if isinstance(redacted, str):
            return redacted
        return "" if redacted is None else json.dumps(redacted, sort_keys=True)


@dataclass(slots=True, eq=False)
class StructuredLoggingHandle:
    """One running logging session; ``shutdown`` drains the queue and closes the sinks."""

    logger: logging.Logger
    run_id: str
    log_path: Path
    _queue: queue.Queue[logging.LogRecord]
    _queue_handler: _DroppingQueueHandler
    _sinks: tuple[logging.Handler, ...]
    _listener: logging.handlers.QueueListener
    _closed: bool = False
    _close_lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while self._queue.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            self.flush(timeout_seconds=timeout_seconds)
            # stop() enqueues a sentinel and joins, so every record is written first.
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Start a logging session, replacing any session that is still running."""

    shutdown_logging()

    run_id = _require_text(config.run_id, "run_id")
    logger_name = _require_text(config.logger_name, "logger_name")
    filename = _require_text(config.log_filename, "log_filename")
    if Path(filename).name != filename:
        raise ValueError("log_filename must not include path separators")
    if isinstance(config.queue_size, bool) or not isinstance(config.queue_size, int):
        raise ValueError("queue_size must be a positive integer")
    if config.queue_size < 1:
        raise ValueError("queue_size must be a positive integer")
    level = _level_number(config.level)

    log_path = Path(config.base_log_dir) / run_id / filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _EventFormatter(
        run_id=run_id,
        redactor=config.redactor or default_log_redactor,
        log_format=config.log_format,
    )
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler(sys.stderr))
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        _queue=log_queue,
        _queue_handler=queue_handler,
        _sinks=tuple(sinks),
        _listener=listener,
    )
    global _ACTIVE_HANDLE, _ATEXIT_HOOKED
    with _ACTIVE_LOCK:
        _ACTIVE_HANDLE = handle
        if not _ATEXIT_HOOKED:
            atexit.register(shutdown_logging)
            _ATEXIT_HOOKED = True
    return handle


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None, *, timeout_seconds: float = 2.0
) -> None:
    """Drain and close ``handle`` (default: the active run). Safe to call twice."""

    global _ACTIVE_HANDLE
    with _ACTIVE_LOCK:
        target = handle or _ACTIVE_HANDLE
        if target is _ACTIVE_HANDLE:
            _ACTIVE_HANDLE = None
    if target is not None:
        target.shutdown(timeout_seconds=timeout_seconds)


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for log records emitted in scope.

    ``None`` unbinds a field inherited from an outer scope.
    """

    bound = get_correlation_context()
    for name, value in fields.items():
        if value is None:
            bound.pop(name, None)
        else:
            bound[name] = _require_text(value, f"correlation field {name!r}")
    token = _CORRELATION.set(MappingProxyType(bound))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def default_log_redactor(value: JSONValue) -> JSONValue:
    return _jsonable(redact_value(value))


def _require_text(value: object, what: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{what} must be a string, got {type(value).__name__}")
    if not value.strip():
        raise ValueError(f"{what} must not be empty")
    return value.strip()


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    known = logging.getLevelNamesMapping()
    name = level.strip().upper() if isinstance(level, str) else ""
    if name not in known:
        raise ValueError(f"unsupported logging level {level!r}")
    return known[name]


def _text_line(event: Mapping[str, JSONValue]) -> str:
    parts = [f"{event['timestamp']} {event['level']:<7} {event['logger']}: {event['message']}"]
    parts.extend(f"{key}={event[key]}" for key in _CORRELATION_KEYS if key in event)
    fields = event.get("fields")
    if isinstance(fields, dict):
        for key in sorted(fields):
            value = fields[key]
            rendered = value if isinstance(value, str) else json.dumps(value, sort_keys=True)
            parts.append(f"{key}={rendered}")
    line = " ".join(parts)
    return f"{line}\n{event['exception']}" if "exception" in event else line


def _jsonable(value: object) -> JSONValue:
    """Coerce ``value`` into something ``json.dumps`` accepts; unknown objects become ``repr``."""

    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else REDACTED_VALUE
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(item) for item in value), key=repr)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return repr(value)


def _passthrough(value: JSONValue) -> JSONValue:
    return value


__all__ = [
    "LogFormat",
    "LogRedactor",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
