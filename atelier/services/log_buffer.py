"""
atelier.services.log_buffer — Recent Log Records for Moderators
================================================================

Keeps the last few thousand log records of this process in memory so
moderators can follow job runs from ``GET /api/mod/logs`` without shell
access to the pod.

Each record gets a monotonically increasing ``seq``; a client polls with
``since=<last seq>`` to receive only newer records.  Records logged with
``extra={"job": ...}`` keep the job name, which the endpoint can filter on.
Nothing is persisted; a restart starts with an empty buffer.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

DEFAULT_CAPACITY = 2000
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_buffer: LogBuffer | None = None
_buffer_lock = threading.Lock()


@dataclass(frozen=True, slots=True)
class LogEntry:
    seq: int
    timestamp: str
    level: str
    logger: str
    message: str
    job: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class LogBuffer:
    """Bounded, thread-safe store of :class:`LogEntry` objects."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._seq = itertools.count(1)

    def add(self, record: logging.LogRecord, message: str) -> LogEntry:
        with self._lock:
            entry = LogEntry(
                seq=next(self._seq),
                timestamp=datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                level=record.levelname,
                logger=record.name,
                message=message,
                job=getattr(record, "job", None),
            )
            self._entries.append(entry)
        return entry

    def query(
        self,
        *,
        limit: int = 200,
        level: str | None = None,
        since: int = 0,
        job: str | None = None,
        logger_prefix: str | None = None,
    ) -> list[dict]:
        """Newest *limit* entries matching every given filter, oldest first."""
        min_level = logging.getLevelName(level.upper()) if level else logging.NOTSET
        if not isinstance(min_level, int):
            raise ValueError(f"Invalid level: {level}")

        with self._lock:
            snapshot = list(self._entries)

        matched = [
            entry.to_dict()
            for entry in snapshot
            if entry.seq > since
            and logging.getLevelName(entry.level) >= min_level
            and (job is None or entry.job == job)
            and (logger_prefix is None or entry.logger.startswith(logger_prefix))
        ]
        return matched[-limit:] if limit else matched

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class BufferHandler(logging.Handler):
    """Logging handler feeding a :class:`LogBuffer`."""

    def __init__(self, buffer: LogBuffer, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            self.buffer.add(record, message)
        except Exception:
            self.handleError(record)


# ---------------------------------------------------------------------------
# Process-wide buffer
# ---------------------------------------------------------------------------
def get_buffer() -> LogBuffer:
    global _buffer
    with _buffer_lock:
        if _buffer is None:
            _buffer = LogBuffer()
        return _buffer


def _installed_handler() -> BufferHandler | None:
    for handler in logging.getLogger().handlers:
        if isinstance(handler, BufferHandler):
            return handler
    return None


def install_handler(level: int = logging.INFO) -> BufferHandler:
    """Attach the buffer handler to the root logger once.

    Uvicorn's loggers are switched to propagate so request and server
    errors land in the buffer too.  Calling this again returns the
    handler already installed.
    """
    handler = _installed_handler()
    if handler is not None:
        return handler

    handler = BufferHandler(get_buffer(), level=level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.getLogger().addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).propagate = True

    return handler


def get_capture_level() -> str:
    handler = _installed_handler()
    if handler is None:
        return logging.getLevelName(logging.getLogger().level)
    return logging.getLevelName(handler.level)


def set_capture_level(level_name: str) -> str:
    """Change the minimum level captured into the buffer; returns it."""
    level_name = level_name.upper()
    if level_name not in VALID_LEVELS:
        raise ValueError(f"Invalid level: {level_name}. Must be one of {VALID_LEVELS}")
    numeric = logging.getLevelName(level_name)
    handler = _installed_handler() or install_handler(level=numeric)
    handler.setLevel(numeric)
    return level_name
