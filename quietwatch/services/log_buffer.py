"""
quietwatch.services.log_buffer — Live Log Capture for the Dashboard
====================================================================

A thread-safe ring buffer that plugs into Python's ``logging`` framework.
The dashboard reads it through ``GET /api/logs`` and adjusts the capture
level through ``PUT /api/logs/level``.

Context passed via ``extra=`` (``member_id``, ``event_kind``, ``task``)
is kept on each entry, so a dropped event or a failed tick can be traced
back to the member it concerned.

Each process (bot, API) has its own ring buffer.  The bot process has no
HTTP surface, so it also installs :class:`DatabaseLogHandler`, which
persists its records to ``process_logs``; the API serves them through
``GET /api/logs?source=bot``.
"""

from __future__ import annotations

import logging
import sys
import threading
from collections import deque
from datetime import UTC, datetime, timedelta
from queue import Empty, Full, Queue
from typing import Any

from sqlalchemy import Engine, delete, select

from quietwatch.database.engine import get_session
from quietwatch.database.models import ProcessLog

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DEFAULT_CAPACITY = 2000
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# ``extra=`` keys copied from log records into entries
CONTEXT_FIELDS = ("member_id", "event_kind", "task")

# Persisted records
LOG_RETENTION_DAYS = 7
LOG_QUEUE_SIZE = 1000
LOG_BATCH_SIZE = 50
LOG_FLUSH_INTERVAL_SECONDS = 2.0
LOG_PRUNE_INTERVAL = timedelta(hours=1)
# Records from these loggers are never persisted (the writer's own SQL)
UNPERSISTED_LOGGERS = ("sqlalchemy",)

_buffer: LogBuffer | None = None
_lock = threading.Lock()


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


def _record_message(record: logging.LogRecord, formatter: logging.Formatter | None) -> str:
    message = formatter.format(record) if formatter else record.getMessage()
    if record.exc_info and not formatter:
        message = f"{message}\n{logging.Formatter().formatException(record.exc_info)}"
    return message


class LogEntry:
    """One captured log record."""
    __slots__ = ("timestamp", "level", "logger", "message", "context")

    def __init__(
        self,
        timestamp: str,
        level: str,
        logger: str,
        message: str,
        context: dict[str, Any] | None = None,
    ):
        self.timestamp = timestamp
        self.level = level
        self.logger = logger
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "level": self.level,
            "logger": self.logger,
            "message": self.message,
            "context": dict(self.context),
        }


class LogBuffer:
    """Thread-safe ring buffer backed by :class:`collections.deque`."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_entries(
        self,
        tail: int = 200,
        level: str | None = None,
        logger_filter: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return the most recent *tail* entries, optionally filtered.

        *level* is a minimum level; *logger_filter* is a logger-name prefix.
        """
        min_level = getattr(logging, level.upper(), 0) if level else 0

        with self._lock:
            snapshot = list(self._entries)

        results: list[dict[str, Any]] = []
        for entry in snapshot:
            if min_level and getattr(logging, entry.level, 0) < min_level:
                continue
            if logger_filter and not entry.logger.startswith(logger_filter):
                continue
            results.append(entry.to_dict())

        if tail and len(results) > tail:
            results = results[-tail:]
        return results

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)


class RingBufferHandler(logging.Handler):
    """Logging handler that appends records to a :class:`LogBuffer`."""

    def __init__(self, buffer: LogBuffer, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self._buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            context = _record_context(record)
            message = _record_message(record, self.formatter)
            self._buffer.append(LogEntry(
                timestamp=datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                level=record.levelname,
                logger=record.name,
                message=message,
                context=context,
            ))
        except Exception:
            self.handleError(record)


# ---------------------------------------------------------------------------
# Singleton access
# ---------------------------------------------------------------------------
def get_buffer() -> LogBuffer:
    """Return (or create) the process-global log buffer."""
    global _buffer
    if _buffer is None:
        with _lock:
            if _buffer is None:
                _buffer = LogBuffer()
    return _buffer


def install_handler(level: int = logging.DEBUG) -> RingBufferHandler:
    """Attach a ring-buffer handler to the root logger.

    Uvicorn's loggers are switched to propagate so API access and error
    lines land in the buffer too.  Installing twice reuses the existing
    handler.
    """
    root = logging.getLogger()
    for h in root.handlers:
        if isinstance(h, RingBufferHandler):
            h.setLevel(level)
            return h

    handler = RingBufferHandler(get_buffer(), level=level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

    for logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        log = logging.getLogger(logger_name)
        log.propagate = True
        log.setLevel(logging.INFO)

    return handler


def get_logs(
    tail: int = 200,
    level: str | None = None,
    logger_filter: str | None = None,
) -> list[dict[str, Any]]:
    return get_buffer().get_entries(tail=tail, level=level, logger_filter=logger_filter)


def get_current_level() -> str:
    """Effective minimum level being captured to the buffer."""
    root = logging.getLogger()
    for h in root.handlers:
        if isinstance(h, RingBufferHandler):
            return logging.getLevelName(h.level)
    return logging.getLevelName(root.level)


def set_capture_level(level_name: str) -> str:
    """Change the ring-buffer handler's minimum level on the fly.

    Raises ``ValueError`` for an unknown level name.
    """
    level_name = level_name.upper()
    if level_name not in VALID_LEVELS:
        raise ValueError(f"Invalid level: {level_name}. Must be one of {VALID_LEVELS}")

    install_handler(level=getattr(logging, level_name))
    return level_name


# ---------------------------------------------------------------------------
# Persisted records (bot process)
# ---------------------------------------------------------------------------
class DatabaseLogHandler(logging.Handler):
    """Logging handler that writes records to ``process_logs``.

    ``emit`` only enqueues.  A daemon thread writes batches, so a coroutine
    that logs never waits on the database.  When the queue is full new
    records are dropped; the ring buffer still has them.
    """

    def __init__(
        self,
        engine: Engine,
        source: str,
        level: int = logging.INFO,
        *,
        flush_interval: float = LOG_FLUSH_INTERVAL_SECONDS,
    ) -> None:
        super().__init__(level)
        self.engine = engine
        self.source = source
        self.flush_interval = flush_interval
        self._queue: Queue[ProcessLog] = Queue(maxsize=LOG_QUEUE_SIZE)
        self._write_lock = threading.Lock()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_prune: datetime | None = None

    def start(self) -> None:
        """Start the writer thread.  Calling it again is a no-op."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._worker, name=f"{self.source}-log-writer", daemon=True,
        )
        self._thread.start()

    def emit(self, record: logging.LogRecord) -> None:
        if record.name.startswith(UNPERSISTED_LOGGERS):
            return
        try:
            context = _record_context(record)
            row = ProcessLog(
                timestamp=datetime.fromtimestamp(record.created, tz=UTC),
                source=self.source,
                level=record.levelname,
                levelno=record.levelno,
                logger=record.name,
                message=_record_message(record, self.formatter),
                context=context or None,
            )
            self._queue.put_nowait(row)
        except Full:
            return
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        """Write everything queued so far, on the calling thread."""
        self._write(self._drain())

    def close(self) -> None:
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        self.flush()
        super().close()

    # -------------------------------------------------------------------
    # Writer
    # -------------------------------------------------------------------
    def _worker(self) -> None:
        while not self._stopping.is_set():
            try:
                first = self._queue.get(timeout=self.flush_interval)
            except Empty:
                continue
            self._write([first, *self._drain(LOG_BATCH_SIZE - 1)])

    def _drain(self, limit: int | None = None) -> list[ProcessLog]:
        rows: list[ProcessLog] = []
        while limit is None or len(rows) < limit:
            try:
                rows.append(self._queue.get_nowait())
            except Empty:
                break
        return rows

    def _write(self, rows: list[ProcessLog]) -> None:
        if not rows:
            return
        with self._write_lock:
            try:
                with get_session(self.engine) as session:
                    session.add_all(rows)
                    self._prune(session)
            except Exception as exc:
                # Logging from here would feed the queue being written
                print(f"[logging] Failed to persist {len(rows)} log records: {exc}", file=sys.stderr)

    def _prune(self, session) -> None:
        now = datetime.now(UTC)
        if self._last_prune is not None and now - self._last_prune < LOG_PRUNE_INTERVAL:
            return
        session.execute(
            delete(ProcessLog).where(
                ProcessLog.timestamp < now - timedelta(days=LOG_RETENTION_DAYS)
            )
        )
        self._last_prune = now


def install_database_handler(
    engine: Engine, source: str, level: int = logging.INFO,
) -> DatabaseLogHandler:
    """Attach (and start) a :class:`DatabaseLogHandler` on the root logger.

    Installing twice reuses the existing handler.
    """
    root = logging.getLogger()
    for h in root.handlers:
        if isinstance(h, DatabaseLogHandler):
            h.setLevel(level)
            return h

    handler = DatabaseLogHandler(engine, source, level=level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    handler.start()
    return handler


def read_persisted_logs(
    engine: Engine,
    source: str | None = None,
    tail: int = 200,
    level: str | None = None,
    logger_filter: str | None = None,
) -> list[dict[str, Any]]:
    """Most recent persisted records, oldest first, shaped like ring-buffer entries."""
    stmt = select(ProcessLog)
    if source:
        stmt = stmt.where(ProcessLog.source == source)
    if level:
        stmt = stmt.where(ProcessLog.levelno >= getattr(logging, level.upper(), 0))
    if logger_filter:
        stmt = stmt.where(ProcessLog.logger.startswith(logger_filter))
    stmt = stmt.order_by(ProcessLog.timestamp.desc(), ProcessLog.id.desc()).limit(tail)

    with get_session(engine) as session:
        rows = list(session.scalars(stmt).all())

    return [
        {
            "timestamp": row.timestamp.isoformat(),
            "level": row.level,
            "logger": row.logger,
            "message": row.message,
            "context": dict(row.context or {}),
            "source": row.source,
        }
        for row in reversed(rows)
    ]
