"""
EDMS Logging System — Structured JSON file-based event logging with async queue.

Implements:
- FileLogger: Per-object-type, per-category log files (daily rotation)
- AsyncLogQueue: In-memory queue with background flush (100ms / 50 entries)
- Log entry builders for document, share, auth and system events

The audit_logs table stays the authoritative record; these files are the
operational view of the same events.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

from edms.engine.context import current_request_id

logger = logging.getLogger("edms.engine.logging")

# Valid object types and their permitted categories
OBJECT_TYPE_CATEGORIES = {
    "documents": ["execution", "security"],
    "shares": ["execution", "security"],
    "tags": ["execution"],
    "auth": ["execution", "security"],
    "system": ["execution", "security"],
}


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Writes structured JSON log entries to per-object-type, per-category files.
    Files rotate daily: logs/{object_type}/{category}/{YYYY-MM-DD}.jsonl

    Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / obj_type / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Write a batch of log entries, grouping by file path."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            grouped[str(self._resolve_path(entry.object_type, entry.category))].append(entry)

        for file_path, batch in grouped.items():
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    for entry in batch:
                        f.write(entry.to_json())
                        f.write("\n")

    def _resolve_path(self, object_type: str, category: str) -> Path:
        today = datetime.now(timezone.utc).date().isoformat()
        return self._log_dir / object_type / category / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def query(
        self,
        object_type: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Query log entries for a given object_type/category.

        Args:
            start_date: Earliest date to include (defaults to 7 days before end_date).
            end_date: Latest date to include (defaults to today, UTC).
            filters: Exact-equality matches on top-level keys; all must match.
            limit: Max number of entries to return.

        Returns:
            List of parsed log-entry dicts, newest first.
        """
        if end_date is None:
            end_date = datetime.now(timezone.utc).date()
        if start_date is None:
            start_date = end_date - timedelta(days=7)

        log_base = self._log_dir / object_type / category
        if not log_base.exists():
            return []

        results: List[Dict[str, Any]] = []
        current = end_date
        while current >= start_date:
            file_path = log_base / f"{current.isoformat()}.jsonl"
            if file_path.exists():
                # Lines are chronological within a day; newest day first.
                day = self._read_jsonl(file_path, filters)
                day.reverse()
                results.extend(day)
                if len(results) >= limit:
                    break
            current -= timedelta(days=1)
        return results[:limit]

    @staticmethod
    def _read_jsonl(path: Path, filters: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if filters and not all(data.get(k) == v for k, v in filters.items()):
                        continue
                    entries.append(data)
        except OSError as exc:
            logger.warning("Could not read log file %s: %s", path, exc)
        return entries


class AsyncLogQueue:
    """
    In-memory queue with a background flush thread.

    Entries are pushed non-blocking. A background thread flushes to FileLogger
    every flush_interval_ms OR when flush_batch_size entries accumulate,
    whichever comes first.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._logger = file_logger
        self._flush_interval = flush_interval_ms / 1000.0
        self._flush_batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._running = False
        self._flush_thread: Optional[threading.Thread] = None
        self._dropped_count = 0

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="edms-log-flush",
            daemon=True,
        )
        self._flush_thread.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread and drain remaining entries."""
        self._running = False
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=timeout)
        self._drain()
        logger.info("Async log queue stopped (dropped: %d)", self._dropped_count)

    def push(self, entry: LogEntry) -> bool:
        """Returns True if queued, False if dropped (queue full)."""
        try:
            self._queue.put_nowait(entry)
            return True
        except Full:
            self._dropped_count += 1
            return False

    def _flush_loop(self) -> None:
        while self._running:
            batch = self._collect_batch()
            if batch:
                try:
                    self._logger.write_batch(batch)
                except OSError as e:
                    logger.error("Log flush error: %s", e)
            else:
                time.sleep(self._flush_interval)

    def _collect_batch(self) -> List[LogEntry]:
        batch: List[LogEntry] = []
        deadline = time.monotonic() + self._flush_interval

        while len(batch) < self._flush_batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.01)))
            except Empty:
                if batch:
                    break
        return batch

    def _drain(self) -> None:
        batch: List[LogEntry] = []
        while True:
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if batch:
            try:
                self._logger.write_batch(batch)
            except OSError as e:
                logger.error("Log drain error: %s", e)

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    object_ref: str,
    user_id: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
        "object_ref": object_ref,
    }
    request_id = current_request_id()
    if request_id:
        entry["request_id"] = request_id
    if user_id is not None:
        entry["user_id"] = user_id
    entry.update({k: v for k, v in extra.items() if v is not None})
    return entry


def log_document_event(
    event: str,
    document_id: Optional[str],
    user_id: str,
    role: Optional[str] = None,
    details: Optional[str] = None,
) -> LogEntry:
    """Build a document lifecycle event (upload, read, update, delete, download)."""
    data = _base_entry(
        event=event,
        level="INFO",
        object_ref=document_id or "-",
        user_id=user_id,
        role=role,
        details=details,
    )
    return LogEntry("documents", "execution", data)


def log_tag_event(event: str, tag_name: str, user_id: str) -> LogEntry:
    return LogEntry("tags", "execution", _base_entry(event, "INFO", tag_name, user_id=user_id))


def log_share_event(
    event: str,
    document_id: str,
    user_id: str,
    shared_with_user_id: Optional[str] = None,
    permission_level: Optional[str] = None,
    share_id: Optional[str] = None,
) -> LogEntry:
    data = _base_entry(
        event=event,
        level="INFO",
        object_ref=document_id,
        user_id=user_id,
        shared_with_user_id=shared_with_user_id,
        permission_level=permission_level,
        share_id=share_id,
    )
    return LogEntry("shares", "execution", data)


def log_security_event(
    event: str,
    object_ref: str,
    object_type: str,
    user_id: str,
    role: Optional[str],
    action: str,
    reason: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Build a security event log entry (denials)."""
    data = _base_entry(
        event=event,
        level=level,
        object_ref=object_ref,
        user_id=user_id,
        role=role,
        action=action,
        reason=reason,
    )
    return LogEntry(
        object_type if object_type in OBJECT_TYPE_CATEGORIES else "system", "security", data
    )


def log_auth_event(
    event: str,
    email: str,
    success: bool,
    user_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> LogEntry:
    data = _base_entry(
        event=event,
        level="INFO" if success else "WARNING",
        object_ref=email,
        user_id=user_id,
        success=success,
        reason=reason,
    )
    return LogEntry("auth", "execution" if success else "security", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event log entry (startup, shutdown, config changes)."""
    data = _base_entry(event=event, level=level, object_ref="system")
    if details:
        data["details"] = details
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Convenience: Global Log Queue Singleton
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Initialize the global async log queue."""
    global _global_queue
    if _global_queue is not None:
        _global_queue.stop()
    _global_queue = AsyncLogQueue(
        file_logger=FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push a log entry to the global queue. Non-blocking."""
    if _global_queue is None:
        logger.debug("Log queue not initialized — %s entry dropped", entry.object_type)
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Flush and stop the global log queue."""
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None
