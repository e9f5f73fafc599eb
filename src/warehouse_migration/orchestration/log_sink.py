"""
GCS Audit Log Sink

A logging handler that keeps every record emitted by the migration engine
during one run, grouped by the table being processed, and uploads each
table's lines to GCS as a single blob:

    gs://<bucket>/<prefix>/YYYY/MM/DD/<table>_<session_id>.log

Records emitted outside a table context are grouped under "general". The
session is opened at run start, flushed at every table summary and closed
at run end. Flushing rewrites the whole blob, so repeated flushes are safe.
"""

import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from google.cloud import storage

from ..models.results import TableOutcome
from ..utils.gcs import write_text

logger = logging.getLogger(__name__)

GENERAL_LOG = "general"
PACKAGE_LOGGER = "warehouse_migration"
SUMMARY_RULE = "=" * 50

_current_table: ContextVar[str] = ContextVar("migration_table", default=GENERAL_LOG)


@contextmanager
def table_context(table_name: str) -> Iterator[None]:
    """Attribute log records emitted in this block (and thread) to a table."""
    token = _current_table.set(table_name)
    try:
        yield
    finally:
        _current_table.reset(token)


def current_table() -> str:
    return _current_table.get()


class IsoLineFormatter(logging.Formatter):
    """Formats records as '[2025-01-31T10:15:00.123] [INFO] message'."""

    def __init__(self) -> None:
        super().__init__("[%(asctime)s] [%(levelname)s] %(message)s")

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        return datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds")


def format_execution_summary(outcome: TableOutcome) -> str:
    """Render the end-of-table execution summary."""
    issues_text = "None" if not outcome.issues else "\n  - " + "\n  - ".join(outcome.issues)
    return "\n".join([
        SUMMARY_RULE,
        "EXECUTION SUMMARY",
        SUMMARY_RULE,
        f"Table: {outcome.table}",
        f"Status: {outcome.status.value}",
        f"Last Stage: {outcome.last_state.value}",
        f"Start Time: {outcome.start_time.isoformat()}",
        f"End Time: {outcome.end_time.isoformat()}",
        f"Duration: {outcome.duration_seconds:.1f}s",
        f"Rows Transferred: {outcome.rows_transferred}",
        f"Transfer Job: {outcome.transfer_job or 'N/A'}",
        f"Errors: {issues_text}",
        SUMMARY_RULE,
    ])


class GcsLogSession(logging.Handler):
    """
    Session-scoped audit log accumulator.

    Thread-safe: tables running on different worker threads append to their
    own buffers under a lock.
    """

    def __init__(
        self,
        bucket: str = "",
        prefix: str = "data-platform/logs",
        storage_client: Optional[storage.Client] = None,
        session_id: Optional[str] = None,
        level: int = logging.INFO,
    ):
        """
        Initialize the session.

        Args:
            bucket: GCS bucket for log blobs (empty = keep logs in memory only)
            prefix: Object prefix inside the bucket
            storage_client: Optional storage client (created on first upload)
            session_id: Identifier embedded in blob names (generated when omitted)
            level: Minimum level captured
        """
        super().__init__(level=level)
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.start_time = datetime.now()
        self.session_id = session_id or (
            f"{self.start_time.strftime('%Y%m%d_%H%M%S')}_{int(time.time() * 1000)}"
        )
        self._storage_client = storage_client
        self._buffers: Dict[str, List[str]] = defaultdict(list)
        self._buffer_lock = threading.Lock()
        self._attached_to: Optional[logging.Logger] = None
        self._previous_level: Optional[int] = None
        self.setFormatter(IsoLineFormatter())

    def open(self, logger_name: str = PACKAGE_LOGGER) -> "GcsLogSession":
        """Start capturing records from the package logger."""
        target = logging.getLogger(logger_name)
        if self._attached_to is None:
            target.addHandler(self)
            self._attached_to = target
            # Records below the logger level never reach the handler.
            if target.getEffectiveLevel() > self.level:
                self._previous_level = target.level
                target.setLevel(self.level)
        return self

    def emit(self, record: logging.LogRecord) -> None:
        # The sink's own upload messages stay out of the audit trail.
        if record.name == logger.name:
            return
        try:
            line = self.format(record)
            with self._buffer_lock:
                self._buffers[current_table()].append(line)
        except Exception:
            self.handleError(record)

    def lines(self, table_name: str = GENERAL_LOG) -> List[str]:
        with self._buffer_lock:
            return list(self._buffers.get(table_name, []))

    def blob_path(self, table_name: str, when: Optional[datetime] = None) -> str:
        day = (when or self.start_time).strftime("%Y/%m/%d")
        path = f"{day}/{table_name}_{self.session_id}.log"
        return f"{self.prefix}/{path}" if self.prefix else path

    def flush(self, table_name: Optional[str] = None) -> Optional[str]:
        """
        Upload buffered lines for one table (or every table when omitted).

        Upload failures are logged and swallowed so that a broken log sink
        never fails a migration.

        Returns:
            GCS URI of the blob written for table_name, if any
        """
        with self._buffer_lock:
            if table_name is None:
                snapshot = {name: list(lines) for name, lines in self._buffers.items() if lines}
            else:
                lines = self._buffers.get(table_name, [])
                snapshot = {table_name: list(lines)} if lines else {}

        if not snapshot or not self.bucket:
            return None

        written = None
        for name, lines in snapshot.items():
            blob_path = self.blob_path(name)
            try:
                uri = write_text(
                    "\n".join(lines) + "\n",
                    self.bucket,
                    blob_path,
                    storage_client=self._client(),
                )
                logger.info(f"Logs written to: {uri}")
                if name == table_name:
                    written = uri
            except Exception as e:
                logger.warning(f"Failed to write logs to gs://{self.bucket}/{blob_path}: {e}")
        return written

    def _client(self) -> storage.Client:
        if self._storage_client is None:
            self._storage_client = storage.Client()
        return self._storage_client

    def write_summary(self, outcome: TableOutcome) -> Optional[str]:
        """Append the execution summary to the table's log and flush it."""
        summary = format_execution_summary(outcome)
        with table_context(outcome.table):
            if outcome.succeeded:
                logging.getLogger(PACKAGE_LOGGER).info(summary)
            else:
                logging.getLogger(PACKAGE_LOGGER).error(summary)
        return self.flush(outcome.table)

    def close(self) -> None:
        """Flush everything and detach from the logger."""
        try:
            self.flush()
        finally:
            if self._attached_to is not None:
                self._attached_to.removeHandler(self)
                if self._previous_level is not None:
                    self._attached_to.setLevel(self._previous_level)
                    self._previous_level = None
                self._attached_to = None
            super().close()
