"""Per-table migration pipeline and audit logging."""

from .log_sink import GcsLogSession, format_execution_summary, table_context
from .orchestrator import MigrationOrchestrator

__all__ = [
    "GcsLogSession",
    "MigrationOrchestrator",
    "format_execution_summary",
    "table_context",
]
