"""Audit event sinks for gate decisions and overrides."""

from collections.abc import Callable
from typing import Any

from loguru import logger
from supabase import Client, create_client

from pr_review_guard.models import ReviewContext


class AuditSink:
    """Fixed audit interface. Every method is a no-op by default."""

    def log_info(
        self, event: str, data: dict[str, Any] | None = None, context: ReviewContext | None = None
    ) -> Any:
        return None

    def log_error(
        self, event: str, data: dict[str, Any] | None = None, context: ReviewContext | None = None
    ) -> Any:
        return None

    def log_quality_gate_start(
        self, event: str, data: dict[str, Any] | None = None, context: ReviewContext | None = None
    ) -> Any:
        return None

    def log_quality_gate_decision(
        self, event: str, data: dict[str, Any] | None = None, context: ReviewContext | None = None
    ) -> Any:
        return None

    def log_override_attempt(
        self, event: str, data: dict[str, Any] | None = None, context: ReviewContext | None = None
    ) -> Any:
        return None

    def log_quality_gate_error(
        self, event: str, data: dict[str, Any] | None = None, context: ReviewContext | None = None
    ) -> Any:
        return None


class NullAuditSink(AuditSink):
    """Discards every event."""


class SupabaseAuditSink(AuditSink):
    """Write audit events to a Supabase table."""

    def __init__(self, url: str, key: str, table: str = "audit_events"):
        """Initialize with Supabase credentials."""
        self.client: Client = create_client(url, key)
        self.table = table

    def _insert(
        self,
        level: str,
        event: str,
        data: dict[str, Any] | None,
        context: ReviewContext | None,
    ) -> str | None:
        """Insert one event row.

        Returns the inserted row ID, or None if logging fails.
        """
        context = context or ReviewContext()
        row = {
            "event_type": event,
            "level": level,
            "data": data or {},
            "repository": context.repository,
            "branch": context.target_branch,
            "commit_sha": context.commit_sha,
            "author": context.author,
            "session_id": context.session_id or None,
        }

        try:
            result = self.client.table(self.table).insert(row).execute()
            return result.data[0]["id"] if result.data else None
        except Exception as e:
            # Don't fail the governed operation if audit logging fails
            logger.warning(f"Audit insert for {event} failed: {e}")
            return None

    def log_info(self, event, data=None, context=None):
        return self._insert("info", event, data, context)

    def log_error(self, event, data=None, context=None):
        return self._insert("error", event, data, context)

    def log_quality_gate_start(self, event, data=None, context=None):
        return self._insert("info", event, data, context)

    def log_quality_gate_decision(self, event, data=None, context=None):
        return self._insert("info", event, data, context)

    def log_override_attempt(self, event, data=None, context=None):
        return self._insert("warning", event, data, context)

    def log_quality_gate_error(self, event, data=None, context=None):
        return self._insert("error", event, data, context)


def safe_audit(method: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call an audit sink method, swallowing anything it raises."""
    try:
        return method(*args, **kwargs)
    except Exception as e:
        logger.warning(f"Audit sink call {getattr(method, '__name__', method)} failed: {e}")
        return None
