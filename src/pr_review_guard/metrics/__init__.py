"""Metrics module for audit logging."""

from pr_review_guard.metrics.audit import AuditSink, NullAuditSink, SupabaseAuditSink, safe_audit

__all__ = ["AuditSink", "NullAuditSink", "SupabaseAuditSink", "safe_audit"]
