"""Audit trail persistence."""

from .audit_log import SqliteAuditLog

__all__ = ["SqliteAuditLog"]
