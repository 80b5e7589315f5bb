"""Audit trail."""

from lumina.audit.recorder import AuditContext, AuditRecorder

__all__ = ["AuditContext", "AuditRecorder"]
