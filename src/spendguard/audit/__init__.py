"""
Audit module - Decision trail for SpendGuard.

The audit log is the authoritative post-hoc record of what the guard
decided and why.
"""

from spendguard.audit.recorder import AuditRecorder

__all__ = ["AuditRecorder"]
