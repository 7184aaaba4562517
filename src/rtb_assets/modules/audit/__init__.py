"""
Audit module - Audit trail of device and application actions.
"""

from rtb_assets.modules.audit.models import AuditAction, AuditLog, AuditTarget
from rtb_assets.modules.audit.service import emit_audit_event, record_audit_event

__all__ = [
    "AuditAction",
    "AuditLog",
    "AuditTarget",
    "emit_audit_event",
    "record_audit_event",
]
