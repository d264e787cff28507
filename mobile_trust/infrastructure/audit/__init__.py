"""
Audit logging for evidence processing and consent use.
"""

from mobile_trust.infrastructure.audit.audit_logger import AuditLogger, audit_logger

__all__ = ["AuditLogger", "audit_logger"]
