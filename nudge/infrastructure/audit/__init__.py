"""
Audit trail for scheduling decisions and pipeline outcomes.
"""

from nudge.infrastructure.audit.audit_logger import AuditLogger

__all__ = ["AuditLogger"]
