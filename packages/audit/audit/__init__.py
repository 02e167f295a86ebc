from audit.log import AuditLog
from audit.schemas import AuditEntry, RunOutcome

__all__ = [
    "AuditEntry",
    "AuditLog",
    "RunOutcome",
]
