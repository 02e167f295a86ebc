from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RunOutcome(str, Enum):
    """Run outcome recorded in the audit log"""
    SUCCESS = "success"
    FAILURE = "failure"


class AuditEntry(BaseModel):
    """One run's outcome. Append-only."""
    id: Optional[int] = None
    timestamp: datetime
    outcome: RunOutcome
    summary: str
    files_written: List[str] = Field(default_factory=list)
    error_detail: Optional[str] = None
    run_id: Optional[str] = None
    snapshot_id: Optional[str] = None
    requires_intervention: bool = False

    def to_context(self) -> Dict[str, Any]:
        """Compact form embedded in the next plan request."""
        item: Dict[str, Any] = {
            "date": self.timestamp.isoformat(),
            "outcome": self.outcome.value,
            "summary": self.summary,
            "files": list(self.files_written),
        }
        if self.error_detail:
            item["error"] = self.error_detail
        return item
