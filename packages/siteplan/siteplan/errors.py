"""Pipeline error taxonomy: every failure a run can report, with a stable code."""
from __future__ import annotations

from typing import Optional


class SiteKeeperError(Exception):
    """Base error carrying code + message (+ offending path) for audit/CLI output."""
    code: str = "SiteKeeperError"

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        entry_index: Optional[int] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.entry_index = entry_index
        if code is not None:
            self.code = code

    def to_reason(self) -> dict:
        return {"code": self.code, "message": self.message, "path": self.path}

    def detail(self) -> str:
        """One-line `CODE: message` form used in audit entries."""
        return f"{self.code}: {self.message}"


class ConfigurationError(SiteKeeperError):
    """Invalid policy/config (markers, roots, ceilings)."""
    code = "ConfigurationError"


class PlanFormatError(SiteKeeperError):
    """Generator output could not be parsed into a Plan."""
    code = "PlanFormatError"


class ValidationError(SiteKeeperError):
    """Base for violations detected before any mutation (no rollback needed)."""
    code = "ValidationError"


class EmptyContentError(ValidationError):
    code = "EmptyContent"


class FileTooLargeError(ValidationError):
    code = "FileTooLarge"


class TotalTooLargeError(ValidationError):
    code = "TotalTooLarge"


class UnsafePathError(ValidationError):
    code = "UnsafePath"


class ForbiddenContentError(ValidationError):
    """External <script src> / <iframe src>: not strippable, whole plan rejected."""
    code = "ForbiddenContent"


class FooterMissingError(ValidationError):
    code = "FooterMissing"


class RegionMissingError(ValidationError):
    code = "RegionMissing"


class RegionMalformedError(ValidationError):
    code = "RegionMalformed"


class WriteError(SiteKeeperError):
    """Storage-layer failure while publishing an entry; triggers restore."""
    code = "WriteError"


class BackupRestoreError(SiteKeeperError):
    """Restore itself failed. Fatal: the artifact tree may be indeterminate."""
    code = "BackupRestoreError"

    def __init__(self, message: str, failures: Optional[dict] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.failures = dict(failures or {})
        # Set by the pipeline once the failed run has been audited
        self.result = None
