from siteplan.errors import (
    BackupRestoreError,
    ConfigurationError,
    EmptyContentError,
    FileTooLargeError,
    FooterMissingError,
    ForbiddenContentError,
    PlanFormatError,
    RegionMalformedError,
    RegionMissingError,
    SiteKeeperError,
    TotalTooLargeError,
    UnsafePathError,
    ValidationError,
    WriteError,
)
from siteplan.ingest import extract_json_object, parse_plan, plan_to_wire
from siteplan.models import BinaryEntry, FileEntry, Plan, TextEntry, WireEntry, WirePlan

__all__ = [
    "BackupRestoreError",
    "BinaryEntry",
    "ConfigurationError",
    "EmptyContentError",
    "FileEntry",
    "FileTooLargeError",
    "FooterMissingError",
    "ForbiddenContentError",
    "Plan",
    "PlanFormatError",
    "RegionMalformedError",
    "RegionMissingError",
    "SiteKeeperError",
    "TextEntry",
    "TotalTooLargeError",
    "UnsafePathError",
    "ValidationError",
    "WireEntry",
    "WirePlan",
    "WriteError",
    "extract_json_object",
    "parse_plan",
    "plan_to_wire",
]
