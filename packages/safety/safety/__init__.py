"""
sitekeeper safety package

The gate every plan passes before anything is written:
- region: marker-delimited mutable ranges (locate / compose)
- sanitize: forbidden active content and inline-script stripping
- path_utils: canonical relative paths inside the artifact root
- policy: YAML-backed limits, markers and the protected footer
- validator: SafetyValidator → ApprovedPlan (all-or-nothing)
"""

from .region import (
    Region,
    RegionSlices,
    compose,
    has_region,
    locate,
    whole_file
)

from .sanitize import (
    count_inline_scripts,
    find_forbidden,
    strip_inline_scripts
)

from .path_utils import (
    CanonicalPathResult,
    PathViolation,
    canonicalize_path,
    match_pattern,
    path_policy_check
)

from .policy import (
    MARKUP,
    STYLESHEET,
    SafetyPolicy
)

from .validator import (
    ApprovedPlan,
    PreparedWrite,
    SafetyValidator
)

__all__ = [
    # Regions
    "Region",
    "RegionSlices",
    "compose",
    "has_region",
    "locate",
    "whole_file",

    # Sanitizer
    "count_inline_scripts",
    "find_forbidden",
    "strip_inline_scripts",

    # Paths
    "CanonicalPathResult",
    "PathViolation",
    "canonicalize_path",
    "match_pattern",
    "path_policy_check",

    # Policy
    "MARKUP",
    "STYLESHEET",
    "SafetyPolicy",

    # Validator
    "ApprovedPlan",
    "PreparedWrite",
    "SafetyValidator"
]

__version__ = "1.0.0"
