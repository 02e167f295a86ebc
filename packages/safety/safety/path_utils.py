"""
Path Utilities - Canonical path handling for plan entries

Every plan path is relative to the artifact root. Canonicalization:
- normalizes separators to '/'
- rejects NUL and unencodable characters
- rejects empty, absolute, drive-qualified and UNC paths
- rejects '..' segments outright (not resolved-then-checked)
- resolves against the root and confirms the result stays inside it
- detects symlinks along the chain without following them
"""

from pathlib import Path, PurePosixPath
from typing import Iterable, Optional
from dataclasses import dataclass
from enum import Enum
import fnmatch
import os


class PathViolation(Enum):
    """Path boundary violation reasons."""
    EMPTY_PATH = "empty_path"
    PATH_TRAVERSAL = "path_traversal"
    ABSOLUTE_PATH_DENIED = "absolute_path_denied"
    UNC_PATH_DENIED = "unc_path_denied"
    OUTSIDE_ROOT = "outside_root"
    SYMLINK_PATH = "symlink_path"
    FORBIDDEN_PATH = "forbidden_path"
    INVALID_CHARACTER = "invalid_character"
    UNRESOLVABLE_PATH = "unresolvable_path"


@dataclass
class CanonicalPathResult:
    """Result of path canonicalization."""
    rel_path: str  # Normalized posix path relative to the root
    abs_path: Optional[Path]  # Absolute path, None when rejected before resolving
    violation: Optional[PathViolation] = None

    @property
    def ok(self) -> bool:
        return self.violation is None


def canonicalize_path(path: str, artifact_root: Path) -> CanonicalPathResult:
    """
    Canonicalize a plan path against the artifact root.

    Args:
        path: Relative path from a plan entry
        artifact_root: Root of the published tree

    Returns:
        CanonicalPathResult; violation is set when the path must be rejected
    """
    raw = path.replace("\\", "/")

    # NUL and characters the filesystem encoding cannot represent make resolve() raise
    if "\x00" in raw or not _is_encodable(raw):
        return CanonicalPathResult(rel_path=raw, abs_path=None, violation=PathViolation.INVALID_CHARACTER)

    if not raw.strip():
        return CanonicalPathResult(rel_path=raw, abs_path=None, violation=PathViolation.EMPTY_PATH)

    if raw.startswith("//"):
        return CanonicalPathResult(rel_path=raw, abs_path=None, violation=PathViolation.UNC_PATH_DENIED)

    # "/etc/passwd" and "C:/x" are both absolute from the plan's point of view
    if raw.startswith("/") or (len(raw) > 1 and raw[1] == ":"):
        return CanonicalPathResult(rel_path=raw, abs_path=None, violation=PathViolation.ABSOLUTE_PATH_DENIED)

    parts = [part for part in raw.split("/") if part not in ("", ".")]
    if any(part == ".." for part in parts):
        return CanonicalPathResult(rel_path=raw, abs_path=None, violation=PathViolation.PATH_TRAVERSAL)
    if not parts:
        return CanonicalPathResult(rel_path=raw, abs_path=None, violation=PathViolation.EMPTY_PATH)

    rel_path = "/".join(parts)
    root = Path(artifact_root).resolve()
    try:
        abs_path = (root / rel_path).resolve(strict=False)
    except (OSError, ValueError):
        return CanonicalPathResult(rel_path=rel_path, abs_path=None, violation=PathViolation.UNRESOLVABLE_PATH)

    try:
        abs_path.relative_to(root)
    except ValueError:
        return CanonicalPathResult(rel_path=rel_path, abs_path=abs_path, violation=PathViolation.OUTSIDE_ROOT)

    if _has_symlink_in_chain(root, parts):
        return CanonicalPathResult(rel_path=rel_path, abs_path=abs_path, violation=PathViolation.SYMLINK_PATH)

    return CanonicalPathResult(rel_path=rel_path, abs_path=abs_path)


def _is_encodable(path: str) -> bool:
    try:
        os.fsencode(path)
    except UnicodeEncodeError:
        return False
    return True


def _has_symlink_in_chain(root: Path, parts: list) -> bool:
    """
    Check whether any component under root is a symlink.

    Walks the unresolved chain so a link is detected, not followed.
    """
    current = root
    try:
        for part in parts:
            current = current / part
            if current.is_symlink():
                return True
    except OSError:
        # Unreadable component: treat as a potential link
        return True
    return False


def path_policy_check(
    target_path: str,
    artifact_root: Path,
    forbidden_patterns: Iterable[str] = ()
) -> CanonicalPathResult:
    """
    Canonicalize and apply forbidden glob patterns.

    Policy precedence:
        1. Canonical violations (empty/absolute/traversal/outside/symlink)
        2. forbidden_patterns → FORBIDDEN_PATH
        3. Otherwise allowed
    """
    result = canonicalize_path(target_path, artifact_root)
    if not result.ok:
        return result

    for pattern in forbidden_patterns:
        if match_pattern(result.rel_path, pattern):
            result.violation = PathViolation.FORBIDDEN_PATH
            return result

    return result


def match_pattern(path: str, pattern: str) -> bool:
    """
    Match a posix relative path against a glob pattern.

    Supports:
    - Exact match: "robots.txt"
    - Wildcard: "*.php"
    - Recursive: "**/*.exe"
    - Directory: ".git/**"
    """
    path_obj = PurePosixPath(path)

    if "**" in pattern:
        pattern_parts = pattern.split("/")

        if pattern_parts[0] == "**":
            # **/*.exe - match at any depth
            remaining = "/".join(pattern_parts[1:])
            if not remaining:
                return True
            return any(
                fnmatch.fnmatch(str(PurePosixPath(*path_obj.parts[i:])), remaining)
                for i in range(len(path_obj.parts))
            )

        prefix = pattern_parts[0]
        if path == prefix or path.startswith(prefix + "/"):
            remaining = "/".join(pattern_parts[1:])
            if remaining == "**":
                return True
            under_prefix = str(path_obj.relative_to(PurePosixPath(prefix)))
            return match_pattern(under_prefix, remaining)
        return False

    return fnmatch.fnmatch(path, pattern)
