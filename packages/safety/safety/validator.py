"""
Safety Validator - approves a whole Plan or rejects it with the first violation

The validator is the JUDGE, not the writer: it reads the artifact tree (to
compose region-mode fragments) but never mutates it. Its output, an
ApprovedPlan, carries the final sanitized bytes for every target and is the
only thing the publisher accepts.

Per entry, in plan order:
    1. non-empty payload                       → EmptyContent
    2. payload ≤ max_file_bytes                → FileTooLarge
    3. running total ≤ max_total_bytes         → TotalTooLarge
    4. markup: no external script/iframe       → ForbiddenContent
       (inline scripts are stripped)
    5. path stays inside the artifact root     → UnsafePath
    6. region composition                      → RegionMissing / RegionMalformed
       composed document ≤ max_file_bytes      → FileTooLarge
       protected footer in the final document  → FooterMissing
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set

from siteplan.errors import (
    EmptyContentError,
    FileTooLargeError,
    FooterMissingError,
    ForbiddenContentError,
    PlanFormatError,
    RegionMalformedError,
    RegionMissingError,
    TotalTooLargeError,
    UnsafePathError,
)
from siteplan.models import BinaryEntry, Plan, TextEntry

from .path_utils import PathViolation, path_policy_check
from .policy import SafetyPolicy
from .region import Region, compose, locate, whole_file
from .sanitize import find_forbidden, strip_inline_scripts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedWrite:
    """
    Final content for one path.

    For markup, `body` is the plan-supplied (sanitized) part and
    `before`/`after` are the untouched surroundings in region mode; the
    publisher re-sanitizes `body` right before writing.
    """
    path: str
    data: bytes
    markup: bool = False
    body: str = ""
    before: str = ""
    after: str = ""
    source: str = "plan"

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ApprovedPlan:
    """Validated plan: every write already composed and sanitized."""
    writes: List[PreparedWrite] = field(default_factory=list)
    summary: str = ""
    total_bytes: int = 0
    policy_hash: str = "default"

    @property
    def paths(self) -> List[str]:
        return [write.path for write in self.writes]

    def get(self, path: str) -> Optional[PreparedWrite]:
        for write in self.writes:
            if write.path == path:
                return write
        return None

    def with_writes(self, extra: List[PreparedWrite]) -> "ApprovedPlan":
        """Copy with extra writes appended (derived artifacts), replacing same-path writes."""
        extra_paths = {write.path for write in extra}
        kept = [write for write in self.writes if write.path not in extra_paths]
        return ApprovedPlan(
            writes=kept + list(extra),
            summary=self.summary,
            total_bytes=self.total_bytes,
            policy_hash=self.policy_hash,
        )


class SafetyValidator:
    """
    Evaluates a Plan against a SafetyPolicy.

    No partial approval: the first violation rejects the whole plan, and the
    raised error names the offending path and entry index.
    """

    def __init__(self, policy: SafetyPolicy, artifact_root: Path):
        self.policy = policy
        self.artifact_root = Path(artifact_root).resolve()

    def validate(self, plan: Plan) -> ApprovedPlan:
        """
        Validate every entry and compose final content.

        Args:
            plan: Parsed Plan

        Returns:
            ApprovedPlan

        Raises:
            ValidationError subclass or PlanFormatError on the first violation
        """
        if not plan.entries:
            raise PlanFormatError("Plan contains no entries")

        writes: List[PreparedWrite] = []
        seen: Set[str] = set()
        total = 0

        for index, entry in enumerate(plan.entries):
            payload = entry.payload
            size = len(payload)

            # Rule 1: non-empty content
            if size == 0:
                raise EmptyContentError(
                    f"Empty content for {entry.path}", path=entry.path, entry_index=index
                )

            # Rule 2: per-file ceiling
            if size > self.policy.max_file_bytes:
                raise FileTooLargeError(
                    f"File {entry.path} exceeds per-file size limit "
                    f"({size} > {self.policy.max_file_bytes} bytes)",
                    path=entry.path,
                    entry_index=index,
                )

            # Rule 3: aggregate ceiling, incremental so the crossing entry is named
            total += size
            if total > self.policy.max_total_bytes:
                raise TotalTooLargeError(
                    f"Total size exceeds limit at {entry.path} "
                    f"({total} > {self.policy.max_total_bytes} bytes)",
                    path=entry.path,
                    entry_index=index,
                )

            markup = self.policy.is_markup(entry.path, entry.declared_type)
            region = self.policy.region_for_type(entry.declared_type)

            if (markup or region) and not isinstance(entry, TextEntry):
                raise PlanFormatError(
                    f"Entry {entry.path} must be a text entry (markup/fragment)",
                    path=entry.path,
                    entry_index=index,
                )

            # Rule 4: markup safety
            body = entry.content if isinstance(entry, TextEntry) else ""
            if markup:
                body = self._sanitize_markup(index, entry.path, body)

            # Rule 5: path safety
            rel_path = self._check_path(index, entry.path)
            if rel_path in seen:
                raise PlanFormatError(
                    f"Duplicate path in plan: {rel_path}", path=rel_path, entry_index=index
                )
            seen.add(rel_path)

            # Rule 6: composition + footer
            writes.append(self._prepare(index, entry, rel_path, body, markup, region))

        approved = ApprovedPlan(
            writes=writes,
            summary=plan.summary,
            total_bytes=total,
            policy_hash=self.policy.snapshot_hash,
        )
        logger.info(f"Plan approved: {len(writes)} entries, {total} bytes")
        return approved

    def _sanitize_markup(self, index: int, path: str, markup: str) -> str:
        label = find_forbidden(markup)
        if label is None:
            sanitized = strip_inline_scripts(markup)
            # Stripping can splice fragments back into a forbidden element
            label = find_forbidden(sanitized)
            if label is None:
                if sanitized != markup:
                    logger.info(f"Stripped inline <script> from {path}")
                return sanitized

        raise ForbiddenContentError(
            f"{label} found in {path} - blocked", path=path, entry_index=index
        )

    def _check_path(self, index: int, path: str) -> str:
        result = path_policy_check(path, self.artifact_root, self.policy.forbidden_paths)
        if not result.ok:
            # repr keeps NUL and control characters out of logs and audit rows
            shown = repr(path) if result.violation == PathViolation.INVALID_CHARACTER else path
            raise UnsafePathError(
                f"{result.violation.value}: {shown}", path=path, entry_index=index
            )
        try:
            is_dir = result.abs_path is not None and result.abs_path.is_dir()
        except OSError as e:
            raise UnsafePathError(
                f"{PathViolation.UNRESOLVABLE_PATH.value}: {path} ({e})", path=path, entry_index=index
            )
        if is_dir:
            raise UnsafePathError(
                f"target is a directory: {path}", path=path, entry_index=index
            )
        return result.rel_path

    def _prepare(
        self,
        index: int,
        entry,
        rel_path: str,
        body: str,
        markup: bool,
        region: Optional[Region],
    ) -> PreparedWrite:
        if isinstance(entry, BinaryEntry):
            return PreparedWrite(path=rel_path, data=entry.data)

        if region is not None:
            slices = self._locate_existing(index, rel_path, body, region)
        else:
            slices = whole_file(body)
            target_region = self.policy.region_for_target(rel_path)
            if target_region is not None:
                # Seed/whole-file replacement must keep the markers for future fragment runs
                self._locate(index, rel_path, body, target_region)

        composed = compose(slices, body)
        data = composed.encode("utf-8")

        # Region mode can grow a small fragment into an oversized document
        if len(data) > self.policy.max_file_bytes:
            raise FileTooLargeError(
                f"Composed file {rel_path} exceeds per-file size limit "
                f"({len(data)} > {self.policy.max_file_bytes} bytes)",
                path=rel_path,
                entry_index=index,
            )

        if markup and self.policy.footer_text not in composed:
            raise FooterMissingError(
                f"Protected footer not found in {rel_path}", path=rel_path, entry_index=index
            )

        return PreparedWrite(
            path=rel_path,
            data=data,
            markup=markup,
            body=body,
            before=slices.before,
            after=slices.after,
        )

    def _locate_existing(self, index: int, rel_path: str, fragment: str, region: Region):
        if region.start_marker in fragment or region.end_marker in fragment:
            raise RegionMalformedError(
                f"Fragment for {rel_path} contains region markers", path=rel_path, entry_index=index
            )

        target = self.artifact_root / rel_path
        if not target.is_file():
            raise RegionMissingError(
                f"Region target {rel_path} does not exist; supply a full seed document first",
                path=rel_path,
                entry_index=index,
            )

        try:
            existing = target.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            raise RegionMalformedError(
                f"Region target {rel_path} is not UTF-8 text", path=rel_path, entry_index=index
            )
        return self._locate(index, rel_path, existing, region)

    def _locate(self, index: int, rel_path: str, content: str, region: Region):
        try:
            return locate(content, region)
        except (RegionMissingError, RegionMalformedError) as e:
            e.path = rel_path
            e.entry_index = index
            e.message = f"{e.message} in {rel_path}"
            raise
