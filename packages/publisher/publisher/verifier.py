"""
Tree Verifier - re-checks the published tree on disk

Runs after publishing: written markup files must still contain the protected
footer and region targets must still carry their markers. A failure here is
handled like a write failure (the pipeline restores the snapshot).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

from safety.policy import SafetyPolicy
from safety.region import locate
from siteplan.errors import (
    FooterMissingError,
    RegionMalformedError,
    RegionMissingError,
    SiteKeeperError,
)

logger = logging.getLogger(__name__)


class TreeVerifier:
    """Checks markup files and region targets against the policy."""

    def __init__(self, policy: SafetyPolicy, artifact_root: Path):
        self.policy = policy
        self.artifact_root = Path(artifact_root).resolve()

    def verify(self, written: Iterable[str]) -> None:
        """
        Verify the files a run wrote plus every existing region target.

        Raises:
            FooterMissingError / RegionMissingError / RegionMalformedError
        """
        problems = self.check(written)
        if problems:
            raise problems[0]
        logger.info("Tree verification passed")

    def check(self, paths: Optional[Iterable[str]] = None) -> List[SiteKeeperError]:
        """
        Collect problems without raising.

        Args:
            paths: Paths to check; None checks every markup file in the tree
        """
        if paths is None:
            paths = self.markup_files()

        problems: List[SiteKeeperError] = []
        for rel_path in paths:
            if not self.policy.is_markup(rel_path, None):
                continue
            problem = self._check_footer(rel_path)
            if problem is not None:
                problems.append(problem)

        for rel_path in self.policy.region_targets:
            problem = self._check_region(rel_path)
            if problem is not None:
                problems.append(problem)

        return problems

    def markup_files(self) -> List[str]:
        if not self.artifact_root.is_dir():
            return []
        return sorted(
            path.relative_to(self.artifact_root).as_posix()
            for path in self.artifact_root.rglob("*")
            if path.is_file() and path.suffix.lower() in self.policy.markup_extensions
        )

    def _read(self, rel_path: str) -> Optional[str]:
        target = self.artifact_root / rel_path
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8", errors="replace")

    def _check_footer(self, rel_path: str) -> Optional[SiteKeeperError]:
        content = self._read(rel_path)
        if content is None:
            return FooterMissingError(f"{rel_path} missing after publish", path=rel_path)
        if self.policy.footer_text not in content:
            return FooterMissingError(f"Protected footer missing in {rel_path}", path=rel_path)
        return None

    def _check_region(self, rel_path: str) -> Optional[SiteKeeperError]:
        content = self._read(rel_path)
        if content is None:
            return None
        region = self.policy.region_for_target(rel_path)
        try:
            locate(content, region)
        except (RegionMissingError, RegionMalformedError) as e:
            e.path = rel_path
            e.message = f"{e.message} in {rel_path}"
            return e
        return None
