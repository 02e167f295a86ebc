"""
Atomic Publisher - writes an ApprovedPlan into the artifact tree

Safety:
- Atomic per-file writes (temp file in the target directory + rename)
- Parent directory creation
- Permission preservation for replaced files
- Snapshot digest check before each write, so a tree changed since the
  snapshot (an overlapping run, a human edit) fails the run instead of being
  silently overwritten

The publisher never restores. On WriteError the pipeline hands the snapshot
to the BackupManager.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import List

from safety.sanitize import strip_inline_scripts
from safety.validator import ApprovedPlan, PreparedWrite
from siteplan.errors import WriteError

from .backup import Snapshot, file_digest

logger = logging.getLogger(__name__)

NEW_FILE_MODE = 0o644


class AtomicPublisher:
    """Writes prepared content to the filesystem."""

    def __init__(self, artifact_root: Path):
        self.artifact_root = Path(artifact_root).resolve()

    def publish(self, approved: ApprovedPlan, snapshot: Snapshot) -> List[str]:
        """
        Write every prepared entry, in plan order.

        Args:
            approved: Validated plan
            snapshot: Snapshot taken for exactly these paths

        Returns:
            Written relative paths

        Raises:
            WriteError: On the first entry that cannot be written
        """
        written = []
        for write in approved.writes:
            self._publish_one(write, snapshot)
            written.append(write.path)

        logger.info(f"Published {len(written)} files under {self.artifact_root}")
        return written

    def _publish_one(self, write: PreparedWrite, snapshot: Snapshot) -> None:
        target = self.artifact_root / write.path

        if write.path not in snapshot.digests:
            raise WriteError(f"{write.path} is not covered by snapshot {snapshot.id}", path=write.path)

        try:
            current = file_digest(target)
        except OSError as e:
            raise WriteError(f"Cannot read {write.path} before writing: {e}", path=write.path)

        if current != snapshot.digests[write.path]:
            raise WriteError(
                f"Concurrent modification of {write.path} since snapshot {snapshot.id}",
                path=write.path,
            )

        data = self._final_bytes(write)
        try:
            self._write_bytes(target, data)
        except OSError as e:
            raise WriteError(f"Failed to write {write.path}: {e}", path=write.path)

    @staticmethod
    def _final_bytes(write: PreparedWrite) -> bytes:
        if not write.markup:
            return write.data
        # Only the plan-supplied body is re-sanitized; surroundings are kept verbatim
        return (write.before + strip_inline_scripts(write.body) + write.after).encode("utf-8")

    def _write_bytes(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        original_mode = target.stat().st_mode if target.exists() else None

        temp_fd, temp_path = tempfile.mkstemp(dir=target.parent, suffix=".tmp")
        try:
            with open(temp_fd, "wb") as f:
                f.write(data)

            # mkstemp creates 0600; new files must stay readable by the file server
            Path(temp_path).chmod(original_mode if original_mode is not None else NEW_FILE_MODE)

            # Move temp file to target (atomic on POSIX)
            shutil.move(temp_path, target)
        except OSError:
            Path(temp_path).unlink(missing_ok=True)
            raise
