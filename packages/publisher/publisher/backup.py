"""
Backup Manager - snapshots every touched path before a run writes anything

A snapshot group lives under the backup root:

    <backup_root>/<snapshot_id>/manifest.json
    <backup_root>/<snapshot_id>/files/<path>

The manifest records, per path, whether the file existed and its sha256, so
restore can rewrite previous bytes or delete files the run created. Snapshots
stay on disk until the run finalizes: a process killed mid-publish leaves a
snapshot that `sitekeeper restore <id>` can replay.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from siteplan.errors import BackupRestoreError, ConfigurationError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
FILES_DIR = "files"

STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def file_digest(path: Path) -> Optional[str]:
    """sha256 of a file's bytes, None if it does not exist."""
    if not path.is_file():
        return None
    return sha256_bytes(path.read_bytes())


@dataclass
class Snapshot:
    """Pre-run state of every path a run touches."""
    id: str
    created_at: datetime
    directory: Path
    # path → previous bytes, None when the path did not exist
    files: Dict[str, Optional[bytes]] = field(default_factory=dict)
    digests: Dict[str, Optional[str]] = field(default_factory=dict)
    # Directories under the artifact root a run may create, deepest first
    created_dirs: List[str] = field(default_factory=list)
    status: str = STATUS_PENDING

    @property
    def paths(self) -> List[str]:
        return list(self.files.keys())


class BackupManager:
    """Creates, restores and retires snapshot groups."""

    def __init__(self, artifact_root: Path, backup_root: Path, retain_successful: int = 0):
        """
        Args:
            artifact_root: Root of the published tree
            backup_root: Directory for snapshot groups (outside artifact_root)
            retain_successful: 0 discards a snapshot once its run succeeds,
                N > 0 keeps the newest N successful snapshots

        Raises:
            ConfigurationError: If the roots overlap or retention is negative
        """
        self.artifact_root = Path(artifact_root).resolve()
        self.backup_root = Path(backup_root).resolve()
        self.retain_successful = retain_successful

        if retain_successful < 0:
            raise ConfigurationError("retain_successful must be >= 0")
        for inner, outer in ((self.backup_root, self.artifact_root), (self.artifact_root, self.backup_root)):
            try:
                inner.relative_to(outer)
            except ValueError:
                continue
            raise ConfigurationError(
                f"Backup root {self.backup_root} must lie outside the artifact root {self.artifact_root}"
            )

    def snapshot(self, paths: Iterable[str]) -> Snapshot:
        """
        Record the current bytes (or absence) of every path and persist them.

        Args:
            paths: Relative paths inside the artifact root

        Returns:
            Persisted Snapshot
        """
        created_at = datetime.utcnow()
        snapshot_id = f"snap_{created_at.strftime('%Y%m%dT%H%M%S')}_{uuid.uuid4().hex[:8]}"
        directory = self.backup_root / snapshot_id
        files_dir = directory / FILES_DIR
        files_dir.mkdir(parents=True, exist_ok=False)

        snapshot = Snapshot(id=snapshot_id, created_at=created_at, directory=directory)
        created_dirs = set()

        for rel_path in paths:
            target = self.artifact_root / rel_path
            if target.is_file():
                data = target.read_bytes()
                snapshot.files[rel_path] = data
                snapshot.digests[rel_path] = sha256_bytes(data)

                backup_path = files_dir / rel_path
                backup_path.parent.mkdir(parents=True, exist_ok=True)
                backup_path.write_bytes(data)
            else:
                snapshot.files[rel_path] = None
                snapshot.digests[rel_path] = None
                created_dirs.update(self._missing_parents(target))

        # Deepest first so restore can rmdir bottom-up
        snapshot.created_dirs = sorted(created_dirs, key=lambda p: p.count("/"), reverse=True)
        self._write_manifest(snapshot)

        present = sum(1 for data in snapshot.files.values() if data is not None)
        logger.info(
            f"Snapshot {snapshot_id}: {len(snapshot.files)} paths ({present} existing) at {directory}"
        )
        return snapshot

    def restore(self, snapshot: Snapshot) -> List[str]:
        """
        Put every snapshotted path back to its recorded state.

        Every path is attempted even if an earlier one fails.

        Returns:
            Restored paths

        Raises:
            BackupRestoreError: Listing every path that could not be restored
        """
        restored: List[str] = []
        failures: Dict[str, str] = {}

        for rel_path, data in snapshot.files.items():
            target = self.artifact_root / rel_path
            try:
                if data is None:
                    if target.exists() or target.is_symlink():
                        target.unlink()
                else:
                    self._write_atomic(target, data)
                restored.append(rel_path)
            except OSError as e:
                failures[rel_path] = str(e)
                logger.error(f"Restore failed for {rel_path}: {e}")

        for rel_dir in snapshot.created_dirs:
            directory = self.artifact_root / rel_dir
            try:
                if directory.is_dir() and not any(directory.iterdir()):
                    directory.rmdir()
            except OSError as e:
                logger.warning(f"Could not remove directory {rel_dir} created by the run: {e}")

        if failures:
            raise BackupRestoreError(
                f"Restore of snapshot {snapshot.id} failed for {len(failures)} path(s): "
                f"{', '.join(sorted(failures))}",
                failures=failures,
                path=next(iter(sorted(failures))),
            )

        logger.info(f"Restored {len(restored)} paths from snapshot {snapshot.id}")
        return restored

    def load(self, snapshot_id: str) -> Snapshot:
        """
        Reload a persisted snapshot (manual recovery).

        Raises:
            ValueError: If the id is not a plain directory name
            FileNotFoundError: If no such snapshot exists
        """
        if not snapshot_id or "/" in snapshot_id or "\\" in snapshot_id or snapshot_id in (".", ".."):
            raise ValueError(f"Invalid snapshot id: {snapshot_id!r}")

        directory = self.backup_root / snapshot_id
        manifest_path = directory / MANIFEST_NAME
        if not manifest_path.is_file():
            raise FileNotFoundError(f"Snapshot not found: {snapshot_id}")

        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        snapshot = Snapshot(
            id=manifest["id"],
            created_at=datetime.fromisoformat(manifest["created_at"]),
            directory=directory,
            created_dirs=list(manifest.get("created_dirs", [])),
            status=manifest.get("status", STATUS_PENDING),
        )
        for rel_path, info in manifest["files"].items():
            if info["present"]:
                data = (directory / FILES_DIR / rel_path).read_bytes()
                if sha256_bytes(data) != info["sha256"]:
                    raise BackupRestoreError(
                        f"Snapshot {snapshot_id} is corrupt: digest mismatch for {rel_path}",
                        failures={rel_path: "digest mismatch"},
                        path=rel_path,
                    )
                snapshot.files[rel_path] = data
                snapshot.digests[rel_path] = info["sha256"]
            else:
                snapshot.files[rel_path] = None
                snapshot.digests[rel_path] = None
        return snapshot

    def list_snapshots(self) -> List[dict]:
        """Manifests of every snapshot group, newest first."""
        if not self.backup_root.is_dir():
            return []

        manifests = []
        for directory in self.backup_root.iterdir():
            manifest_path = directory / MANIFEST_NAME
            if not manifest_path.is_file():
                continue
            try:
                manifests.append(json.loads(manifest_path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable snapshot manifest {manifest_path}: {e}")
        manifests.sort(key=lambda m: m.get("created_at", ""), reverse=True)
        return manifests

    def mark_failed(self, snapshot: Snapshot) -> None:
        """Keep a failed run's snapshot for inspection; never pruned automatically."""
        snapshot.status = STATUS_FAILED
        self._write_manifest(snapshot)

    def finalize_success(self, snapshot: Snapshot) -> None:
        """Mark a snapshot successful and apply the retention setting."""
        snapshot.status = STATUS_SUCCESS

        if self.retain_successful == 0:
            self._discard(snapshot.directory)
            return

        self._write_manifest(snapshot)
        successful = [m for m in self.list_snapshots() if m.get("status") == STATUS_SUCCESS]
        for manifest in successful[self.retain_successful:]:
            self._discard(self.backup_root / manifest["id"])

    def _discard(self, directory: Path) -> None:
        try:
            shutil.rmtree(directory)
            logger.info(f"Discarded snapshot {directory.name}")
        except OSError as e:
            # The run already succeeded; a leftover snapshot only costs disk
            logger.warning(f"Failed to discard snapshot {directory}: {e}")

    def _missing_parents(self, target: Path) -> List[str]:
        missing = []
        parent = target.parent
        while parent != self.artifact_root and not parent.exists():
            missing.append(parent.relative_to(self.artifact_root).as_posix())
            parent = parent.parent
        return missing

    def _write_manifest(self, snapshot: Snapshot) -> None:
        manifest = {
            "id": snapshot.id,
            "created_at": snapshot.created_at.isoformat(),
            "artifact_root": str(self.artifact_root),
            "status": snapshot.status,
            "created_dirs": snapshot.created_dirs,
            "files": {
                rel_path: {"present": data is not None, "sha256": snapshot.digests.get(rel_path)}
                for rel_path, data in snapshot.files.items()
            },
        }
        self._write_atomic(
            snapshot.directory / MANIFEST_NAME,
            json.dumps(manifest, indent=2).encode("utf-8"),
        )

    @staticmethod
    def _write_atomic(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        mode = target.stat().st_mode if target.is_file() else 0o644
        temp_fd, temp_path = tempfile.mkstemp(dir=target.parent, suffix=".tmp")
        try:
            with open(temp_fd, "wb") as f:
                f.write(data)
            Path(temp_path).chmod(mode)
            os.replace(temp_path, target)
        except OSError:
            Path(temp_path).unlink(missing_ok=True)
            raise
