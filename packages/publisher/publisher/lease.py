"""
Run Lease - at most one run per artifact root

File-based mutex under the backup root (locks/run.lock), created atomically
with O_CREAT | O_EXCL. The lease file holds metadata about the holder so a
lease left behind by a dead process can be taken over.

The lease wraps run_once from the outside (CLI, scheduler glue); the
pipeline itself takes no lock.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from siteplan.errors import SiteKeeperError

logger = logging.getLogger(__name__)


class LeaseError(SiteKeeperError):
    """Raised when the run lease cannot be acquired."""
    code = "LeaseError"


class RunLease:
    """
    Usage:
        with RunLease(backup_root, holder="cron"):
            pipeline.run_once(plan)
    """

    def __init__(
        self,
        backup_root: Path,
        holder: str = "sitekeeper",
        timeout_seconds: float = 60,
        stale_threshold_seconds: float = 3600,
        poll_interval: float = 0.5,
    ):
        """
        Args:
            backup_root: Backup root; the lease file lives in its locks/ dir
            holder: Free-form label recorded in the lease file
            timeout_seconds: Max time to wait for the lease
            stale_threshold_seconds: Age after which a lease whose process is
                gone may be taken over
        """
        self.lock_dir = Path(backup_root) / "locks"
        self.lock_file = self.lock_dir / "run.lock"
        self.holder = holder
        self.timeout_seconds = timeout_seconds
        self.stale_threshold_seconds = stale_threshold_seconds
        self.poll_interval = poll_interval
        self.lease_metadata: Optional[dict] = None

    @property
    def held(self) -> bool:
        return self.lease_metadata is not None

    def acquire(self) -> None:
        """
        Raises:
            LeaseError: If the lease is still held by another run after the timeout
        """
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout_seconds

        while True:
            if self._try_acquire():
                logger.info(f"Run lease acquired by {self.holder} (pid {os.getpid()})")
                return

            if self._is_stale():
                logger.warning(f"Taking over stale run lease {self.lock_file}")
                self._force_release()
                continue

            if time.monotonic() >= deadline:
                info = self.read() or {}
                raise LeaseError(
                    f"Could not acquire run lease after {self.timeout_seconds}s. "
                    f"Held by: {info.get('holder', 'unknown')} (pid {info.get('pid', '?')})",
                    path=str(self.lock_file),
                )

            time.sleep(self.poll_interval)

    def release(self) -> None:
        if not self.held:
            return

        current = self.read()
        if current is not None and current.get("token") != self.lease_metadata["token"]:
            logger.error(
                f"Run lease ownership mismatch: expected {self.lease_metadata['token']}, "
                f"got {current.get('token')}; leaving it in place"
            )
        else:
            self.lock_file.unlink(missing_ok=True)
            logger.info(f"Run lease released by {self.holder}")
        self.lease_metadata = None

    def read(self) -> Optional[dict]:
        """Metadata of the current holder, None if the lease is free or unreadable."""
        try:
            return json.loads(self.lock_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable run lease file {self.lock_file}: {e}")
            return None

    def _try_acquire(self) -> bool:
        try:
            fd = os.open(str(self.lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False

        metadata = {
            "holder": self.holder,
            "token": f"{os.getpid()}-{time.time_ns()}",
            "pid": os.getpid(),
            "hostname": socket.gethostname(),
            "acquired_at": datetime.utcnow().isoformat(),
        }
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(metadata, f, indent=2)

        self.lease_metadata = metadata
        return True

    def _is_stale(self) -> bool:
        """Old enough AND the holder process is not alive on this host."""
        data = self.read()
        if data is None:
            # Unreadable lease (e.g. mid-write): judge by file age alone
            try:
                age_seconds = time.time() - self.lock_file.stat().st_mtime
            except FileNotFoundError:
                return False
            return age_seconds > self.stale_threshold_seconds

        try:
            acquired_at = datetime.fromisoformat(data["acquired_at"])
        except (KeyError, ValueError):
            return False

        age = datetime.utcnow() - acquired_at
        if age <= timedelta(seconds=self.stale_threshold_seconds):
            return False

        pid = data.get("pid")
        if pid and data.get("hostname") == socket.gethostname() and _is_process_alive(int(pid)):
            logger.warning(f"Run lease is old ({age.total_seconds():.0f}s) but process {pid} is alive")
            return False
        return True

    def _force_release(self) -> None:
        self.lock_file.unlink(missing_ok=True)

    def __enter__(self) -> "RunLease":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def _is_process_alive(pid: int) -> bool:
    if os.name == "nt":
        # os.kill would terminate the process on Windows; assume alive
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    return True
