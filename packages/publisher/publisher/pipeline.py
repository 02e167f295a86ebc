"""
Publish Pipeline - one run from generator output to audited outcome

Flow:
    1. Ingest and validate the whole plan (nothing touched yet)
    2. Add derived artifacts (sitemap.xml, meta.json) to the write set
    3. Snapshot every path about to be written
    4. Publish atomically
    5. Verify the tree on disk
    6. Restore the snapshot if 4 or 5 failed
    7. Append the outcome to the audit log, success or failure

Safety:
- Validation failures never reach the filesystem
- Publish/verify failures leave the tree byte-identical to the snapshot
- A failed restore is audited, logged at CRITICAL and re-raised
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from audit import AuditLog, RunOutcome
from safety.policy import SafetyPolicy
from safety.region import locate
from safety.validator import ApprovedPlan, PreparedWrite, SafetyValidator
from siteplan.errors import (
    BackupRestoreError,
    PlanFormatError,
    RegionMalformedError,
    RegionMissingError,
    SiteKeeperError,
    ValidationError,
    WriteError,
)
from siteplan.ingest import parse_plan
from siteplan.models import Plan

from .applier import AtomicPublisher
from .backup import BackupManager, Snapshot
from .config import PipelineConfig
from .derived import list_pages, meta_write, sitemap_write
from .verifier import TreeVerifier

logger = logging.getLogger(__name__)

PLACEHOLDER_PATH = "index.html"


class RunStatus(Enum):
    """Run status."""
    PENDING = "pending"
    VALIDATING = "validating"
    BACKING_UP = "backing_up"
    PUBLISHING = "publishing"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    REJECTED = "rejected"
    # Snapshot could not be taken; nothing was written
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    RESTORE_FAILED = "restore_failed"


@dataclass
class RunResult:
    """Outcome of one run_once call."""
    run_id: str
    status: RunStatus
    started_at: datetime
    summary: str = ""
    files_written: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_path: Optional[str] = None
    rolled_back: bool = False
    requires_intervention: bool = False
    snapshot_id: Optional[str] = None
    # Approved plan bytes, derived artifacts excluded
    total_bytes: int = 0
    derived_files: List[str] = field(default_factory=list)
    policy_hash: Optional[str] = None
    completed_at: Optional[datetime] = None
    status_history: List[Dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def update_status(self, new_status: RunStatus, message: str = "") -> None:
        """Update run status and record it in the history."""
        self.status_history.append({
            "status": new_status.value,
            "message": message,
            "timestamp": datetime.utcnow().isoformat(),
        })
        self.status = new_status

    def set_error(self, error: SiteKeeperError) -> None:
        self.error_code = error.code
        self.error_message = error.message
        self.error_path = error.path

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "success": self.success,
            "summary": self.summary,
            "files_written": list(self.files_written),
            "error_code": self.error_code,
            "error_message": self.error_message,
            "error_path": self.error_path,
            "rolled_back": self.rolled_back,
            "requires_intervention": self.requires_intervention,
            "snapshot_id": self.snapshot_id,
            "total_bytes": self.total_bytes,
            "derived_files": list(self.derived_files),
            "policy_hash": self.policy_hash,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


class PublishPipeline:
    """
    Coordinates:
    - SafetyValidator: approves or rejects the whole plan
    - BackupManager: snapshot / restore
    - AtomicPublisher: writes approved content
    - TreeVerifier: post-publish checks
    - AuditLog: one entry per run
    """

    def __init__(
        self,
        config: PipelineConfig,
        policy: Optional[SafetyPolicy] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        """
        Args:
            config: Roots, retention and derived-artifact settings
            policy: Safety policy; loaded from config.policy_path (or built-in
                defaults) when omitted
            audit_log: Audit store; opened from config.audit_db_url when omitted

        Raises:
            ConfigurationError: If the roots overlap or the policy is invalid
        """
        config.check_roots()
        self.config = config
        self.artifact_root = Path(config.artifact_root).resolve()
        self.artifact_root.mkdir(parents=True, exist_ok=True)

        if policy is None:
            policy = SafetyPolicy.from_yaml(config.policy_path) if config.policy_path else SafetyPolicy()
        self.policy = policy

        self.audit_log = audit_log or AuditLog(config.audit_db_url)
        self.validator = SafetyValidator(policy, self.artifact_root)
        self.backups = BackupManager(self.artifact_root, config.backup_root, config.retain_successful)
        self.publisher = AtomicPublisher(self.artifact_root)
        self.verifier = TreeVerifier(policy, self.artifact_root)

    def run_once(self, plan: Union[Plan, dict, str, bytes]) -> RunResult:
        """
        Run one plan end to end.

        Args:
            plan: Parsed Plan, wire-format mapping, or raw generator text

        Returns:
            RunResult (completed, rejected, failed or rolled_back)

        Raises:
            BackupRestoreError: If a failed run could not be restored; the
                audited RunResult is attached as `error.result`
        """
        result = RunResult(
            run_id=f"run_{uuid.uuid4().hex[:12]}",
            status=RunStatus.PENDING,
            started_at=datetime.utcnow(),
        )
        logger.info(f"Run {result.run_id} started (policy {self.policy.snapshot_hash[:12]})")

        # Step 1: validate
        result.update_status(RunStatus.VALIDATING, "Validating plan")
        try:
            parsed = parse_plan(plan)
            result.summary = parsed.summary
            approved = self.validator.validate(parsed)
        except (PlanFormatError, ValidationError) as e:
            return self._reject(result, e)

        result.total_bytes = approved.total_bytes
        result.policy_hash = approved.policy_hash

        # Step 2: derived artifacts join the same write set
        approved = self._with_derived(approved)
        result.derived_files = [w.path for w in approved.writes if w.source == "derived"]

        # Step 3: snapshot
        result.update_status(RunStatus.BACKING_UP, f"Snapshotting {len(approved.writes)} paths")
        try:
            snapshot = self.backups.snapshot(approved.paths)
        except OSError as e:
            return self._fail_before_write(result, WriteError(f"Could not create snapshot: {e}"))
        result.snapshot_id = snapshot.id

        # Steps 4-5: publish + verify, restore on any failure
        try:
            result.update_status(RunStatus.PUBLISHING, f"Publishing {len(approved.writes)} files")
            written = self.publisher.publish(approved, snapshot)

            result.update_status(RunStatus.VERIFYING, "Verifying published tree")
            self.verifier.verify(written)
        except SiteKeeperError as e:
            return self._roll_back(result, snapshot, e)
        except Exception as e:
            # Unexpected failure: the tree must still go back before the error surfaces
            logger.exception(f"Run {result.run_id} crashed while publishing")
            self._roll_back(result, snapshot, WriteError(f"Unexpected error: {e}"))
            raise

        # Success
        self.backups.finalize_success(snapshot)
        result.files_written = written
        result.update_status(RunStatus.COMPLETED, "Run completed successfully")
        result.completed_at = datetime.utcnow()

        self.audit_log.append(
            RunOutcome.SUCCESS,
            result.summary,
            files_written=written,
            run_id=result.run_id,
            snapshot_id=snapshot.id,
        )
        logger.info(
            f"Run {result.run_id} completed: {len(written)} files "
            f"({result.total_bytes} plan bytes, {len(result.derived_files)} derived) "
            f"in {result.duration_seconds:.2f}s"
        )
        return result

    def plan_context(self, limit: Optional[int] = None) -> Dict[str, Any]:
        """
        Context embedded in the next plan request.

        Returns:
            {"files": current artifact listing,
             "recent_runs": last `limit` audit entries oldest first,
             "rules": policy rules in prose}
        """
        if limit is None:
            limit = self.config.audit_context_size
        return {
            "files": self.list_files(),
            "recent_runs": [entry.to_context() for entry in self.audit_log.recent(limit)],
            "rules": self.policy.describe(),
        }

    def list_files(self) -> List[str]:
        return sorted(
            path.relative_to(self.artifact_root).as_posix()
            for path in self.artifact_root.rglob("*")
            if path.is_file()
        )

    def _with_derived(self, approved: ApprovedPlan) -> ApprovedPlan:
        extra: List[PreparedWrite] = []

        if self.config.sitemap_enabled:
            pages = list_pages(self.artifact_root, self.policy.markup_extensions, approved.paths)
            extra.append(sitemap_write(
                self.config.sitemap_path, pages, self.config.sitemap_base_url, datetime.utcnow()
            ))

        if self.config.meta_enabled:
            fragment = self._meta_source(approved)
            if fragment is not None:
                extra.append(meta_write(self.config.meta_path, fragment, self.config.site_name))

        if not extra:
            return approved
        logger.info(f"Derived artifacts: {', '.join(w.path for w in extra)}")
        return approved.with_writes(extra)

    def _meta_source(self, approved: ApprovedPlan) -> Optional[str]:
        """Mutable region of the index page as it will be after this run."""
        write = approved.get("index.html")
        if write is not None:
            content = write.data.decode("utf-8")
        else:
            index = self.artifact_root / "index.html"
            if not index.is_file():
                return None
            content = index.read_text(encoding="utf-8", errors="replace")

        region = self.policy.region_for_target("index.html")
        if region is None:
            return content
        try:
            return locate(content, region).mutable
        except (RegionMissingError, RegionMalformedError):
            return content

    def _reject(self, result: RunResult, error: SiteKeeperError) -> RunResult:
        logger.error(f"Run {result.run_id} rejected: {error.detail()}")
        result.set_error(error)
        result.update_status(RunStatus.REJECTED, error.message)
        result.completed_at = datetime.utcnow()

        self.audit_log.append(
            RunOutcome.FAILURE,
            error.message,
            error_detail=error.detail(),
            run_id=result.run_id,
        )
        return result

    def _fail_before_write(self, result: RunResult, error: SiteKeeperError) -> RunResult:
        logger.error(f"Run {result.run_id} failed before writing: {error.detail()}")
        result.set_error(error)
        result.update_status(RunStatus.FAILED, error.message)
        result.completed_at = datetime.utcnow()

        self.audit_log.append(
            RunOutcome.FAILURE,
            error.message,
            error_detail=error.detail(),
            run_id=result.run_id,
        )
        return result

    def _roll_back(self, result: RunResult, snapshot: Snapshot, error: SiteKeeperError) -> RunResult:
        logger.error(f"Run {result.run_id} failed, restoring snapshot {snapshot.id}: {error.detail()}")
        result.set_error(error)

        try:
            self.backups.restore(snapshot)
        except BackupRestoreError as restore_error:
            self._restore_failed(result, snapshot, error, restore_error)
            raise restore_error

        self._mark_failed(snapshot)
        self._write_placeholder()

        result.rolled_back = True
        result.update_status(RunStatus.ROLLED_BACK, error.message)
        result.completed_at = datetime.utcnow()

        self.audit_log.append(
            RunOutcome.FAILURE,
            error.message,
            error_detail=error.detail(),
            run_id=result.run_id,
            snapshot_id=snapshot.id,
        )
        return result

    def _restore_failed(
        self,
        result: RunResult,
        snapshot: Snapshot,
        error: SiteKeeperError,
        restore_error: BackupRestoreError,
    ) -> None:
        logger.critical(
            f"Run {result.run_id}: restore of snapshot {snapshot.id} FAILED for "
            f"{sorted(restore_error.failures)}; artifact tree may be inconsistent, "
            f"recover with `sitekeeper restore {snapshot.id}`"
        )
        self._mark_failed(snapshot)

        result.set_error(restore_error)
        result.requires_intervention = True
        result.update_status(RunStatus.RESTORE_FAILED, restore_error.message)
        result.completed_at = datetime.utcnow()

        self.audit_log.append(
            RunOutcome.FAILURE,
            f"Restore failed after: {error.message}",
            error_detail=f"{restore_error.detail()} (after {error.detail()})",
            run_id=result.run_id,
            snapshot_id=snapshot.id,
            requires_intervention=True,
        )
        restore_error.result = result

    def _mark_failed(self, snapshot: Snapshot) -> None:
        try:
            self.backups.mark_failed(snapshot)
        except OSError as e:
            logger.warning(f"Could not mark snapshot {snapshot.id} as failed: {e}")

    def _write_placeholder(self) -> None:
        """Minimal error page, only when enabled and the restored tree has no index."""
        if not self.config.failure_placeholder:
            return
        target = self.artifact_root / PLACEHOLDER_PATH
        if target.exists():
            return

        page = (
            "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\"><title>Update failed</title></head>\n"
            "<body><main><h1>Update failed</h1>"
            "<p>The latest update could not be published. Please check back later.</p></main>\n"
            f"<footer>{self.policy.footer_text}</footer></body></html>\n"
        )
        try:
            self.publisher._write_bytes(target, page.encode("utf-8"))
            logger.warning(f"Wrote failure placeholder {PLACEHOLDER_PATH}")
        except OSError as e:
            logger.error(f"Could not write failure placeholder: {e}")
