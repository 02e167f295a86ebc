from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from siteplan.errors import ConfigurationError

from audit.db import DATABASE_URL


def _read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"0", "false", "off", "no"}:
        return False
    if normalized in {"1", "true", "on", "yes"}:
        return True
    return default


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


@dataclass(frozen=True)
class PipelineConfig:
    artifact_root: Path = Path("site")
    backup_root: Path = Path(".sitekeeper/backups")
    audit_db_url: str = DATABASE_URL
    policy_path: Optional[Path] = None
    retain_successful: int = 0
    failure_placeholder: bool = False
    sitemap_base_url: Optional[str] = None
    sitemap_path: str = "sitemap.xml"
    meta_enabled: bool = False
    meta_path: str = "meta.json"
    site_name: str = "sitekeeper"
    audit_context_size: int = 5
    lease_timeout_seconds: int = 60
    lease_stale_seconds: int = 3600

    def __post_init__(self):
        if self.retain_successful < 0:
            raise ConfigurationError("retain_successful must be >= 0")
        if self.audit_context_size < 0:
            raise ConfigurationError("audit_context_size must be >= 0")

    @property
    def sitemap_enabled(self) -> bool:
        return bool(self.sitemap_base_url)

    def check_roots(self) -> None:
        """
        Raises:
            ConfigurationError: If the backup root lies inside the artifact root
                (or the other way round)
        """
        artifact_root = Path(self.artifact_root).resolve()
        backup_root = Path(self.backup_root).resolve()
        if _is_within(backup_root, artifact_root) or _is_within(artifact_root, backup_root):
            raise ConfigurationError(
                f"Backup root {backup_root} must lie outside the artifact root {artifact_root}"
            )

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        policy_path = os.getenv("SITEKEEPER_POLICY_PATH")
        return cls(
            artifact_root=Path(os.getenv("SITEKEEPER_ARTIFACT_ROOT", "site")),
            backup_root=Path(os.getenv("SITEKEEPER_BACKUP_ROOT", ".sitekeeper/backups")),
            audit_db_url=os.getenv("SITEKEEPER_AUDIT_DB_URL", DATABASE_URL),
            policy_path=Path(policy_path) if policy_path else None,
            retain_successful=_read_int_env("SITEKEEPER_RETAIN_SUCCESSFUL", 0),
            failure_placeholder=_read_bool_env("SITEKEEPER_FAILURE_PLACEHOLDER", False),
            sitemap_base_url=os.getenv("SITEKEEPER_SITEMAP_BASE_URL") or None,
            sitemap_path=os.getenv("SITEKEEPER_SITEMAP_PATH", "sitemap.xml"),
            meta_enabled=_read_bool_env("SITEKEEPER_META_ENABLED", False),
            meta_path=os.getenv("SITEKEEPER_META_PATH", "meta.json"),
            site_name=os.getenv("SITEKEEPER_SITE_NAME", "sitekeeper"),
            audit_context_size=_read_int_env("SITEKEEPER_AUDIT_CONTEXT_SIZE", 5),
            lease_timeout_seconds=_read_int_env("SITEKEEPER_LEASE_TIMEOUT", 60),
            lease_stale_seconds=_read_int_env("SITEKEEPER_LEASE_STALE", 3600),
        )
