"""
sitekeeper publisher package

Turns an approved plan into a published, verified and audited tree:
- backup: run-scoped snapshots and restore
- applier: atomic per-file writes with concurrent-modification checks
- verifier: post-publish footer/marker checks
- derived: sitemap.xml and meta.json
- pipeline: run_once / plan_context
- lease: one run per artifact root
"""

from .applier import AtomicPublisher
from .backup import BackupManager, Snapshot
from .config import PipelineConfig
from .derived import build_sitemap, generate_meta
from .lease import LeaseError, RunLease
from .pipeline import PublishPipeline, RunResult, RunStatus
from .verifier import TreeVerifier

__all__ = [
    "AtomicPublisher",
    "BackupManager",
    "LeaseError",
    "PipelineConfig",
    "PublishPipeline",
    "RunLease",
    "RunResult",
    "RunStatus",
    "Snapshot",
    "TreeVerifier",
    "build_sitemap",
    "generate_meta",
]

__version__ = "1.0.0"
