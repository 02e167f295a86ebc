from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from audit import RunOutcome
from siteplan.errors import BackupRestoreError, ConfigurationError

from publisher.config import PipelineConfig
from publisher.lease import LeaseError, RunLease
from publisher.pipeline import PublishPipeline

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sitekeeper",
        description="Validate, publish and audit generated site content.",
    )
    parser.add_argument("--artifact-root", type=Path, help="Published tree (SITEKEEPER_ARTIFACT_ROOT)")
    parser.add_argument("--backup-root", type=Path, help="Snapshot directory (SITEKEEPER_BACKUP_ROOT)")
    parser.add_argument("--policy", type=Path, help="Safety policy YAML (SITEKEEPER_POLICY_PATH)")
    parser.add_argument("--audit-db", help="Audit database URL (SITEKEEPER_AUDIT_DB_URL)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )

    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run one plan (file path or - for stdin)")
    run.add_argument("plan", help="Plan JSON or raw generator output; - reads stdin")

    context = commands.add_parser("context", help="Print the context for the next plan request")
    context.add_argument("--limit", type=int, default=None, help="Number of recent runs")

    history = commands.add_parser("history", help="Print the audit log")
    history.add_argument("--limit", type=int, default=None, help="Only the last N entries")
    history.add_argument("--failures", action="store_true", help="Only failed runs")

    commands.add_parser("verify", help="Check footer and region markers of the current tree")

    restore = commands.add_parser("restore", help="Restore a persisted snapshot")
    restore.add_argument("snapshot_id")

    return parser


def _load_config(args: argparse.Namespace, config: Optional[PipelineConfig]) -> PipelineConfig:
    config = config or PipelineConfig.from_env()
    overrides = {}
    if args.artifact_root is not None:
        overrides["artifact_root"] = args.artifact_root
    if args.backup_root is not None:
        overrides["backup_root"] = args.backup_root
    if args.policy is not None:
        overrides["policy_path"] = args.policy
    if args.audit_db is not None:
        overrides["audit_db_url"] = args.audit_db
    return dataclasses.replace(config, **overrides) if overrides else config


def _read_plan(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _lease(config: PipelineConfig, holder: str) -> RunLease:
    return RunLease(
        config.backup_root,
        holder=holder,
        timeout_seconds=config.lease_timeout_seconds,
        stale_threshold_seconds=config.lease_stale_seconds,
    )


def _cmd_run(pipeline: PublishPipeline, args: argparse.Namespace) -> int:
    try:
        raw = _read_plan(args.plan)
    except OSError as e:
        print(f"Cannot read plan {args.plan}: {e}", file=sys.stderr)
        return EXIT_FAILED

    try:
        with _lease(pipeline.config, holder="cli run"):
            result = pipeline.run_once(raw)
    except BackupRestoreError as e:
        if e.result is not None:
            print(json.dumps(e.result.to_dict(), indent=2))
        print(f"FATAL {e.detail()}", file=sys.stderr)
        for path, reason in sorted(e.failures.items()):
            print(f"  {path}: {reason}", file=sys.stderr)
        return EXIT_FATAL

    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_OK if result.success else EXIT_FAILED


def _cmd_context(pipeline: PublishPipeline, args: argparse.Namespace) -> int:
    print(json.dumps(pipeline.plan_context(args.limit), indent=2, ensure_ascii=False))
    return EXIT_OK


def _cmd_history(pipeline: PublishPipeline, args: argparse.Namespace) -> int:
    outcome = RunOutcome.FAILURE if args.failures else None
    entries = pipeline.audit_log.all(outcome=outcome)
    if args.limit is not None:
        entries = entries[-args.limit:] if args.limit > 0 else []

    for entry in entries:
        flag = " [INTERVENTION REQUIRED]" if entry.requires_intervention else ""
        files = ", ".join(entry.files_written) or "-"
        print(f"#{entry.id} {entry.timestamp.isoformat()} {entry.outcome.value.upper()}{flag} {entry.summary}")
        print(f"    files: {files}")
        if entry.error_detail:
            print(f"    error: {entry.error_detail}")
    return EXIT_OK


def _cmd_verify(pipeline: PublishPipeline, args: argparse.Namespace) -> int:
    problems = pipeline.verifier.check()
    if not problems:
        print("Verify OK: footer and region markers present.")
        return EXIT_OK
    for problem in problems:
        print(problem.detail())
    return EXIT_FAILED


def _cmd_restore(pipeline: PublishPipeline, args: argparse.Namespace) -> int:
    try:
        snapshot = pipeline.backups.load(args.snapshot_id)
    except (ValueError, FileNotFoundError) as e:
        print(str(e), file=sys.stderr)
        return EXIT_FAILED
    except BackupRestoreError as e:
        print(f"FATAL {e.detail()}", file=sys.stderr)
        return EXIT_FATAL

    try:
        with _lease(pipeline.config, holder="cli restore"):
            restored = pipeline.backups.restore(snapshot)
    except BackupRestoreError as e:
        print(f"FATAL {e.detail()}", file=sys.stderr)
        return EXIT_FATAL

    print(f"Restored {len(restored)} paths from {snapshot.id}")
    return EXIT_OK


COMMANDS = {
    "run": _cmd_run,
    "context": _cmd_context,
    "history": _cmd_history,
    "verify": _cmd_verify,
    "restore": _cmd_restore,
}


def main(argv: Sequence[str] | None = None, *, config: Optional[PipelineConfig] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        pipeline = PublishPipeline(_load_config(args, config))
        return COMMANDS[args.command](pipeline, args)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_FATAL
    except LeaseError as e:
        print(e.message, file=sys.stderr)
        return EXIT_FATAL


if __name__ == "__main__":
    raise SystemExit(main())
