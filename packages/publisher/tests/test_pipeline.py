"""
Tests for PublishPipeline

Validates:
- End-to-end region update with audit entry
- Rejection before any write (traversal, missing footer)
- Rollback fidelity on write and verify failures
- Restore failure is audited and re-raised
- Derived artifacts share the run's write set
- Failure placeholder and plan context
"""

import dataclasses
import json

import pytest

from audit import RunOutcome
from publisher import PublishPipeline, RunStatus
from siteplan import FooterMissingError, Plan, TextEntry
from siteplan.errors import BackupRestoreError

FOOTER = "Created by X"


def seed_page(body: str = "") -> str:
    return f"<html><body><h1>Site</h1><!--R-START-->{body}<!--R-END--><footer>{FOOTER}</footer></body></html>"


def tree_state(root):
    """path → bytes for every file under root."""
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def _fragment_plan(fragment="<p>Hello</p>", summary="Say hello"):
    return {
        "entries": [
            {"path": "index.html", "content": fragment, "kind": "text", "type": "html-fragment"},
        ],
        "summary": summary,
    }


def _two_file_plan():
    return {
        "entries": [
            {"path": "index.html", "content": "<p>New</p>", "kind": "text", "type": "html-fragment"},
            {"path": "style.css", "content": "/*R-START*/body{}/*R-END*/", "kind": "text"},
        ],
        "summary": "two files",
    }


@pytest.fixture
def seeded(artifact_root):
    (artifact_root / "index.html").write_text(seed_page("<p>Old</p>"))
    (artifact_root / "style.css").write_text("/*R-START*/p{}/*R-END*/")
    return artifact_root


# ==================== Success ====================

def test_region_update_end_to_end(pipeline, artifact_root, audit_log):
    (artifact_root / "index.html").write_text(seed_page())

    result = pipeline.run_once(_fragment_plan())

    assert result.success
    assert result.status == RunStatus.COMPLETED
    assert result.files_written == ["index.html"]
    assert (artifact_root / "index.html").read_text() == seed_page("<p>Hello</p>")

    [entry] = audit_log.all()
    assert entry.outcome == RunOutcome.SUCCESS
    assert entry.summary == "Say hello"
    assert entry.files_written == ["index.html"]
    assert entry.run_id == result.run_id


def test_successful_snapshot_discarded(pipeline, seeded, backup_root):
    result = pipeline.run_once(_fragment_plan())

    assert result.success
    assert not (backup_root / result.snapshot_id).exists()


def test_inline_script_stripped_before_publish(pipeline, seeded):
    result = pipeline.run_once(_fragment_plan("<p>Hi</p><script>track()</script>"))

    assert result.success
    assert "track()" not in (seeded / "index.html").read_text()


def test_accepts_raw_generator_text(pipeline, seeded):
    raw = "Sure! Here is the update:\n" + json.dumps(_fragment_plan()) + "\nEnjoy."

    result = pipeline.run_once(raw)

    assert result.success


def test_accepts_typed_plan(pipeline, artifact_root):
    plan = Plan(
        entries=[TextEntry(path="about.html", content=f"<p>About</p><footer>{FOOTER}</footer>")],
        summary="about page",
    )

    result = pipeline.run_once(plan)

    assert result.success
    assert (artifact_root / "about.html").exists()


# ==================== Rejection ====================

def test_traversal_rejected_without_writes(pipeline, seeded, tmp_path, backup_root, audit_log):
    before = tree_state(seeded)
    plan = {
        "entries": [{"path": "../secrets.txt", "content": "x", "kind": "text"}],
        "summary": "escape",
    }

    result = pipeline.run_once(plan)

    assert result.status == RunStatus.REJECTED
    assert result.error_code == "UnsafePath"
    assert result.error_path == "../secrets.txt"
    assert result.snapshot_id is None
    assert not (tmp_path / "secrets.txt").exists()
    assert not backup_root.exists() or not any(backup_root.iterdir())
    assert tree_state(seeded) == before

    [entry] = audit_log.all()
    assert entry.outcome == RunOutcome.FAILURE
    assert entry.files_written == []
    assert entry.error_detail.startswith("UnsafePath")


def test_missing_footer_rejects_whole_plan(pipeline, seeded):
    before = tree_state(seeded)
    plan = {
        "entries": [
            {"path": "ok.txt", "content": "fine", "kind": "text"},
            {"path": "about.html", "content": "<p>no footer</p>", "kind": "text"},
        ],
        "summary": "bad",
    }

    result = pipeline.run_once(plan)

    assert result.status == RunStatus.REJECTED
    assert result.error_code == "FooterMissing"
    assert tree_state(seeded) == before


def test_malformed_plan_rejected(pipeline, audit_log):
    result = pipeline.run_once("no json here")

    assert result.status == RunStatus.REJECTED
    assert result.error_code == "PlanFormatError"
    assert audit_log.count() == 1


def test_nul_in_path_rejected_and_audited(pipeline, seeded, audit_log):
    before = tree_state(seeded)
    plan = {"entries": [{"path": "a\x00b.txt", "content": "hi", "kind": "text"}], "summary": "s"}

    result = pipeline.run_once(plan)

    assert result.status == RunStatus.REJECTED
    assert result.error_code == "UnsafePath"
    assert audit_log.count() == 1
    assert tree_state(seeded) == before


def test_composed_page_over_file_ceiling_rejected(pipeline, artifact_root, audit_log):
    # surroundings and fragment each fit under 1000 bytes, the composed page does not
    filler = "<p>" + "s" * 900 + "</p>"
    (artifact_root / "index.html").write_text(seed_page() + filler)
    before = tree_state(artifact_root)

    result = pipeline.run_once(_fragment_plan("<p>" + "f" * 900 + "</p>"))

    assert result.status == RunStatus.REJECTED
    assert result.error_code == "FileTooLarge"
    assert result.error_path == "index.html"
    assert audit_log.count() == 1
    assert tree_state(artifact_root) == before


# ==================== Rollback ====================

def test_write_failure_restores_tree_byte_identical(pipeline, seeded, audit_log, monkeypatch):
    before = tree_state(seeded)
    real_write = pipeline.publisher._write_bytes

    def fail_on_stylesheet(target, data):
        if target.name == "style.css":
            raise OSError("simulated disk failure")
        real_write(target, data)

    monkeypatch.setattr(pipeline.publisher, "_write_bytes", fail_on_stylesheet)

    result = pipeline.run_once(_two_file_plan())

    assert result.status == RunStatus.ROLLED_BACK
    assert result.rolled_back
    assert result.error_code == "WriteError"
    assert result.error_path == "style.css"
    assert tree_state(seeded) == before

    [entry] = audit_log.all()
    assert entry.outcome == RunOutcome.FAILURE
    assert entry.snapshot_id == result.snapshot_id
    assert not entry.requires_intervention


def test_new_files_removed_on_rollback(pipeline, seeded, monkeypatch):
    before = tree_state(seeded)
    real_write = pipeline.publisher._write_bytes

    def fail_last(target, data):
        if target.name == "zz.txt":
            raise OSError("boom")
        real_write(target, data)

    monkeypatch.setattr(pipeline.publisher, "_write_bytes", fail_last)
    plan = {
        "entries": [
            {"path": "pages/new.html", "content": f"<p>n</p>{FOOTER}", "kind": "text"},
            {"path": "zz.txt", "content": "z", "kind": "text"},
        ],
        "summary": "new pages",
    }

    result = pipeline.run_once(plan)

    assert result.rolled_back
    assert tree_state(seeded) == before
    assert not (seeded / "pages").exists()


def test_failed_snapshot_kept_for_inspection(pipeline, seeded, backup_root, monkeypatch):
    def broken(target, data):
        raise OSError("boom")

    monkeypatch.setattr(pipeline.publisher, "_write_bytes", broken)

    result = pipeline.run_once(_fragment_plan())

    manifest = json.loads((backup_root / result.snapshot_id / "manifest.json").read_text())
    assert manifest["status"] == "failed"


def test_verify_failure_rolls_back(pipeline, seeded, monkeypatch):
    before = tree_state(seeded)

    def failing_verify(written):
        raise FooterMissingError("Protected footer missing in index.html", path="index.html")

    monkeypatch.setattr(pipeline.verifier, "verify", failing_verify)

    result = pipeline.run_once(_fragment_plan())

    assert result.status == RunStatus.ROLLED_BACK
    assert result.error_code == "FooterMissing"
    assert tree_state(seeded) == before


def test_unexpected_error_restores_then_propagates(pipeline, seeded, monkeypatch):
    before = tree_state(seeded)

    def crash(written):
        raise RuntimeError("bug")

    monkeypatch.setattr(pipeline.verifier, "verify", crash)

    with pytest.raises(RuntimeError):
        pipeline.run_once(_fragment_plan())

    assert tree_state(seeded) == before


def test_restore_failure_is_audited_and_reraised(pipeline, seeded, audit_log, monkeypatch):
    real_publish_write = pipeline.publisher._write_bytes

    def fail_on_stylesheet(target, data):
        if target.name == "style.css":
            raise OSError("simulated disk failure")
        real_publish_write(target, data)

    real_restore_write = pipeline.backups._write_atomic

    def fail_inside_tree(target, data):
        if seeded.resolve() in target.parents:
            raise OSError("restore denied")
        real_restore_write(target, data)

    monkeypatch.setattr(pipeline.publisher, "_write_bytes", fail_on_stylesheet)
    monkeypatch.setattr(pipeline.backups, "_write_atomic", fail_inside_tree)

    with pytest.raises(BackupRestoreError) as exc_info:
        pipeline.run_once(_two_file_plan())

    error = exc_info.value
    assert "index.html" in error.failures
    assert error.result.status == RunStatus.RESTORE_FAILED
    assert error.result.requires_intervention

    [entry] = audit_log.all()
    assert entry.outcome == RunOutcome.FAILURE
    assert entry.requires_intervention
    assert entry.error_detail.startswith("BackupRestoreError")


# ==================== Derived artifacts ====================

def test_derived_artifacts_written_with_plan(config, policy, audit_log, seeded):
    config = dataclasses.replace(
        config, sitemap_base_url="https://example.test", meta_enabled=True, site_name="Demo"
    )
    pipeline = PublishPipeline(config, policy=policy, audit_log=audit_log)

    result = pipeline.run_once(_fragment_plan("<p>Gardening tips for gardening people</p>"))

    assert result.success
    assert set(result.files_written) == {"index.html", "sitemap.xml", "meta.json"}
    assert "<loc>https://example.test/index.html</loc>" in (seeded / "sitemap.xml").read_text()

    meta = json.loads((seeded / "meta.json").read_text())
    assert meta["description"] == "Gardening tips for gardening people"
    assert meta["keywords"].split(",")[0] == "gardening"


def test_derived_artifacts_rolled_back(config, policy, audit_log, seeded, monkeypatch):
    config = dataclasses.replace(config, sitemap_base_url="https://example.test")
    pipeline = PublishPipeline(config, policy=policy, audit_log=audit_log)
    before = tree_state(seeded)
    real_write = pipeline.publisher._write_bytes

    def fail_on_sitemap(target, data):
        if target.name == "sitemap.xml":
            raise OSError("boom")
        real_write(target, data)

    monkeypatch.setattr(pipeline.publisher, "_write_bytes", fail_on_sitemap)

    result = pipeline.run_once(_fragment_plan())

    assert result.rolled_back
    assert tree_state(seeded) == before


# ==================== Placeholder & context ====================

def test_failure_placeholder_written_when_index_absent(config, policy, audit_log, artifact_root, monkeypatch):
    config = dataclasses.replace(config, failure_placeholder=True)
    pipeline = PublishPipeline(config, policy=policy, audit_log=audit_log)
    real_write = pipeline.publisher._write_bytes

    def fail_on_txt(target, data):
        if target.suffix == ".txt":
            raise OSError("boom")
        real_write(target, data)

    monkeypatch.setattr(pipeline.publisher, "_write_bytes", fail_on_txt)
    plan = {
        "entries": [
            {"path": "index.html", "content": seed_page("<p>first</p>"), "kind": "text"},
            {"path": "notes.txt", "content": "n", "kind": "text"},
        ],
        "summary": "first publish",
    }

    result = pipeline.run_once(plan)

    assert result.rolled_back
    placeholder = (artifact_root / "index.html").read_text()
    assert FOOTER in placeholder
    assert "Update failed" in placeholder


def test_no_placeholder_by_default(pipeline, artifact_root, monkeypatch):
    def broken(target, data):
        raise OSError("boom")

    monkeypatch.setattr(pipeline.publisher, "_write_bytes", broken)

    pipeline.run_once({
        "entries": [{"path": "index.html", "content": seed_page(), "kind": "text"}],
        "summary": "first publish",
    })

    assert not (artifact_root / "index.html").exists()


def test_plan_context_lists_files_and_recent_runs(pipeline, seeded):
    pipeline.run_once(_fragment_plan(summary="first"))
    pipeline.run_once({"entries": [], "summary": "empty"})

    context = pipeline.plan_context(limit=5)

    assert context["files"] == ["index.html", "style.css"]
    assert [run["summary"] for run in context["recent_runs"]] == ["first", "Plan contains no entries"]
    assert context["recent_runs"][1]["outcome"] == "failure"
    assert any(FOOTER in rule for rule in context["rules"])


def test_result_to_dict(pipeline, seeded):
    data = pipeline.run_once(_fragment_plan()).to_dict()

    assert data["status"] == "completed"
    assert data["success"] is True
    assert data["files_written"] == ["index.html"]
    assert data["duration_seconds"] >= 0
    assert data["total_bytes"] == len("<p>Hello</p>")
    assert data["derived_files"] == []
    assert data["policy_hash"] == "default"


def test_result_records_derived_files(config, policy, audit_log, seeded):
    config = dataclasses.replace(config, sitemap_base_url="https://example.test")
    pipeline = PublishPipeline(config, policy=policy, audit_log=audit_log)

    result = pipeline.run_once(_fragment_plan())

    assert result.derived_files == ["sitemap.xml"]
    assert result.total_bytes == len("<p>Hello</p>")
