"""Shared fixtures for publisher tests."""

import pytest

from audit import AuditLog
from publisher import PipelineConfig, PublishPipeline
from safety import Region, SafetyPolicy

FOOTER = "Created by X"
START = "<!--R-START-->"
END = "<!--R-END-->"


@pytest.fixture
def policy():
    return SafetyPolicy(
        footer_text=FOOTER,
        max_file_bytes=1000,
        max_total_bytes=4000,
        regions={
            "markup": Region(START, END),
            "stylesheet": Region("/*R-START*/", "/*R-END*/"),
        },
    )


@pytest.fixture
def artifact_root(tmp_path):
    root = tmp_path / "site"
    root.mkdir()
    return root


@pytest.fixture
def backup_root(tmp_path):
    return tmp_path / "backups"


@pytest.fixture
def config(artifact_root, backup_root, tmp_path):
    return PipelineConfig(
        artifact_root=artifact_root,
        backup_root=backup_root,
        audit_db_url=f"sqlite:///{tmp_path / 'audit.db'}",
    )


@pytest.fixture
def audit_log(config):
    return AuditLog(config.audit_db_url)


@pytest.fixture
def pipeline(config, policy, audit_log):
    return PublishPipeline(config, policy=policy, audit_log=audit_log)
