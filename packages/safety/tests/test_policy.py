"""
Tests for SafetyPolicy loading
"""

from pathlib import Path

import pytest

from safety import MARKUP, SafetyPolicy
from siteplan import ConfigurationError

REPO_ROOT = Path(__file__).resolve().parents[3]


def test_default_policy_file_loads():
    policy = SafetyPolicy.from_yaml(REPO_ROOT / "policies" / "default.yaml")

    assert policy.footer_text == "Created by CrowtherTech"
    assert policy.max_file_bytes == 150 * 1024
    assert policy.max_total_bytes == 2 * 1024 * 1024
    assert policy.regions[MARKUP].start_marker == "<!-- AI-START -->"
    assert policy.region_for_target("style.css").end_marker == "/* AI-CSS-END */"
    assert ".git/**" in policy.forbidden_paths
    assert len(policy.snapshot_hash) == 64


def test_later_documents_override_earlier(tmp_path):
    policy_file = tmp_path / "policy.yaml"
    policy_file.write_text(
        "footer: First\nlimits:\n  max_file_bytes: 10\n"
        "---\n"
        "limits:\n  max_file_bytes: 20\n  max_total_bytes: 40\n",
        encoding="utf-8",
    )

    policy = SafetyPolicy.from_yaml(policy_file)

    assert policy.footer_text == "First"
    assert policy.max_file_bytes == 20
    assert policy.max_total_bytes == 40


def test_missing_policy_file(tmp_path):
    with pytest.raises(ConfigurationError):
        SafetyPolicy.from_yaml(tmp_path / "absent.yaml")


@pytest.mark.parametrize(
    "content",
    [
        "regions:\n  markup:\n    start: SAME\n    end: SAME\n",
        "regions:\n  markup:\n    start: only\n",
        "limits:\n  max_file_bytes: 0\n",
        "footer: ''\n",
        "- just\n- a list\n",
        "fragment_types:\n  html-fragment: nowhere\n",
    ],
)
def test_invalid_policies(tmp_path, content):
    policy_file = tmp_path / "policy.yaml"
    policy_file.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        SafetyPolicy.from_yaml(policy_file)


def test_is_markup_classification():
    policy = SafetyPolicy()

    assert policy.is_markup("index.html", None)
    assert policy.is_markup("PAGES/A.HTM", None)
    assert policy.is_markup("page", "html-fragment")
    assert not policy.is_markup("style.css", "css-fragment")
    assert not policy.is_markup("img.png", None)
