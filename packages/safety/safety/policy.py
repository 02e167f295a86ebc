"""
Safety Policy - limits, markers and the protected footer

Loaded from YAML (policies/default.yaml). Multiple YAML documents in one file
are merged in order, later documents overriding earlier keys, so deployment
profiles can be appended as extra documents.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple

import yaml

from siteplan.errors import ConfigurationError, RegionMalformedError

from .region import Region

logger = logging.getLogger(__name__)

MARKUP = "markup"
STYLESHEET = "stylesheet"

DEFAULT_FOOTER = "Created by CrowtherTech"
DEFAULT_MAX_FILE_BYTES = 150 * 1024
DEFAULT_MAX_TOTAL_BYTES = 2 * 1024 * 1024


@dataclass(frozen=True)
class SafetyPolicy:
    """Everything the validator enforces."""
    footer_text: str = DEFAULT_FOOTER
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    max_total_bytes: int = DEFAULT_MAX_TOTAL_BYTES

    regions: Dict[str, Region] = field(default_factory=lambda: {
        MARKUP: Region("<!-- AI-START -->", "<!-- AI-END -->"),
        STYLESHEET: Region("/* AI-CSS-START */", "/* AI-CSS-END */"),
    })

    # Classification
    markup_extensions: Tuple[str, ...] = (".html", ".htm")
    markup_types: Tuple[str, ...] = ("html", "html-fragment")
    # declared_type → region name for region-mode entries
    fragment_types: Dict[str, str] = field(default_factory=lambda: {
        "html-fragment": MARKUP,
        "css-fragment": STYLESHEET,
    })

    # Whole-file replacements of these paths must keep their region markers
    region_targets: Dict[str, str] = field(default_factory=lambda: {
        "index.html": MARKUP,
        "style.css": STYLESHEET,
    })

    forbidden_paths: Tuple[str, ...] = ()

    # sha256 of the source file, "default" for built-in values
    snapshot_hash: str = "default"

    def __post_init__(self):
        if not self.footer_text:
            raise ConfigurationError("Protected footer text must be non-empty")
        if self.max_file_bytes <= 0 or self.max_total_bytes <= 0:
            raise ConfigurationError("Size ceilings must be positive")
        for type_name, region_name in self.fragment_types.items():
            if region_name not in self.regions:
                raise ConfigurationError(
                    f"Fragment type '{type_name}' refers to unknown region '{region_name}'"
                )
        for target, region_name in self.region_targets.items():
            if region_name not in self.regions:
                raise ConfigurationError(
                    f"Region target '{target}' refers to unknown region '{region_name}'"
                )

    def is_markup(self, path: str, declared_type: Optional[str]) -> bool:
        if declared_type and declared_type.lower() in self.markup_types:
            return True
        return PurePosixPath(path.replace("\\", "/")).suffix.lower() in self.markup_extensions

    def region_for_type(self, declared_type: Optional[str]) -> Optional[Region]:
        """Region used by a fragment entry, None for whole-file entries."""
        if not declared_type:
            return None
        region_name = self.fragment_types.get(declared_type.lower())
        return self.regions[region_name] if region_name else None

    def region_for_target(self, rel_path: str) -> Optional[Region]:
        region_name = self.region_targets.get(rel_path)
        return self.regions[region_name] if region_name else None

    @classmethod
    def from_yaml(cls, policy_path: Path) -> "SafetyPolicy":
        """
        Load a policy file.

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        policy_path = Path(policy_path)
        if not policy_path.exists():
            raise ConfigurationError(f"Policy file not found: {policy_path}")

        content = policy_path.read_text(encoding="utf-8")
        try:
            documents = [doc for doc in yaml.safe_load_all(content) if doc]
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid policy YAML in {policy_path}: {e}")

        merged: dict = {}
        for doc in documents:
            if not isinstance(doc, dict):
                raise ConfigurationError(f"Policy documents must be mappings: {policy_path}")
            merged.update(doc)

        policy = cls.from_dict(merged, snapshot_hash=hashlib.sha256(content.encode()).hexdigest())
        logger.info(f"Loaded safety policy {policy_path} (sha256 {policy.snapshot_hash[:12]})")
        return policy

    @classmethod
    def from_dict(cls, data: dict, snapshot_hash: str = "default") -> "SafetyPolicy":
        kwargs: dict = {"snapshot_hash": snapshot_hash}

        if "footer" in data:
            kwargs["footer_text"] = str(data["footer"])

        limits = data.get("limits") or {}
        if "max_file_bytes" in limits:
            kwargs["max_file_bytes"] = int(limits["max_file_bytes"])
        if "max_total_bytes" in limits:
            kwargs["max_total_bytes"] = int(limits["max_total_bytes"])

        if "regions" in data:
            regions = {}
            for name, spec in (data["regions"] or {}).items():
                try:
                    regions[name] = Region(str(spec["start"]), str(spec["end"]))
                except (KeyError, TypeError) as e:
                    raise ConfigurationError(f"Region '{name}' needs 'start' and 'end': {e}")
                except RegionMalformedError as e:
                    raise ConfigurationError(f"Region '{name}' is malformed: {e.message}")
            kwargs["regions"] = regions

        markup = data.get("markup") or {}
        if "extensions" in markup:
            kwargs["markup_extensions"] = tuple(ext.lower() for ext in markup["extensions"])
        if "types" in markup:
            kwargs["markup_types"] = tuple(t.lower() for t in markup["types"])

        if "fragment_types" in data:
            kwargs["fragment_types"] = {k.lower(): v for k, v in (data["fragment_types"] or {}).items()}
        if "region_targets" in data:
            kwargs["region_targets"] = dict(data["region_targets"] or {})
        if "forbidden_paths" in data:
            kwargs["forbidden_paths"] = tuple(data["forbidden_paths"] or ())

        return cls(**kwargs)

    def describe(self) -> List[str]:
        """Human-readable rules, embedded in plan requests as generator instructions."""
        return [
            f'Every HTML file must include the exact footer text: "{self.footer_text}".',
            "External <script src=...> and <iframe src=...> are rejected; inline <script> is stripped.",
            f"Each file must be at most {self.max_file_bytes} bytes; "
            f"all files together at most {self.max_total_bytes} bytes.",
            "Paths are relative to the site root; '..' segments are rejected.",
        ]
