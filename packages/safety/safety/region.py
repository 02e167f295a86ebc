"""
Region Locator - splits a document around a marker-delimited mutable range

A Region is validated once (non-empty, distinct markers) and then used to
split documents into (before, mutable, after). `before` ends with the start
marker and `after` begins with the end marker, so composing is plain
concatenation. Nothing here touches the filesystem.
"""

from __future__ import annotations

from dataclasses import dataclass

from siteplan.errors import RegionMalformedError, RegionMissingError


@dataclass(frozen=True)
class Region:
    """Start/end marker pair."""
    start_marker: str
    end_marker: str

    def __post_init__(self):
        if not self.start_marker or not self.end_marker:
            raise RegionMalformedError("Region markers must be non-empty")
        if self.start_marker == self.end_marker:
            raise RegionMalformedError(
                f"Region start and end markers are identical: {self.start_marker!r}"
            )
        if self.start_marker in self.end_marker or self.end_marker in self.start_marker:
            raise RegionMalformedError(
                f"Region markers overlap: {self.start_marker!r} / {self.end_marker!r}"
            )


@dataclass(frozen=True)
class RegionSlices:
    before: str
    mutable: str
    after: str

    @property
    def is_whole_file(self) -> bool:
        return self.before == "" and self.after == ""


def locate(content: str, region: Region) -> RegionSlices:
    """
    Split content around the region.

    Raises:
        RegionMissingError: If either marker is absent
        RegionMalformedError: If a marker repeats or end precedes start
    """
    start_count = content.count(region.start_marker)
    end_count = content.count(region.end_marker)

    missing = [
        marker for marker, count in
        ((region.start_marker, start_count), (region.end_marker, end_count))
        if count == 0
    ]
    if missing:
        raise RegionMissingError(f"Region marker(s) not found: {', '.join(repr(m) for m in missing)}")

    if start_count > 1 or end_count > 1:
        raise RegionMalformedError(
            f"Region markers must occur exactly once "
            f"(start x{start_count}, end x{end_count})"
        )

    start = content.index(region.start_marker)
    end = content.index(region.end_marker)
    if end < start:
        raise RegionMalformedError("Region end marker precedes start marker")

    mutable_start = start + len(region.start_marker)
    return RegionSlices(
        before=content[:mutable_start],
        mutable=content[mutable_start:end],
        after=content[end:],
    )


def whole_file(content: str) -> RegionSlices:
    """Whole-file mode: everything is mutable."""
    return RegionSlices(before="", mutable=content, after="")


def compose(slices: RegionSlices, fragment: str) -> str:
    """Replace the mutable slice with fragment."""
    return f"{slices.before}{fragment}{slices.after}"


def has_region(content: str, region: Region) -> bool:
    """True if content carries exactly one well-ordered region."""
    try:
        locate(content, region)
    except (RegionMissingError, RegionMalformedError):
        return False
    return True
