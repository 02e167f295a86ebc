"""
Markup sanitizer

Two tiers:
- externally sourced active elements (<script src=...>, <iframe src=...>) are
  forbidden outright and reported by find_forbidden()
- inline, source-less <script> blocks are tolerated but removed by
  strip_inline_scripts() before anything is written

Stripping runs to a fixed point so nested/split tags cannot reassemble into a
new script element, which also makes it idempotent.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

EXTERNAL_SCRIPT_RE = re.compile(r"<script\b[^>]*\bsrc\s*=", re.IGNORECASE)
EXTERNAL_IFRAME_RE = re.compile(r"<iframe\b[^>]*\bsrc\s*=", re.IGNORECASE)

SCRIPT_BLOCK_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
# Unclosed openers and stray closers left after block removal
SCRIPT_TAG_RE = re.compile(r"</?script\b[^>]*>", re.IGNORECASE)

FORBIDDEN_PATTERNS: List[Tuple[str, "re.Pattern[str]"]] = [
    ("external <script src=>", EXTERNAL_SCRIPT_RE),
    ("<iframe src=>", EXTERNAL_IFRAME_RE),
]


def find_forbidden(markup: str) -> Optional[str]:
    """Return a description of the first forbidden construct, or None."""
    for label, pattern in FORBIDDEN_PATTERNS:
        if pattern.search(markup):
            return label
    return None


def strip_inline_scripts(markup: str) -> str:
    """Remove every <script> block and dangling script tag."""
    current = markup
    while True:
        stripped = SCRIPT_TAG_RE.sub("", SCRIPT_BLOCK_RE.sub("", current))
        if stripped == current:
            return stripped
        current = stripped


def count_inline_scripts(markup: str) -> int:
    return len(SCRIPT_BLOCK_RE.findall(markup))
