"""
Derived artifacts - sitemap.xml and meta.json computed from the site itself

Both are written through the same snapshot/publish path as plan entries, so
a rolled-back run rolls them back too.
"""

from __future__ import annotations

import json
import re
from collections import Counter
from datetime import datetime
from html.parser import HTMLParser
from pathlib import Path
from typing import Dict, Iterable, List
from xml.sax.saxutils import escape

from safety.validator import PreparedWrite

DESCRIPTION_MAX = 160
KEYWORDS_MAX = 12
KEYWORD_RE = re.compile(r"\b[a-z]{4,}\b")


class _VisibleTextParser(HTMLParser):
    """Collects visible text, skipping script/style."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip = False

    def handle_starttag(self, tag: str, attrs: list) -> None:
        if tag.lower() in ("script", "style"):
            self._skip = True

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() in ("script", "style"):
            self._skip = False

    def handle_data(self, data: str) -> None:
        if not self._skip and data:
            self._parts.append(data)

    def get_text(self) -> str:
        return re.sub(r"\s+", " ", " ".join(self._parts)).strip()


def extract_text(fragment: str) -> str:
    parser = _VisibleTextParser()
    parser.feed(fragment)
    parser.close()
    return parser.get_text()


def generate_meta(fragment: str, site_name: str) -> Dict[str, str]:
    """
    Page metadata from a markup fragment.

    Returns:
        {"title", "description" (first 160 chars of visible text),
         "keywords" (12 most frequent words of 4+ letters, comma separated)}
    """
    text = extract_text(fragment)
    words = KEYWORD_RE.findall(text.lower())
    # most_common keeps first-seen order among equal counts
    keywords = [word for word, _ in Counter(words).most_common(KEYWORDS_MAX)]
    return {
        "title": f"{site_name} - An Autonomous Site",
        "description": text[:DESCRIPTION_MAX] or f"Autonomous site {site_name}",
        "keywords": ",".join(keywords),
    }


def list_pages(artifact_root: Path, markup_extensions: Iterable[str], extra: Iterable[str] = ()) -> List[str]:
    """HTML pages of the tree plus pages about to be written; index.html first."""
    extensions = tuple(markup_extensions)
    pages = set(p for p in extra if Path(p).suffix.lower() in extensions)

    root = Path(artifact_root)
    if root.is_dir():
        for path in root.rglob("*"):
            if path.is_file() and path.suffix.lower() in extensions:
                pages.add(path.relative_to(root).as_posix())

    return sorted(pages, key=lambda p: (p != "index.html", p))


def build_sitemap(pages: Iterable[str], base_url: str, now: datetime) -> str:
    base = base_url.rstrip("/")
    lastmod = now.isoformat()
    urls = [
        "  <url>\n"
        f"    <loc>{escape(f'{base}/{page}')}</loc>\n"
        f"    <lastmod>{lastmod}</lastmod>\n"
        "    <changefreq>daily</changefreq>\n"
        "  </url>"
        for page in pages
    ]
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
        + "\n".join(urls)
        + "\n</urlset>\n"
    )


def sitemap_write(path: str, pages: Iterable[str], base_url: str, now: datetime) -> PreparedWrite:
    return PreparedWrite(
        path=path,
        data=build_sitemap(pages, base_url, now).encode("utf-8"),
        source="derived",
    )


def meta_write(path: str, fragment: str, site_name: str) -> PreparedWrite:
    meta = generate_meta(fragment, site_name)
    return PreparedWrite(
        path=path,
        data=json.dumps(meta, indent=2, ensure_ascii=False).encode("utf-8"),
        source="derived",
    )
