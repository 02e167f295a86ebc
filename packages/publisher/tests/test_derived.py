"""Tests for sitemap and meta generation."""

from datetime import datetime

from publisher.derived import build_sitemap, extract_text, generate_meta, list_pages, meta_write, sitemap_write


def test_sitemap_lists_pages():
    xml = build_sitemap(["index.html", "pages/a&b.html"], "https://example.test/", datetime(2026, 3, 1, 12, 0))

    assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert "<loc>https://example.test/index.html</loc>" in xml
    assert "<loc>https://example.test/pages/a&amp;b.html</loc>" in xml
    assert xml.count("<lastmod>2026-03-01T12:00:00</lastmod>") == 2
    assert xml.count("<changefreq>daily</changefreq>") == 2


def test_list_pages_merges_tree_and_pending(tmp_path):
    (tmp_path / "pages").mkdir()
    (tmp_path / "pages" / "b.html").write_text("b")
    (tmp_path / "index.html").write_text("i")
    (tmp_path / "style.css").write_text("c")

    pages = list_pages(tmp_path, (".html", ".htm"), extra=["about.htm", "logo.png"])

    assert pages == ["index.html", "about.htm", "pages/b.html"]


def test_extract_text_skips_scripts_and_styles():
    text = extract_text("<style>p{}</style><h1>Title</h1><p>Body  text</p><script>x()</script>")

    assert text == "Title Body text"


def test_meta_description_and_keywords():
    fragment = "<p>" + "garden " * 3 + "flowers " * 2 + "tree sun</p>"

    meta = generate_meta(fragment, "Demo")

    assert meta["title"].startswith("Demo")
    assert meta["keywords"] == "garden,flowers,tree"
    assert meta["description"].startswith("garden garden")


def test_meta_description_truncated_and_fallback():
    assert len(generate_meta("<p>" + "word " * 100 + "</p>", "S")["description"]) == 160
    assert generate_meta("<div></div>", "S")["description"] == "Autonomous site S"


def test_keywords_capped_at_twelve():
    words = " ".join(f"word{chr(97 + i)}" for i in range(20))

    meta = generate_meta(f"<p>{words}</p>", "S")

    assert len(meta["keywords"].split(",")) == 12


def test_derived_writes_are_tagged():
    sitemap = sitemap_write("sitemap.xml", ["index.html"], "https://example.test", datetime(2026, 3, 1))
    meta = meta_write("meta.json", "<p>Hello</p>", "S")

    assert sitemap.source == "derived"
    assert meta.source == "derived"
    assert sitemap.data.startswith(b"<?xml")
