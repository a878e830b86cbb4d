from __future__ import annotations

import asyncio
from pathlib import Path

from mdbrowse.config import IndexConfig, SearchConfig
from mdbrowse.index import DocumentIndex, SearchEngine, SearchScope, TreeScanner, build_snippet
from mdbrowse.index.search import ELLIPSIS


def _populate(root: Path, count: int) -> None:
    for number in range(count):
        (root / f"doc{number:03d}.md").write_text(f"entry {number} has a needle", encoding="utf-8")


def _engine(root: Path, config: SearchConfig) -> SearchEngine:
    index = DocumentIndex(TreeScanner(root, IndexConfig()))
    asyncio.run(index.rebuild())
    return SearchEngine(index, config, max_file_bytes=1 << 20)


def test_content_results_are_capped_with_exact_total(tmp_path: Path) -> None:
    _populate(tmp_path, 205)
    engine = _engine(tmp_path, SearchConfig())

    results = asyncio.run(engine.search("needle", SearchScope.CONTENT))

    assert len(results.hits) == 200
    assert results.total_matches == 205
    assert results.truncated
    assert results.paths == [f"doc{number:03d}.md" for number in range(200)]


def test_name_results_are_capped_and_sorted(tmp_path: Path) -> None:
    _populate(tmp_path, 12)
    engine = _engine(tmp_path, SearchConfig(result_cap=5, read_fanout=3))

    results = asyncio.run(engine.search("doc", SearchScope.NAME))

    assert results.paths == [f"doc{number:03d}.md" for number in range(5)]
    assert results.total_matches == 12


def test_small_fanout_visits_every_document(tmp_path: Path) -> None:
    _populate(tmp_path, 10)
    engine = _engine(tmp_path, SearchConfig(read_fanout=3))

    results = asyncio.run(engine.search("NEEDLE", SearchScope.CONTENT))

    assert results.total_matches == 10
    assert not results.truncated


def test_snippet_window_and_ellipses() -> None:
    text = "x" * 200 + "needle" + "y" * 200
    start = text.index("needle")

    snippet = build_snippet(text, start, start + len("needle"), radius=80)

    assert snippet.before == "x" * 80
    assert snippet.after == "y" * 80
    assert snippet.leading_ellipsis
    assert snippet.trailing_ellipsis
    assert snippet.to_text().startswith(ELLIPSIS)
    assert snippet.to_text().endswith(ELLIPSIS)


def test_snippet_html_escapes_document_text() -> None:
    text = "<b>needle</b> & more"
    start = text.index("needle")

    snippet = build_snippet(text, start, start + len("needle"), radius=80)

    assert not snippet.leading_ellipsis
    assert not snippet.trailing_ellipsis
    assert snippet.to_html() == "&lt;b&gt;<mark>needle</mark>&lt;/b&gt; &amp; more"
