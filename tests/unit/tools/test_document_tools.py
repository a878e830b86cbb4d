from __future__ import annotations

import asyncio
import os
from pathlib import Path

from mdbrowse.server import create_server


def _call(server, method: str, params: dict[str, object] | None = None) -> dict[str, object]:
    payload = {"id": f"req-{method}", "method": method, "params": params or {}}
    response = asyncio.run(server.handle_payload(payload))
    assert response["ok"] is True, response
    return response["result"]


def _tree(root: Path) -> None:
    (root / "docs").mkdir()
    (root / "notes").mkdir()
    (root / "empty").mkdir()
    (root / "docs" / "README.md").write_text("a sample markdown file", encoding="utf-8")
    (root / "notes" / "todo.md").write_text("- buy milk\n", encoding="utf-8")
    (root / "notes" / "skip.txt").write_text("not a document", encoding="utf-8")
    os.utime(root / "docs" / "README.md", (1_600_000_000, 1_600_000_000))
    os.utime(root / "notes" / "todo.md", (1_700_000_000, 1_700_000_000))


def test_list_documents_is_newest_first(tmp_path: Path) -> None:
    _tree(tmp_path)
    server = create_server(root_dir=tmp_path, observer_factory=None)

    result = _call(server, "docs.list_documents")

    assert [item["path"] for item in result["documents"]] == ["notes/todo.md", "docs/README.md"]
    assert result["documents"][1]["modified_at"] == "2020-09-13T12:26:40.000Z"


def test_browse_lists_one_level(tmp_path: Path) -> None:
    _tree(tmp_path)
    server = create_server(root_dir=tmp_path, observer_factory=None)

    root_listing = _call(server, "docs.browse")
    notes_listing = _call(server, "docs.browse", {"path": "notes"})
    empty_listing = _call(server, "docs.browse", {"path": "empty"})

    assert [entry["name"] for entry in root_listing["directories"]] == ["docs", "empty", "notes"]
    assert root_listing["files"] == []
    assert [entry["path"] for entry in notes_listing["files"]] == ["notes/todo.md"]
    assert empty_listing["empty"] is True


def test_browse_on_a_file_redirects_to_open(tmp_path: Path) -> None:
    _tree(tmp_path)
    server = create_server(root_dir=tmp_path, observer_factory=None)

    result = _call(server, "docs.browse", {"path": "docs/README.md"})

    assert result == {"redirect": "docs.open", "path": "docs/README.md"}


def test_open_returns_text_and_metadata(tmp_path: Path) -> None:
    _tree(tmp_path)
    server = create_server(root_dir=tmp_path, observer_factory=None)

    result = _call(server, "docs.open", {"path": "docs\\README.md"})

    assert result["path"] == "docs/README.md"
    assert result["name"] == "README.md"
    assert result["text"] == "a sample markdown file"
    assert result["size_bytes"] == len("a sample markdown file")


def test_search_tool_reports_hits_and_snippets(tmp_path: Path) -> None:
    _tree(tmp_path)
    server = create_server(root_dir=tmp_path, observer_factory=None)

    by_name = _call(server, "docs.search", {"query": "README"})
    by_content = _call(server, "docs.search", {"query": "sample markdown", "in": "content"})

    assert by_name["scope"] == "name"
    assert [hit["path"] for hit in by_name["hits"]] == ["docs/README.md"]
    assert "snippet" not in by_name["hits"][0]
    assert by_content["scope"] == "content"
    assert by_content["total"] == 1
    assert by_content["shown"] == 1
    assert by_content["truncated"] is False
    assert "<mark>sample markdown</mark>" in by_content["hits"][0]["snippet_html"]


def test_rebuild_status_and_health(tmp_path: Path) -> None:
    _tree(tmp_path)
    server = create_server(root_dir=tmp_path, observer_factory=None)

    before = _call(server, "docs.status")
    rebuilt = _call(server, "docs.rebuild_index")
    (tmp_path / "late.md").write_text("late", encoding="utf-8")
    stale = _call(server, "docs.health")
    _call(server, "docs.rebuild_index")
    health = _call(server, "docs.health")
    after = _call(server, "docs.status")

    assert before["index_status"] == "not_indexed"
    assert before["last_rebuild_timestamp"] is None
    assert rebuilt["indexed"] == 2
    assert stale["indexed"] == 2
    assert health == {"status": "ok", "root": str(tmp_path.resolve()), "indexed": 3}
    assert after["index_status"] == "ready"
    assert after["indexed_file_count"] == 3
    assert after["effective_config"]["search"]["result_cap"] == 200


def test_audit_log_tool_returns_sanitized_entries(tmp_path: Path) -> None:
    _tree(tmp_path)
    server = create_server(root_dir=tmp_path, observer_factory=None)
    _call(server, "docs.search", {"query": "secret words", "in": "content"})

    result = _call(server, "docs.audit_log", {"limit": 5})

    (entry,) = result["entries"]
    assert entry["tool"] == "docs.search"
    assert entry["metadata"] == {"in": "content", "query_length": 12, "query_present": True}
    audit_path = tmp_path / ".mdbrowse" / "audit.jsonl"
    assert audit_path.exists()
    assert "secret words" not in audit_path.read_text(encoding="utf-8")
