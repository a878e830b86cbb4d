from __future__ import annotations

import asyncio
import os
from pathlib import Path

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from mdbrowse.config import IndexConfig
from mdbrowse.index import ChangeEvent, ChangeKind, ChangeWatcher, DocumentIndex, TreeScanner


def _watcher(root: Path) -> tuple[ChangeWatcher, DocumentIndex]:
    scanner = TreeScanner(root, IndexConfig())
    index = DocumentIndex(scanner)
    return ChangeWatcher(index, scanner, stability_window=0.05, observer_factory=None), index


def test_translate_maps_watchdog_events(tmp_path: Path) -> None:
    watcher, _ = _watcher(tmp_path)
    root = str(tmp_path.resolve())

    assert watcher.translate(FileCreatedEvent(f"{root}/a.md")) == [
        ChangeEvent(ChangeKind.ADDED, "a.md")
    ]
    assert watcher.translate(FileModifiedEvent(f"{root}/docs/a.md")) == [
        ChangeEvent(ChangeKind.MODIFIED, "docs/a.md")
    ]
    assert watcher.translate(FileDeletedEvent(f"{root}/a.md")) == [
        ChangeEvent(ChangeKind.REMOVED, "a.md")
    ]
    assert watcher.translate(FileMovedEvent(f"{root}/a.md", f"{root}/b.md")) == [
        ChangeEvent(ChangeKind.REMOVED, "a.md"),
        ChangeEvent(ChangeKind.ADDED, "b.md"),
    ]
    assert watcher.translate(DirDeletedEvent(f"{root}/docs")) == [
        ChangeEvent(ChangeKind.REMOVED, "docs", is_directory=True)
    ]


def test_translate_drops_irrelevant_events(tmp_path: Path) -> None:
    watcher, _ = _watcher(tmp_path)
    root = str(tmp_path.resolve())

    assert watcher.translate(FileCreatedEvent(f"{root}/notes.txt")) == []
    assert watcher.translate(FileCreatedEvent(f"{root}/.git/a.md")) == []
    assert watcher.translate(FileCreatedEvent(f"{root}/node_modules/x/a.md")) == []
    assert watcher.translate(DirModifiedEvent(f"{root}/docs")) == []
    assert watcher.translate(DirCreatedEvent(root)) == []
    assert watcher.translate(FileCreatedEvent(f"{root}-other/a.md")) == []
    # Renaming a document to a non-document only removes it.
    assert watcher.translate(FileMovedEvent(f"{root}/a.md", f"{root}/a.txt")) == [
        ChangeEvent(ChangeKind.REMOVED, "a.md")
    ]


def test_apply_add_modify_remove(tmp_path: Path) -> None:
    watcher, index = _watcher(tmp_path)
    target = tmp_path / "new.md"

    async def scenario() -> None:
        await index.rebuild()
        target.write_text("one", encoding="utf-8")
        await watcher.apply(ChangeEvent(ChangeKind.ADDED, "new.md"))
        record = index.get("new.md")
        assert record is not None
        assert record.size_bytes == 3

        target.write_text("three", encoding="utf-8")
        await watcher.apply(ChangeEvent(ChangeKind.MODIFIED, "new.md"))
        record = index.get("new.md")
        assert record is not None
        assert record.size_bytes == 5

        target.unlink()
        await watcher.apply(ChangeEvent(ChangeKind.REMOVED, "new.md"))

    asyncio.run(scenario())

    assert "new.md" not in index
    assert watcher.applied_count == 3


def test_add_for_vanished_file_is_dropped(tmp_path: Path) -> None:
    watcher, index = _watcher(tmp_path)

    asyncio.run(watcher.apply(ChangeEvent(ChangeKind.ADDED, "ghost.md")))

    assert "ghost.md" not in index


def test_directory_events_rescan_and_prune_subtree(tmp_path: Path) -> None:
    watcher, index = _watcher(tmp_path)
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "keep.md").write_text("k", encoding="utf-8")
    (docs / "stale.md").write_text("s", encoding="utf-8")
    (tmp_path / "top.md").write_text("t", encoding="utf-8")

    async def scenario() -> None:
        await index.rebuild()
        (docs / "stale.md").unlink()
        (docs / "sub").mkdir()
        (docs / "sub" / "fresh.md").write_text("f", encoding="utf-8")
        await watcher.apply(ChangeEvent(ChangeKind.ADDED, "docs", is_directory=True))
        assert [record.relative_path for record in index.get_all()] == [
            "docs/keep.md",
            "docs/sub/fresh.md",
            "top.md",
        ]
        await watcher.apply(ChangeEvent(ChangeKind.REMOVED, "docs", is_directory=True))

    asyncio.run(scenario())

    assert [record.relative_path for record in index.get_all()] == ["top.md"]


def test_stop_drains_pending_events(tmp_path: Path) -> None:
    watcher, index = _watcher(tmp_path)

    async def scenario() -> None:
        await index.rebuild()
        await watcher.start()
        assert watcher.is_running
        assert not watcher.is_observing
        (tmp_path / "kept.md").write_text("k", encoding="utf-8")
        watcher.submit(ChangeEvent(ChangeKind.ADDED, "kept.md"))
        watcher.submit(ChangeEvent(ChangeKind.ADDED, "flicker.md"))
        watcher.submit(ChangeEvent(ChangeKind.REMOVED, "flicker.md"))
        await watcher.stop()

    asyncio.run(scenario())

    assert not watcher.is_running
    assert "kept.md" in index
    assert "flicker.md" not in index
    assert watcher.applied_count == 2


def test_document_replaced_by_symlink_leaves_index(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("TOPSECRET", encoding="utf-8")
    (root / "a.md").write_text("# a", encoding="utf-8")
    watcher, index = _watcher(root)
    root_text = str(root.resolve())

    async def scenario() -> None:
        await index.rebuild()
        assert "a.md" in index
        staging = root / "swap.tmp"
        staging.symlink_to(outside / "secret.txt")
        os.replace(staging, root / "a.md")
        moved = FileMovedEvent(f"{root_text}/swap.tmp", f"{root_text}/a.md")
        for change in watcher.translate(moved):
            await watcher.apply(change)

    asyncio.run(scenario())

    assert "a.md" not in index


def test_consumer_applies_settled_events_while_running(tmp_path: Path) -> None:
    watcher, index = _watcher(tmp_path)

    async def wait_for_key(key: str) -> bool:
        for _ in range(100):
            if key in index:
                return True
            await asyncio.sleep(0.02)
        return False

    async def scenario() -> tuple[bool, bool]:
        await index.rebuild()
        await watcher.start()
        try:
            (tmp_path / "one.md").write_text("1", encoding="utf-8")
            watcher.submit(ChangeEvent(ChangeKind.ADDED, "one.md"))
            first = await wait_for_key("one.md")
            (tmp_path / "two.md").write_text("2", encoding="utf-8")
            watcher.submit(ChangeEvent(ChangeKind.ADDED, "two.md"))
            second = await wait_for_key("two.md")
            return first, second
        finally:
            await watcher.stop()

    assert asyncio.run(scenario()) == (True, True)
    assert watcher.applied_count == 2
