"""Process-wide in-memory document index with atomic rebuilds."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from mdbrowse.index.models import FileRecord
from mdbrowse.index.scanner import TreeScanner

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RebuildResult:
    """Outcome of one full rebuild."""

    indexed: int
    duration_ms: int
    finished_at: datetime


@dataclass(slots=True, frozen=True)
class _JournalEntry:
    """One mutation made while a rebuild was in flight.

    ``record`` is None for a deletion; ``subtree`` marks a deletion of every
    key at or below ``key``.
    """

    key: str
    record: FileRecord | None = None
    subtree: bool = False


def _subtree_keys(keys: Iterable[str], relative_dir: str) -> list[str]:
    if not relative_dir:
        return list(keys)
    prefix = f"{relative_dir}/"
    return [key for key in keys if key.startswith(prefix)]


class DocumentIndex:
    """Owns the relative-path -> FileRecord mapping.

    Readers always see a complete mapping: ``rebuild`` fills a new dict off to
    the side and swaps it in. ``set``/``delete``/``delete_subtree`` calls that
    land while a rebuild is suspended are journaled and replayed, in order,
    onto the new dict before the swap.
    """

    def __init__(self, scanner: TreeScanner) -> None:
        self._scanner = scanner
        self._records: dict[str, FileRecord] = {}
        self._built = False
        self._journal: list[_JournalEntry] | None = None
        self._rebuild_task: asyncio.Task[RebuildResult] | None = None
        self._last_rebuild: RebuildResult | None = None

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, relative_path: object) -> bool:
        return relative_path in self._records

    @property
    def root(self) -> Path:
        return self._scanner.root

    @property
    def is_built(self) -> bool:
        return self._built

    @property
    def is_rebuilding(self) -> bool:
        return self._rebuild_task is not None

    @property
    def last_rebuild(self) -> RebuildResult | None:
        return self._last_rebuild

    def get(self, relative_path: str) -> FileRecord | None:
        return self._records.get(relative_path)

    def get_all(self) -> list[FileRecord]:
        """Snapshot of every record, sorted by relative path."""
        return sorted(self._records.values(), key=lambda record: record.relative_path)

    def set(self, record: FileRecord) -> None:
        self._records[record.relative_path] = record
        if self._journal is not None:
            self._journal.append(_JournalEntry(key=record.relative_path, record=record))

    def delete(self, relative_path: str) -> bool:
        removed = self._records.pop(relative_path, None) is not None
        if self._journal is not None:
            self._journal.append(_JournalEntry(key=relative_path))
        return removed

    def delete_subtree(self, relative_dir: str) -> int:
        """Delete every record at or below ``relative_dir``.

        During a rebuild the whole prefix is journaled, not just the keys that
        are visible now, so records the scan already collected are dropped too.
        """
        doomed = _subtree_keys(self._records, relative_dir)
        for key in doomed:
            del self._records[key]
        if self._journal is not None:
            self._journal.append(_JournalEntry(key=relative_dir, subtree=True))
        return len(doomed)

    async def ensure_built(self) -> None:
        """Build the index on first use; later calls are no-ops."""
        if not self._built:
            await self.rebuild()

    async def rebuild(self) -> RebuildResult:
        """Rescan the root and swap in the result.

        A call made while a rebuild is in flight joins that rebuild instead of
        starting a second scan.
        """
        task = self._rebuild_task
        if task is None:
            task = asyncio.ensure_future(self._rebuild_once())
            self._rebuild_task = task
            task.add_done_callback(self._clear_rebuild_task)
        return await asyncio.shield(task)

    def _clear_rebuild_task(self, task: asyncio.Task[RebuildResult]) -> None:
        if self._rebuild_task is task:
            self._rebuild_task = None

    async def _rebuild_once(self) -> RebuildResult:
        started = time.perf_counter()
        self._journal = []
        try:
            records = await self._scanner.scan()
            fresh = {record.relative_path: record for record in records}
            _replay(fresh, self._journal)
            self._records = fresh
            self._built = True
        finally:
            self._journal = None
        result = RebuildResult(
            indexed=len(self._records),
            duration_ms=int((time.perf_counter() - started) * 1000),
            finished_at=datetime.now(tz=UTC),
        )
        self._last_rebuild = result
        logger.info("Indexed %d documents in %d ms", result.indexed, result.duration_ms)
        return result


def _replay(records: dict[str, FileRecord], journal: list[_JournalEntry]) -> None:
    """Apply journaled mutations to ``records`` in the order they happened."""
    for entry in journal:
        if entry.subtree:
            for key in _subtree_keys(records, entry.key):
                del records[key]
        elif entry.record is None:
            records.pop(entry.key, None)
        else:
            records[entry.key] = entry.record
