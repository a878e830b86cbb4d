"""Live filesystem watching that keeps the document index current.

watchdog delivers events on its observer thread. The handler here only
translates them into ``ChangeEvent`` values and hands them to the event loop;
a single consumer task debounces them per path and is the only code that
mutates the index.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from mdbrowse.index.scanner import TreeScanner
from mdbrowse.index.store import DocumentIndex
from mdbrowse.security import is_contained, is_ignored_path

logger = logging.getLogger(__name__)

ObserverFactory = Callable[[], BaseObserver]


class ChangeKind(str, enum.Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """One observed change to a root-relative path."""

    kind: ChangeKind
    relative_path: str
    is_directory: bool = False


def coalesce(previous: ChangeKind, incoming: ChangeKind) -> ChangeKind:
    """Fold a new event into the pending kind for the same path."""
    if incoming is ChangeKind.REMOVED:
        return ChangeKind.REMOVED
    if previous is ChangeKind.ADDED:
        return ChangeKind.ADDED
    if previous is ChangeKind.REMOVED:
        # Deleted and recreated inside one window.
        return ChangeKind.MODIFIED
    return incoming


@dataclass(slots=True)
class _Pending:
    event: ChangeEvent
    deadline: float


class DebounceBuffer:
    """Per-path quiet-period tracking, driven by an explicit clock value."""

    def __init__(self, window: float) -> None:
        self._window = window
        self._pending: dict[str, _Pending] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def push(self, event: ChangeEvent, now: float) -> None:
        current = self._pending.get(event.relative_path)
        kind = event.kind if current is None else coalesce(current.event.kind, event.kind)
        merged = ChangeEvent(
            kind=kind, relative_path=event.relative_path, is_directory=event.is_directory
        )
        self._pending[event.relative_path] = _Pending(event=merged, deadline=now + self._window)

    def next_deadline(self) -> float | None:
        if not self._pending:
            return None
        return min(item.deadline for item in self._pending.values())

    def pop_settled(self, now: float) -> list[ChangeEvent]:
        """Remove and return events whose path has been quiet for the window."""
        ready = sorted(
            (item for item in self._pending.values() if item.deadline <= now),
            key=lambda item: (item.deadline, item.event.relative_path),
        )
        for item in ready:
            del self._pending[item.event.relative_path]
        return [item.event for item in ready]

    def drain(self) -> list[ChangeEvent]:
        """Remove and return everything still pending."""
        return self.pop_settled(float("inf"))


class _EventBridge(FileSystemEventHandler):
    """Runs on the observer thread; forwards translated events to the loop."""

    def __init__(self, watcher: ChangeWatcher, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__()
        self._watcher = watcher
        self._loop = loop

    def on_any_event(self, event: FileSystemEvent) -> None:
        for change in self._watcher.translate(event):
            try:
                self._loop.call_soon_threadsafe(self._watcher.submit, change)
            except RuntimeError:
                # Loop already closed during shutdown.
                return


class ChangeWatcher:
    """Debounces filesystem events and applies them to the index."""

    def __init__(
        self,
        index: DocumentIndex,
        scanner: TreeScanner,
        stability_window: float,
        observer_factory: ObserverFactory | None = Observer,
    ) -> None:
        self._index = index
        self._scanner = scanner
        self._root = scanner.root
        self._buffer = DebounceBuffer(stability_window)
        self._observer_factory = observer_factory
        self._observer: BaseObserver | None = None
        self._queue: asyncio.Queue[ChangeEvent | None] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._applied = 0

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    @property
    def is_observing(self) -> bool:
        return self._observer is not None

    @property
    def applied_count(self) -> int:
        return self._applied

    async def start(self) -> None:
        """Start the consumer task and, when configured, the OS observer."""
        if self._consumer is not None:
            return
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._consumer = loop.create_task(self._consume(), name="mdbrowse-change-watcher")
        if self._observer_factory is None:
            return
        observer = self._observer_factory()
        try:
            observer.schedule(_EventBridge(self, loop), str(self._root), recursive=True)
            observer.start()
        except OSError as error:
            logger.error("Could not watch %s, index will not follow changes: %s", self._root, error)
            return
        self._observer = observer
        logger.info("Watching for document changes in %s", self._root)

    async def stop(self) -> None:
        """Stop observing, apply whatever is still pending, end the consumer."""
        observer = self._observer
        self._observer = None
        if observer is not None:
            observer.stop()
            await asyncio.to_thread(observer.join)
        if self._consumer is None or self._queue is None:
            return
        self._queue.put_nowait(None)
        await self._consumer
        self._consumer = None
        self._queue = None

    def submit(self, event: ChangeEvent) -> None:
        """Queue an event; must be called on the loop thread."""
        if self._queue is None:
            return
        self._queue.put_nowait(event)

    def translate(self, event: FileSystemEvent) -> list[ChangeEvent]:
        """Map a watchdog event onto zero or more index-relevant changes."""
        if event.event_type == EVENT_TYPE_MOVED:
            changes = list(self._changes_for(event.src_path, ChangeKind.REMOVED, event.is_directory))
            changes.extend(self._changes_for(event.dest_path, ChangeKind.ADDED, event.is_directory))
            return changes
        if event.event_type == EVENT_TYPE_CREATED:
            kind = ChangeKind.ADDED
        elif event.event_type == EVENT_TYPE_DELETED:
            kind = ChangeKind.REMOVED
        elif event.event_type == EVENT_TYPE_MODIFIED and not event.is_directory:
            kind = ChangeKind.MODIFIED
        else:
            return []
        return list(self._changes_for(event.src_path, kind, event.is_directory))

    def _changes_for(
        self, raw_path: bytes | str, kind: ChangeKind, is_directory: bool
    ) -> Iterator[ChangeEvent]:
        relative = self.relative_path(raw_path)
        if relative is None:
            return
        if is_ignored_path(relative, self._scanner.excluded_dir_names):
            return
        if not is_directory and not self._scanner.is_document_name(relative):
            return
        yield ChangeEvent(kind=kind, relative_path=relative, is_directory=is_directory)

    def relative_path(self, raw_path: bytes | str) -> str | None:
        """Root-relative POSIX path for an event path, or None outside the root."""
        if not raw_path:
            return None
        absolute = os.path.normpath(os.fsdecode(raw_path))
        root = str(self._root)
        if absolute == root or not is_contained(absolute, root):
            return None
        return Path(os.path.relpath(absolute, root)).as_posix()

    async def apply(self, event: ChangeEvent) -> None:
        """Apply one settled event to the index."""
        if event.is_directory:
            await self._apply_directory(event)
        elif event.kind is ChangeKind.REMOVED:
            if self._index.delete(event.relative_path):
                logger.debug("Removed %s from index", event.relative_path)
        else:
            await self._apply_file(event)
        self._applied += 1

    async def _apply_file(self, event: ChangeEvent) -> None:
        path = self._root / event.relative_path
        record = await asyncio.to_thread(self._scanner.build_record, path)
        if record is None:
            if not await asyncio.to_thread(os.path.lexists, path):
                # Gone again before we got to it; a later event decides.
                logger.debug(
                    "Dropped %s event for vanished %s", event.kind.value, event.relative_path
                )
                return
            # Still there but no longer a regular file, e.g. swapped for a symlink.
            if self._index.delete(event.relative_path):
                logger.debug("Removed %s: no longer a regular file", event.relative_path)
            return
        if event.kind is ChangeKind.MODIFIED and event.relative_path not in self._index:
            logger.debug("Treating modification of unknown %s as an add", event.relative_path)
        self._index.set(record)

    async def _apply_directory(self, event: ChangeEvent) -> None:
        if event.kind is ChangeKind.REMOVED:
            dropped = self._index.delete_subtree(event.relative_path)
            logger.debug("Removed %d documents under %s", dropped, event.relative_path)
            return
        directory = self._root / event.relative_path
        if not await asyncio.to_thread(directory.is_dir):
            return
        records = await self._scanner.scan(directory)
        # No await between the delete and the sets.
        self._index.delete_subtree(event.relative_path)
        for record in records:
            self._index.set(record)

    async def _consume(self) -> None:
        assert self._queue is not None
        queue = self._queue
        loop = asyncio.get_running_loop()
        while True:
            deadline = self._buffer.next_deadline()
            try:
                async with asyncio.timeout_at(deadline):
                    item = await queue.get()
            except TimeoutError:
                pass
            else:
                if item is None:
                    await self._apply_all(self._buffer.drain())
                    return
                self._buffer.push(item, loop.time())
            await self._apply_all(self._buffer.pop_settled(loop.time()))

    async def _apply_all(self, events: list[ChangeEvent]) -> None:
        for event in events:
            try:
                await self.apply(event)
            except Exception:
                logger.exception("Failed to apply %s for %s", event.kind.value, event.relative_path)
