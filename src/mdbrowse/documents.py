"""Document access facade used by the request layer."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from watchdog.observers import Observer

from mdbrowse.config import ViewerConfig
from mdbrowse.index import (
    ChangeWatcher,
    DirectoryListing,
    DocumentBody,
    DocumentIndex,
    FileRecord,
    RebuildResult,
    SearchEngine,
    SearchResults,
    SearchScope,
    TreeScanner,
)
from mdbrowse.index.watcher import ObserverFactory
from mdbrowse.security import (
    AccessDeniedError,
    enforce_document_access,
    is_ignored_path,
    relative_posix,
    resolve_document_path,
)

logger = logging.getLogger(__name__)


class DocumentNotFoundError(Exception):
    """Raised when a requested document or directory does not exist."""

    def __init__(self, relative_path: str) -> None:
        super().__init__(f"Not found: {relative_path or '/'}")
        self.relative_path = relative_path


class DocumentService:
    """Owns the index lifecycle and answers browse/open/search requests."""

    def __init__(
        self,
        config: ViewerConfig,
        observer_factory: ObserverFactory | None = Observer,
    ) -> None:
        self._config = config
        self._root = config.root_dir
        self._scanner = TreeScanner(config.root_dir, config.index)
        self._index = DocumentIndex(self._scanner)
        self._search = SearchEngine(
            self._index, config.search, max_file_bytes=config.limits.max_file_bytes
        )
        self._watcher: ChangeWatcher | None = None
        if config.watch.enabled:
            self._watcher = ChangeWatcher(
                self._index,
                self._scanner,
                stability_window=config.watch.stability_window_seconds,
                observer_factory=observer_factory,
            )

    @property
    def root(self) -> Path:
        return self._root

    @property
    def index(self) -> DocumentIndex:
        return self._index

    @property
    def watcher(self) -> ChangeWatcher | None:
        return self._watcher

    async def start(self) -> None:
        """Attach the watcher, then build the index.

        Events that arrive while the first scan is running are journaled by the
        index and survive the swap.
        """
        logger.info("Serving documents from %s", self._root)
        if self._watcher is not None:
            await self._watcher.start()
        await self._index.rebuild()

    async def stop(self) -> None:
        if self._watcher is not None:
            await self._watcher.stop()

    async def rebuild_index(self) -> RebuildResult:
        return await self._index.rebuild()

    async def list_documents(self) -> list[FileRecord]:
        """Every indexed document, newest first."""
        await self._index.ensure_built()
        records = self._index.get_all()
        records.sort(key=lambda record: record.relative_path)
        records.sort(key=lambda record: record.modified_at, reverse=True)
        return records

    async def browse(self, relative_path: str = "") -> DirectoryListing:
        """List one directory; raises NotADirectoryError when it names a file."""
        resolved, relative = self._guard(relative_path)
        if relative and is_ignored_path(relative, self._scanner.excluded_dir_names):
            raise AccessDeniedError(
                reason="Path is hidden or excluded from browsing.",
                hint="Hidden and build/dependency directories are never served.",
            )
        if await asyncio.to_thread(resolved.is_file):
            raise NotADirectoryError(relative)
        if not await asyncio.to_thread(resolved.is_dir):
            raise DocumentNotFoundError(relative)
        return await self._scanner.list_one_level(resolved)

    async def open_document(self, relative_path: str) -> DocumentBody:
        """Read one document body for the rendering layer."""
        resolved, relative = self._guard(relative_path)
        return await asyncio.to_thread(self._read_document, resolved, relative)

    async def search(self, query: str, scope: SearchScope) -> SearchResults:
        if not query.strip():
            return await self._search.search(query, scope)
        await self._index.ensure_built()
        return await self._search.search(query, scope)

    def health(self) -> dict[str, object]:
        return {"status": "ok", "root": str(self._root), "indexed": len(self._index)}

    def _guard(self, relative_path: str) -> tuple[Path, str]:
        resolved = resolve_document_path(self._root, relative_path)
        return resolved, relative_posix(self._root, resolved)

    def _read_document(self, resolved: Path, relative: str) -> DocumentBody:
        # Policy runs before any existence check so a refusal says nothing
        # about whether the target is there.
        try:
            enforce_document_access(
                relative,
                resolved,
                document_extensions=self._scanner.document_extensions,
                excluded_dir_names=self._scanner.excluded_dir_names,
                limits=self._config.limits,
            )
            text = resolved.read_text(encoding="utf-8", errors="replace")
        except OSError as error:
            raise DocumentNotFoundError(relative) from error
        record = self._scanner.build_record(resolved)
        if record is None:
            raise DocumentNotFoundError(relative)
        return DocumentBody(record=record, text=text)
