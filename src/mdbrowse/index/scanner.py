"""Document tree scanning for index builds and directory listings."""

from __future__ import annotations

import asyncio
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path

from mdbrowse.config import IndexConfig
from mdbrowse.index.models import (
    DirectoryEntry,
    DirectoryListing,
    FileRecord,
    timestamp_from_mtime_ns,
)
from mdbrowse.security import has_document_extension, is_contained, is_ignored_name, relative_posix

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class _DirectoryRead:
    """Visible children of one directory."""

    subdirectories: tuple[Path, ...]
    records: tuple[FileRecord, ...]


_EMPTY_READ = _DirectoryRead(subdirectories=(), records=())


class TreeScanner:
    """Enumerates documents under the root without following symlinks."""

    def __init__(self, root: Path, config: IndexConfig) -> None:
        self._root = root.resolve()
        self._document_extensions = tuple(ext.lower() for ext in config.document_extensions)
        self._excluded_dir_names = frozenset(config.excluded_dir_names)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def excluded_dir_names(self) -> frozenset[str]:
        return self._excluded_dir_names

    @property
    def document_extensions(self) -> tuple[str, ...]:
        return self._document_extensions

    def is_document_name(self, name: str) -> bool:
        return has_document_extension(name, self._document_extensions)

    async def scan(self, directory: Path | None = None) -> list[FileRecord]:
        """Walk ``directory`` (default: root) and return records sorted by path.

        Unreadable subtrees are logged and contribute nothing; the walk goes on.
        """
        start = self._root if directory is None else directory
        self._require_contained(start)
        records: list[FileRecord] = []
        stack: list[Path] = [start]
        while stack:
            current = stack.pop()
            read = await asyncio.to_thread(self._read_directory_or_empty, current)
            records.extend(read.records)
            stack.extend(reversed(read.subdirectories))
        records.sort(key=lambda record: record.relative_path)
        return records

    async def list_one_level(self, directory: Path) -> DirectoryListing:
        """List one directory, subdirectories and documents each sorted by name."""
        self._require_contained(directory)
        return await asyncio.to_thread(self._list_one_level_sync, directory)

    def build_record(self, path: Path) -> FileRecord | None:
        """Stat one file and build its record, or None when it is gone or not a file."""
        try:
            info = path.stat(follow_symlinks=False)
        except OSError:
            return None
        if not stat.S_ISREG(info.st_mode):
            return None
        return self._record(path, info)

    def _require_contained(self, directory: Path) -> None:
        if not is_contained(directory, self._root):
            raise ValueError(f"Directory is outside the scanner root: {directory}")

    def _record(self, path: Path, info: os.stat_result) -> FileRecord:
        return FileRecord(
            name=path.name,
            relative_path=relative_posix(self._root, path),
            absolute_path=path,
            size_bytes=info.st_size,
            modified_at=timestamp_from_mtime_ns(info.st_mtime_ns),
        )

    def _read_directory_or_empty(self, directory: Path) -> _DirectoryRead:
        try:
            return self._read_directory(directory)
        except OSError as error:
            logger.warning("Could not read directory %s: %s", directory, error)
            return _EMPTY_READ

    def _read_directory(self, directory: Path) -> _DirectoryRead:
        subdirectories: list[Path] = []
        records: list[FileRecord] = []
        with os.scandir(directory) as entries:
            for entry in entries:
                if is_ignored_name(entry.name, self._excluded_dir_names):
                    continue
                try:
                    if entry.is_dir(follow_symlinks=False):
                        subdirectories.append(Path(entry.path))
                        continue
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    if not self.is_document_name(entry.name):
                        continue
                    info = entry.stat(follow_symlinks=False)
                except OSError:
                    # Entry vanished between listing and stat.
                    continue
                records.append(self._record(Path(entry.path), info))
        subdirectories.sort()
        return _DirectoryRead(subdirectories=tuple(subdirectories), records=tuple(records))

    def _list_one_level_sync(self, directory: Path) -> DirectoryListing:
        read = self._read_directory_or_empty(directory)
        directories: list[DirectoryEntry] = []
        for subdirectory in read.subdirectories:
            try:
                info = subdirectory.stat(follow_symlinks=False)
            except OSError:
                continue
            directories.append(
                DirectoryEntry(
                    name=subdirectory.name,
                    relative_path=relative_posix(self._root, subdirectory),
                    modified_at=timestamp_from_mtime_ns(info.st_mtime_ns),
                )
            )
        directories.sort(key=lambda entry: entry.name)
        files = sorted(read.records, key=lambda record: record.name)
        return DirectoryListing(
            relative_path=relative_posix(self._root, directory),
            directories=tuple(directories),
            files=tuple(files),
        )
