"""Typed models for indexing state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path


def iso_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def timestamp_from_mtime_ns(mtime_ns: int) -> datetime:
    """Convert a stat ``st_mtime_ns`` into an aware UTC datetime."""
    return datetime.fromtimestamp(mtime_ns / 1_000_000_000, tz=UTC)


@dataclass(slots=True, frozen=True)
class FileRecord:
    """Represents one indexed document."""

    name: str
    relative_path: str
    absolute_path: Path
    size_bytes: int
    modified_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "path": self.relative_path,
            "size_bytes": self.size_bytes,
            "modified_at": iso_timestamp(self.modified_at),
        }


@dataclass(slots=True, frozen=True)
class DirectoryEntry:
    """A browsable subdirectory in a single-level listing."""

    name: str
    relative_path: str
    modified_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "path": self.relative_path,
            "modified_at": iso_timestamp(self.modified_at),
        }


@dataclass(slots=True, frozen=True)
class DirectoryListing:
    """Sorted subdirectories and documents of one directory."""

    relative_path: str
    directories: tuple[DirectoryEntry, ...]
    files: tuple[FileRecord, ...]

    @property
    def is_empty(self) -> bool:
        return not self.directories and not self.files


@dataclass(slots=True, frozen=True)
class DocumentBody:
    """Raw document text handed to the rendering layer."""

    record: FileRecord
    text: str
