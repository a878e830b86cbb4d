"""Document index, scanning, watching and search."""

from .models import DirectoryEntry, DirectoryListing, DocumentBody, FileRecord
from .scanner import TreeScanner
from .search import (
    SearchEngine,
    SearchHit,
    SearchResults,
    SearchScope,
    Snippet,
    build_snippet,
    match_name,
)
from .store import DocumentIndex, RebuildResult
from .watcher import ChangeEvent, ChangeKind, ChangeWatcher, DebounceBuffer, coalesce

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "ChangeWatcher",
    "DebounceBuffer",
    "DirectoryEntry",
    "DirectoryListing",
    "DocumentBody",
    "DocumentIndex",
    "FileRecord",
    "RebuildResult",
    "SearchEngine",
    "SearchHit",
    "SearchResults",
    "SearchScope",
    "Snippet",
    "TreeScanner",
    "build_snippet",
    "coalesce",
    "match_name",
]
