"""Name/path and content search over the document index."""

from __future__ import annotations

import asyncio
import enum
import html
import logging
import os
import re
import stat
from collections.abc import Sequence
from dataclasses import dataclass

from mdbrowse.config import SearchConfig
from mdbrowse.index.models import FileRecord
from mdbrowse.index.store import DocumentIndex
from mdbrowse.security import is_contained

logger = logging.getLogger(__name__)

ELLIPSIS = "…"


class SearchScope(str, enum.Enum):
    """What a query is matched against."""

    NAME = "name"
    CONTENT = "content"

    @classmethod
    def parse(cls, value: object) -> SearchScope:
        """Map a request flag onto a scope; anything but ``content`` means name."""
        if isinstance(value, str) and value.strip().lower() == cls.CONTENT.value:
            return cls.CONTENT
        return cls.NAME


@dataclass(slots=True, frozen=True)
class Snippet:
    """Excerpt around the first match with the matched span split out."""

    before: str
    match: str
    after: str
    leading_ellipsis: bool
    trailing_ellipsis: bool

    def to_text(self) -> str:
        return (
            f"{ELLIPSIS if self.leading_ellipsis else ''}{self.before}{self.match}"
            f"{self.after}{ELLIPSIS if self.trailing_ellipsis else ''}"
        )

    def to_html(self) -> str:
        """Escaped excerpt with the match wrapped in ``<mark>``."""
        return (
            f"{ELLIPSIS if self.leading_ellipsis else ''}{html.escape(self.before, quote=False)}"
            f"<mark>{html.escape(self.match, quote=False)}</mark>"
            f"{html.escape(self.after, quote=False)}{ELLIPSIS if self.trailing_ellipsis else ''}"
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "before": self.before,
            "match": self.match,
            "after": self.after,
            "leading_ellipsis": self.leading_ellipsis,
            "trailing_ellipsis": self.trailing_ellipsis,
        }


@dataclass(slots=True, frozen=True)
class SearchHit:
    record: FileRecord
    snippet: Snippet | None = None


@dataclass(slots=True, frozen=True)
class SearchResults:
    """Sorted, capped hits plus the pre-truncation match count."""

    query: str
    scope: SearchScope
    total_matches: int
    hits: tuple[SearchHit, ...]

    @property
    def truncated(self) -> bool:
        return self.total_matches > len(self.hits)

    @property
    def paths(self) -> list[str]:
        return [hit.record.relative_path for hit in self.hits]


def build_snippet(text: str, start: int, end: int, radius: int) -> Snippet:
    """Cut ``radius`` characters of context around ``text[start:end]``."""
    window_start = max(0, start - radius)
    window_end = min(len(text), end + radius)
    return Snippet(
        before=text[window_start:start],
        match=text[start:end],
        after=text[end:window_end],
        leading_ellipsis=window_start > 0,
        trailing_ellipsis=window_end < len(text),
    )


def find_snippet(text: str, pattern: re.Pattern[str], radius: int) -> Snippet | None:
    found = pattern.search(text)
    if found is None:
        return None
    return build_snippet(text, found.start(), found.end(), radius)


def match_name(records: Sequence[FileRecord], query: str) -> list[SearchHit]:
    """Case-insensitive substring match on file name or relative path."""
    needle = query.lower()
    return [
        SearchHit(record=record)
        for record in records
        if needle in record.name.lower() or needle in record.relative_path.lower()
    ]


class SearchEngine:
    """Answers queries against the current index snapshot."""

    def __init__(self, index: DocumentIndex, config: SearchConfig, max_file_bytes: int) -> None:
        self._index = index
        self._config = config
        self._max_file_bytes = max_file_bytes

    async def search(self, query: str, scope: SearchScope) -> SearchResults:
        stripped = query.strip()
        if not stripped:
            return SearchResults(query=stripped, scope=scope, total_matches=0, hits=())

        records = self._index.get_all()
        if scope is SearchScope.CONTENT:
            hits, total = await self._search_content(records, stripped)
        else:
            hits = match_name(records, stripped)
            total = len(hits)

        hits.sort(key=lambda hit: hit.record.relative_path)
        return SearchResults(
            query=stripped,
            scope=scope,
            total_matches=total,
            hits=tuple(hits[: self._config.result_cap]),
        )

    async def _search_content(
        self, records: list[FileRecord], query: str
    ) -> tuple[list[SearchHit], int]:
        """Read documents in path order with bounded fan-out.

        Snippets are built only until the cap is reached; later matches are
        counted so the reported total stays exact.
        """
        pattern = re.compile(re.escape(query), re.IGNORECASE)
        cap = self._config.result_cap
        fanout = self._config.read_fanout
        hits: list[SearchHit] = []
        total = 0
        for offset in range(0, len(records), fanout):
            batch = records[offset : offset + fanout]
            texts = await asyncio.gather(*(self._read_text(record) for record in batch))
            for record, text in zip(batch, texts, strict=True):
                if text is None:
                    continue
                if len(hits) >= cap:
                    if pattern.search(text) is not None:
                        total += 1
                    continue
                snippet = find_snippet(text, pattern, self._config.snippet_radius)
                if snippet is None:
                    continue
                total += 1
                hits.append(SearchHit(record=record, snippet=snippet))
        return hits, total

    async def _read_text(self, record: FileRecord) -> str | None:
        return await asyncio.to_thread(self._read_text_sync, record)

    def _read_text_sync(self, record: FileRecord) -> str | None:
        path = record.absolute_path
        try:
            if not is_contained(os.path.realpath(path), self._index.root):
                logger.debug("Skipping %s: resolves outside the root", record.relative_path)
                return None
            info = path.lstat()
            if not stat.S_ISREG(info.st_mode):
                logger.debug("Skipping %s: not a regular file", record.relative_path)
                return None
            if info.st_size > self._max_file_bytes:
                logger.debug("Skipping oversized document %s", record.relative_path)
                return None
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as error:
            logger.debug("Skipping unreadable document %s: %s", record.relative_path, error)
            return None
