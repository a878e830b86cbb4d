"""Path containment helpers for root-scoped document access."""

from __future__ import annotations

import os
from pathlib import Path


class AccessDeniedError(Exception):
    """Raised when a requested path falls outside the configured root."""

    def __init__(self, reason: str, hint: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.hint = hint


def is_contained(candidate: str | os.PathLike[str], root: str | os.PathLike[str]) -> bool:
    """Return True when ``candidate`` is ``root`` or lies underneath it.

    Both arguments must already be absolute and normalized the same way; the
    check is a pure string comparison and never touches the filesystem.
    """
    candidate_text = os.fspath(candidate)
    root_text = os.fspath(root)
    if candidate_text == root_text:
        return True
    prefix = root_text if root_text.endswith(os.sep) else root_text + os.sep
    return candidate_text.startswith(prefix)


def _normalize_relative_input(candidate: str) -> str:
    """Normalize separators and strip leading slashes so input is root-relative."""
    normalized = candidate.replace("\\", "/")
    return normalized.lstrip("/")


def resolve_document_path(root: Path, candidate: str) -> Path:
    """Resolve an untrusted root-relative path, refusing anything outside root."""
    if "\x00" in candidate:
        raise AccessDeniedError(
            reason="Path contains a NUL byte.",
            hint="Use a plain root-relative path.",
        )
    root_text = os.path.realpath(root)
    relative = _normalize_relative_input(candidate)

    lexical = os.path.normpath(os.path.join(root_text, relative))
    if not is_contained(lexical, root_text):
        raise AccessDeniedError(
            reason="Path is outside the document root.",
            hint="Use a path located under the configured root directory.",
        )

    resolved = os.path.realpath(lexical)
    if not is_contained(resolved, root_text):
        raise AccessDeniedError(
            reason="Resolved path escapes the document root.",
            hint="Use a path located under the configured root directory.",
        )
    return Path(resolved)


def relative_posix(root: Path, path: Path) -> str:
    """Return ``path`` relative to ``root`` with forward-slash separators."""
    relative = path.relative_to(root).as_posix()
    return "" if relative == "." else relative
