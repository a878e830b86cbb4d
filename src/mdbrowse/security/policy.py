"""Visibility rules and limits policy for safe document reads."""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .paths import AccessDeniedError

HIDDEN_PREFIX = "."


@dataclass(slots=True, frozen=True)
class SecurityLimits:
    """Runtime limits for document reads and tool responses."""

    max_file_bytes: int = 1024 * 1024
    max_total_bytes_per_response: int = 2 * 1024 * 1024


def is_ignored_name(name: str, excluded_dir_names: Collection[str]) -> bool:
    """Return True for hidden entries and excluded build/dependency directories."""
    return name.startswith(HIDDEN_PREFIX) or name in excluded_dir_names


def is_ignored_path(relative_path: str, excluded_dir_names: Collection[str]) -> bool:
    """Return True when any segment of a root-relative path is ignored."""
    return any(
        is_ignored_name(part, excluded_dir_names)
        for part in PurePosixPath(relative_path).parts
    )


def has_document_extension(name: str, document_extensions: Collection[str]) -> bool:
    """Case-insensitive suffix match against configured document extensions."""
    lowered = name.lower()
    return any(lowered.endswith(extension) for extension in document_extensions)


def enforce_document_access(
    relative_path: str,
    resolved_path: Path,
    *,
    document_extensions: Collection[str],
    excluded_dir_names: Collection[str],
    limits: SecurityLimits,
) -> int:
    """Raise AccessDeniedError unless the path is a servable document.

    Returns the file size observed while checking the byte limit.
    """
    if is_ignored_path(relative_path, excluded_dir_names):
        raise AccessDeniedError(
            reason="Path is hidden or excluded from browsing.",
            hint="Hidden and build/dependency directories are never served.",
        )
    if not has_document_extension(resolved_path.name, document_extensions):
        raise AccessDeniedError(
            reason="File type is not served.",
            hint="Only configured document extensions can be opened.",
        )
    size = resolved_path.stat().st_size
    if size > limits.max_file_bytes:
        raise AccessDeniedError(
            reason="File exceeds max_file_bytes limit.",
            hint="Request a smaller file or increase the limit via configuration.",
        )
    return size
