"""Root containment and access policy primitives."""

from .paths import AccessDeniedError, is_contained, relative_posix, resolve_document_path
from .policy import (
    SecurityLimits,
    enforce_document_access,
    has_document_extension,
    is_ignored_name,
    is_ignored_path,
)

__all__ = [
    "AccessDeniedError",
    "SecurityLimits",
    "enforce_document_access",
    "has_document_extension",
    "is_contained",
    "is_ignored_name",
    "is_ignored_path",
    "relative_posix",
    "resolve_document_path",
]
