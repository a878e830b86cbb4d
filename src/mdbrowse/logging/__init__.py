"""Diagnostic logging setup and structured audit logging."""

from .audit import AuditEvent, JsonlAuditLogger, sanitize_arguments, utc_timestamp
from .setup import LEVEL_NAMES, configure_logging

__all__ = [
    "AuditEvent",
    "JsonlAuditLogger",
    "LEVEL_NAMES",
    "configure_logging",
    "sanitize_arguments",
    "utc_timestamp",
]
