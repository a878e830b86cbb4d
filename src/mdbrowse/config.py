"""Configuration loading and deterministic merge order."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from mdbrowse.security import SecurityLimits

CONFIG_FILE_NAME = "mdbrowse.toml"
ROOT_ENV_VAR = "MDVIEWER_DIR"

MAX_FILE_BYTES_CAP = 16 * 1024 * 1024
MAX_TOTAL_BYTES_PER_RESPONSE_CAP = 32 * 1024 * 1024
RESULT_CAP_CAP = 1_000
SNIPPET_RADIUS_CAP = 1_000
READ_FANOUT_CAP = 64
STABILITY_WINDOW_CAP_SECONDS = 10.0

DEFAULT_DOCUMENT_EXTENSIONS = (".md",)
DEFAULT_EXCLUDED_DIR_NAMES = ("node_modules", "vendor", "build", "dist", "__pycache__")
DEFAULT_RESULT_CAP = 200
DEFAULT_SNIPPET_RADIUS = 80
DEFAULT_READ_FANOUT = 8
DEFAULT_STABILITY_WINDOW_SECONDS = 0.2


@dataclass(slots=True, frozen=True)
class IndexConfig:
    """What gets indexed and which directories are never traversed."""

    document_extensions: tuple[str, ...] = DEFAULT_DOCUMENT_EXTENSIONS
    excluded_dir_names: tuple[str, ...] = DEFAULT_EXCLUDED_DIR_NAMES


@dataclass(slots=True, frozen=True)
class SearchConfig:
    """Search result bounds."""

    result_cap: int = DEFAULT_RESULT_CAP
    snippet_radius: int = DEFAULT_SNIPPET_RADIUS
    read_fanout: int = DEFAULT_READ_FANOUT


@dataclass(slots=True, frozen=True)
class WatchConfig:
    """Filesystem watcher settings."""

    enabled: bool = True
    stability_window_seconds: float = DEFAULT_STABILITY_WINDOW_SECONDS


@dataclass(slots=True, frozen=True)
class ViewerConfig:
    """Fully merged configuration."""

    root_dir: Path
    data_dir: Path
    limits: SecurityLimits
    index: IndexConfig
    search: SearchConfig
    watch: WatchConfig

    def to_public_dict(self) -> dict[str, object]:
        """Return serializable config snapshot for tool responses."""
        return {
            "root_dir": str(self.root_dir),
            "data_dir": str(self.data_dir),
            "limits": {
                "max_file_bytes": self.limits.max_file_bytes,
                "max_total_bytes_per_response": self.limits.max_total_bytes_per_response,
            },
            "index": {
                "document_extensions": list(self.index.document_extensions),
                "excluded_dir_names": list(self.index.excluded_dir_names),
            },
            "search": {
                "result_cap": self.search.result_cap,
                "snippet_radius": self.search.snippet_radius,
                "read_fanout": self.search.read_fanout,
            },
            "watch": {
                "enabled": self.watch.enabled,
                "stability_window_seconds": self.watch.stability_window_seconds,
            },
        }


@dataclass(slots=True, frozen=True)
class CliOverrides:
    """Optional startup overrides applied at highest precedence."""

    data_dir: Path | None = None
    max_file_bytes: int | None = None
    result_cap: int | None = None
    stability_window_seconds: float | None = None
    watch_enabled: bool | None = None


def default_root(environ: Mapping[str, str] | None = None) -> Path:
    """Pick the document root from MDVIEWER_DIR, then HOME."""
    env = os.environ if environ is None else environ
    candidate = env.get(ROOT_ENV_VAR) or env.get("HOME") or "/home"
    return Path(candidate)


def default_config(root_dir: Path) -> ViewerConfig:
    """Build default config for a given document root."""
    resolved_root = root_dir.resolve()
    return ViewerConfig(
        root_dir=resolved_root,
        data_dir=resolved_root / ".mdbrowse",
        limits=SecurityLimits(),
        index=IndexConfig(),
        search=SearchConfig(),
        watch=WatchConfig(),
    )


def load_root_config_file(root_dir: Path) -> dict[str, object]:
    """Load optional mdbrowse.toml from the document root."""
    config_path = root_dir / CONFIG_FILE_NAME
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"{CONFIG_FILE_NAME} must contain a top-level table.")
    return payload


def _get_table(payload: dict[str, object], key: str) -> dict[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a table.")
    return value


def _tuple_of_strings(value: object, section: str, field: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Config field '{section}.{field}' must be a list of strings.")
    output: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item:
            raise ValueError(f"Config field '{section}.{field}' must contain only strings.")
        output.append(item)
    return tuple(output)


def _normalize_extensions(extensions: tuple[str, ...]) -> tuple[str, ...]:
    if not extensions:
        raise ValueError("Config field 'index.document_extensions' must not be empty.")
    output: list[str] = []
    for extension in extensions:
        lowered = extension.lower()
        if not lowered.startswith("."):
            lowered = f".{lowered}"
        if lowered not in output:
            output.append(lowered)
    return tuple(output)


def merge_config(
    base: ViewerConfig, file_payload: dict[str, object], overrides: CliOverrides
) -> ViewerConfig:
    """Merge defaults, root config file, then CLI/startup overrides."""
    limits_payload = _get_table(file_payload, "limits")
    index_payload = _get_table(file_payload, "index")
    search_payload = _get_table(file_payload, "search")
    watch_payload = _get_table(file_payload, "watch")

    if "root_dir" in file_payload:
        raise ValueError(
            f"Config field 'root_dir' is not supported in {CONFIG_FILE_NAME}; "
            "the root is fixed at startup."
        )

    max_file_bytes = _optional_positive_int_with_cap(
        limits_payload.get("max_file_bytes"),
        "limits.max_file_bytes",
        base.limits.max_file_bytes,
        MAX_FILE_BYTES_CAP,
    )
    max_total_bytes_per_response = _optional_positive_int_with_cap(
        limits_payload.get("max_total_bytes_per_response"),
        "limits.max_total_bytes_per_response",
        base.limits.max_total_bytes_per_response,
        MAX_TOTAL_BYTES_PER_RESPONSE_CAP,
    )

    document_extensions = base.index.document_extensions
    if "document_extensions" in index_payload:
        document_extensions = _normalize_extensions(
            _tuple_of_strings(index_payload["document_extensions"], "index", "document_extensions")
        )
    excluded_dir_names = base.index.excluded_dir_names
    if "excluded_dir_names" in index_payload:
        excluded_dir_names = _tuple_of_strings(
            index_payload["excluded_dir_names"], "index", "excluded_dir_names"
        )

    result_cap = _optional_positive_int_with_cap(
        search_payload.get("result_cap"),
        "search.result_cap",
        base.search.result_cap,
        RESULT_CAP_CAP,
    )
    snippet_radius = _optional_positive_int_with_cap(
        search_payload.get("snippet_radius"),
        "search.snippet_radius",
        base.search.snippet_radius,
        SNIPPET_RADIUS_CAP,
    )
    read_fanout = _optional_positive_int_with_cap(
        search_payload.get("read_fanout"),
        "search.read_fanout",
        base.search.read_fanout,
        READ_FANOUT_CAP,
    )

    watch_enabled = base.watch.enabled
    if "enabled" in watch_payload:
        raw_enabled = watch_payload["enabled"]
        if not isinstance(raw_enabled, bool):
            raise ValueError("Config field 'watch.enabled' must be a boolean.")
        watch_enabled = raw_enabled
    stability_window = _optional_window(
        watch_payload.get("stability_window_seconds"),
        "watch.stability_window_seconds",
        base.watch.stability_window_seconds,
    )

    merged = ViewerConfig(
        root_dir=base.root_dir,
        data_dir=base.data_dir,
        limits=SecurityLimits(
            max_file_bytes=max_file_bytes,
            max_total_bytes_per_response=max_total_bytes_per_response,
        ),
        index=IndexConfig(
            document_extensions=document_extensions,
            excluded_dir_names=excluded_dir_names,
        ),
        search=SearchConfig(
            result_cap=result_cap,
            snippet_radius=snippet_radius,
            read_fanout=read_fanout,
        ),
        watch=WatchConfig(enabled=watch_enabled, stability_window_seconds=stability_window),
    )
    return apply_cli_overrides(merged, overrides)


def apply_cli_overrides(config: ViewerConfig, overrides: CliOverrides) -> ViewerConfig:
    """Apply startup overrides at highest precedence."""
    max_file_bytes = _optional_positive_int_with_cap(
        overrides.max_file_bytes,
        "overrides.max_file_bytes",
        config.limits.max_file_bytes,
        MAX_FILE_BYTES_CAP,
    )
    result_cap = _optional_positive_int_with_cap(
        overrides.result_cap,
        "overrides.result_cap",
        config.search.result_cap,
        RESULT_CAP_CAP,
    )
    stability_window = _optional_window(
        overrides.stability_window_seconds,
        "overrides.stability_window_seconds",
        config.watch.stability_window_seconds,
    )
    watch_enabled = (
        overrides.watch_enabled if overrides.watch_enabled is not None else config.watch.enabled
    )
    data_dir = overrides.data_dir or config.data_dir
    return ViewerConfig(
        root_dir=config.root_dir,
        data_dir=data_dir.resolve(),
        limits=SecurityLimits(
            max_file_bytes=max_file_bytes,
            max_total_bytes_per_response=config.limits.max_total_bytes_per_response,
        ),
        index=config.index,
        search=SearchConfig(
            result_cap=result_cap,
            snippet_radius=config.search.snippet_radius,
            read_fanout=config.search.read_fanout,
        ),
        watch=WatchConfig(enabled=watch_enabled, stability_window_seconds=stability_window),
    )


def load_effective_config(
    root_dir: Path | None = None, overrides: CliOverrides | None = None
) -> ViewerConfig:
    """Load effective config using merge order defaults -> root file -> env -> overrides."""
    chosen_root = root_dir if root_dir is not None else default_root()
    resolved_root = chosen_root.resolve()
    if not resolved_root.is_dir():
        raise ValueError(f"Document root is not a directory: {resolved_root}")
    base = default_config(resolved_root)
    payload = load_root_config_file(resolved_root)
    return merge_config(base, payload, overrides or CliOverrides())


def _optional_positive_int_with_cap(
    value: object,
    name: str,
    default: int,
    cap: int | None,
) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"Config field '{name}' must be a positive integer.")
    if cap is not None and value > cap:
        raise ValueError(f"Config field '{name}' must be <= {cap}.")
    return value


def _optional_window(value: object, name: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"Config field '{name}' must be a positive number of seconds.")
    if value > STABILITY_WINDOW_CAP_SECONDS:
        raise ValueError(f"Config field '{name}' must be <= {STABILITY_WINDOW_CAP_SECONDS}.")
    return float(value)
