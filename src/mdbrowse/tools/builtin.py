"""Built-in document tools."""

from __future__ import annotations

from collections.abc import Callable

from mdbrowse.config import ViewerConfig
from mdbrowse.documents import DocumentService
from mdbrowse.index import SearchHit, SearchScope
from mdbrowse.index.models import iso_timestamp
from mdbrowse.tools.registry import ToolDispatchError, ToolHandler, ToolRegistry

AUDIT_LOG_DEFAULT_LIMIT = 50
AUDIT_LOG_LIMIT_CAP = 200


def register_builtin_tools(
    registry: ToolRegistry,
    service: DocumentService,
    config: ViewerConfig,
    read_audit_entries: Callable[[str | None, int], list[dict[str, object]]],
) -> None:
    """Register the document tool set."""
    registry.register("docs.status", _status_handler(service, config))
    registry.register("docs.health", _health_handler(service))
    registry.register("docs.list_documents", _list_documents_handler(service))
    registry.register("docs.browse", _browse_handler(service))
    registry.register("docs.open", _open_handler(service))
    registry.register("docs.search", _search_handler(service))
    registry.register("docs.rebuild_index", _rebuild_index_handler(service))
    registry.register("docs.audit_log", _audit_log_handler(read_audit_entries))


def _status_handler(service: DocumentService, config: ViewerConfig) -> ToolHandler:
    async def handler(_: dict[str, object]) -> dict[str, object]:
        index = service.index
        if index.is_rebuilding:
            index_status = "rebuilding"
        elif index.is_built:
            index_status = "ready"
        else:
            index_status = "not_indexed"
        last = index.last_rebuild
        watcher = service.watcher
        return {
            "root": str(service.root),
            "index_status": index_status,
            "indexed_file_count": len(index),
            "last_rebuild_timestamp": (
                iso_timestamp(last.finished_at) if last is not None else None
            ),
            "watcher": {
                "enabled": watcher is not None,
                "observing": watcher is not None and watcher.is_observing,
                "applied_events": watcher.applied_count if watcher is not None else 0,
            },
            "effective_config": config.to_public_dict(),
        }

    return handler


def _health_handler(service: DocumentService) -> ToolHandler:
    async def handler(_: dict[str, object]) -> dict[str, object]:
        return service.health()

    return handler


def _list_documents_handler(service: DocumentService) -> ToolHandler:
    async def handler(_: dict[str, object]) -> dict[str, object]:
        records = await service.list_documents()
        return {"documents": [record.to_dict() for record in records]}

    return handler


def _path_argument(arguments: dict[str, object], tool: str, required: bool) -> str:
    value = arguments.get("path", "")
    if not isinstance(value, str):
        raise ToolDispatchError(code="INVALID_PARAMS", message=f"{tool} path must be a string.")
    if required and not value.strip():
        raise ToolDispatchError(
            code="INVALID_PARAMS", message=f"{tool} path must be a non-empty string."
        )
    return value


def _browse_handler(service: DocumentService) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        path_value = _path_argument(arguments, "docs.browse", required=False)
        try:
            listing = await service.browse(path_value)
        except NotADirectoryError as error:
            return {"redirect": "docs.open", "path": str(error)}
        return {
            "path": listing.relative_path,
            "directories": [entry.to_dict() for entry in listing.directories],
            "files": [record.to_dict() for record in listing.files],
            "empty": listing.is_empty,
        }

    return handler


def _open_handler(service: DocumentService) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        path_value = _path_argument(arguments, "docs.open", required=True)
        body = await service.open_document(path_value)
        payload = body.record.to_dict()
        payload["text"] = body.text
        return payload

    return handler


def _hit_to_dict(hit: SearchHit) -> dict[str, object]:
    payload = hit.record.to_dict()
    if hit.snippet is not None:
        payload["snippet"] = hit.snippet.to_dict()
        payload["snippet_html"] = hit.snippet.to_html()
    return payload


def _search_handler(service: DocumentService) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        query_value = arguments.get("query", "")
        if not isinstance(query_value, str):
            raise ToolDispatchError(
                code="INVALID_PARAMS", message="docs.search query must be a string."
            )
        scope = SearchScope.parse(arguments.get("in", SearchScope.NAME.value))
        results = await service.search(query_value, scope)
        return {
            "query": results.query,
            "scope": results.scope.value,
            "total": results.total_matches,
            "shown": len(results.hits),
            "truncated": results.truncated,
            "hits": [_hit_to_dict(hit) for hit in results.hits],
        }

    return handler


def _rebuild_index_handler(service: DocumentService) -> ToolHandler:
    async def handler(_: dict[str, object]) -> dict[str, object]:
        result = await service.rebuild_index()
        return {
            "indexed": result.indexed,
            "duration_ms": result.duration_ms,
            "timestamp": iso_timestamp(result.finished_at),
        }

    return handler


def _audit_log_handler(
    read_audit_entries: Callable[[str | None, int], list[dict[str, object]]],
) -> ToolHandler:
    async def handler(arguments: dict[str, object]) -> dict[str, object]:
        since_value = arguments.get("since")
        limit_value = arguments.get("limit", AUDIT_LOG_DEFAULT_LIMIT)

        since: str | None = since_value if isinstance(since_value, str) else None
        limit = limit_value if isinstance(limit_value, int) else AUDIT_LOG_DEFAULT_LIMIT
        if limit < 1:
            limit = 1
        if limit > AUDIT_LOG_LIMIT_CAP:
            limit = AUDIT_LOG_LIMIT_CAP

        return {"entries": read_audit_entries(since, limit)}

    return handler
