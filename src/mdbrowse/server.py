"""STDIO JSON-lines document server entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from watchdog.observers import Observer

from mdbrowse.config import CliOverrides, ViewerConfig, load_effective_config
from mdbrowse.documents import DocumentNotFoundError, DocumentService
from mdbrowse.index.watcher import ObserverFactory
from mdbrowse.logging import (
    LEVEL_NAMES,
    AuditEvent,
    JsonlAuditLogger,
    configure_logging,
    sanitize_arguments,
    utc_timestamp,
)
from mdbrowse.security import AccessDeniedError
from mdbrowse.tools.builtin import register_builtin_tools
from mdbrowse.tools.registry import ToolDispatchError, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Request:
    """Normalized incoming request."""

    request_id: str
    method: str
    params: dict[str, object]


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for server startup configuration."""
    parser = argparse.ArgumentParser(prog="mdbrowse")
    parser.add_argument("--root", required=False, default=None)
    parser.add_argument("--data-dir", required=False, default=None)
    parser.add_argument("--max-search-results", type=int, required=False, default=None)
    parser.add_argument("--max-file-bytes", type=int, required=False, default=None)
    parser.add_argument("--stability-window", type=float, required=False, default=None)
    parser.add_argument("--no-watch", action="store_true")
    parser.add_argument("--log-level", choices=LEVEL_NAMES, default="WARNING")
    return parser


class StdioServer:
    """Routes JSON-line requests to document tools on one event loop."""

    def __init__(
        self,
        config: ViewerConfig,
        observer_factory: ObserverFactory | None = Observer,
    ) -> None:
        self._config = config
        self._limits = config.limits
        self._service = DocumentService(config, observer_factory=observer_factory)
        self._audit_logger = JsonlAuditLogger(path=config.data_dir / "audit.jsonl")
        self._registry = ToolRegistry()
        register_builtin_tools(
            self._registry,
            service=self._service,
            config=config,
            read_audit_entries=self._audit_logger.read,
        )
        self._fallback_request_counter = 0

    @property
    def service(self) -> DocumentService:
        return self._service

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def serve(self, in_stream: TextIO, out_stream: TextIO) -> None:
        """Start the service, answer one response line per request line, stop at EOF."""
        await self._service.start()
        try:
            while True:
                raw_line = await asyncio.to_thread(in_stream.readline)
                if not raw_line:
                    break
                line = raw_line.strip()
                if not line:
                    continue
                response = await self.handle_json_line(line)
                out_stream.write(f"{json.dumps(response, sort_keys=True)}\n")
                out_stream.flush()
        finally:
            await self._service.stop()

    async def handle_json_line(self, raw_line: str) -> dict[str, object]:
        """Handle a single JSON-line request."""
        try:
            payload = json.loads(raw_line)
        except json.JSONDecodeError:
            request_id = self.next_request_id()
            response = self.error_response(
                request_id=request_id,
                code="INVALID_JSON",
                message="Request must be valid JSON.",
            )
            self.log_request(
                request_id=request_id,
                tool_name="invalid_json",
                arguments={"raw_line_length": len(raw_line)},
                response=response,
            )
            return response
        return await self.handle_payload(payload)

    async def handle_payload(self, payload: object) -> dict[str, object]:
        """Validate and dispatch a parsed payload."""
        parsed = self.parse_request(payload)
        if isinstance(parsed, dict):
            request_id_value = parsed.get("request_id")
            request_id = (
                request_id_value if isinstance(request_id_value, str) else self.next_request_id()
            )
            self.log_request(
                request_id=request_id,
                tool_name="invalid_request",
                arguments={},
                response=parsed,
            )
            return parsed

        request = parsed
        tool_name: str
        arguments: dict[str, object]
        if request.method == "tools/call":
            tool_name_value = request.params.get("name")
            arguments_value = request.params.get("arguments", {})
            if not isinstance(tool_name_value, str) or not tool_name_value:
                return self.error_response(
                    request_id=request.request_id,
                    code="INVALID_PARAMS",
                    message="tools/call params.name must be a non-empty string.",
                )
            if not isinstance(arguments_value, dict):
                return self.error_response(
                    request_id=request.request_id,
                    code="INVALID_PARAMS",
                    message="tools/call params.arguments must be an object.",
                )
            tool_name = tool_name_value
            arguments = arguments_value
        else:
            tool_name = request.method
            arguments = request.params

        try:
            result = await self._registry.dispatch(name=tool_name, arguments=arguments)
        except AccessDeniedError as error:
            response = self.blocked_response(
                request_id=request.request_id,
                reason=error.reason,
                hint=error.hint,
            )
        except DocumentNotFoundError as error:
            response = self.error_response(
                request_id=request.request_id,
                code="NOT_FOUND",
                message=f"No document or directory at '{error.relative_path}'.",
            )
        except ToolDispatchError as error:
            response = self.error_response(
                request_id=request.request_id,
                code=error.code,
                message=error.message,
            )
        except Exception:
            logger.exception("Unhandled error in %s", tool_name)
            response = self.error_response(
                request_id=request.request_id,
                code="INTERNAL_ERROR",
                message="Unhandled server error while executing tool.",
            )
        else:
            response = self.enforce_response_size_limit(
                request_id=request.request_id,
                response=self.success_response(request_id=request.request_id, result=result),
            )
        self.log_request(
            request_id=request.request_id,
            tool_name=tool_name,
            arguments=arguments,
            response=response,
        )
        return response

    def parse_request(self, payload: object) -> Request | dict[str, object]:
        """Validate request payload and return normalized Request."""
        if not isinstance(payload, dict):
            return self.error_response(
                request_id=self.next_request_id(),
                code="INVALID_REQUEST",
                message="Request must be an object.",
            )

        request_id = self.extract_request_id(payload.get("id"))
        method = payload.get("method")
        params = payload.get("params", {})

        if not isinstance(method, str) or not method:
            return self.error_response(
                request_id=request_id,
                code="INVALID_REQUEST",
                message="Request method must be a non-empty string.",
            )
        if not isinstance(params, dict):
            return self.error_response(
                request_id=request_id,
                code="INVALID_PARAMS",
                message="Request params must be an object.",
            )

        return Request(request_id=request_id, method=method, params=params)

    def extract_request_id(self, request_id: object) -> str:
        """Extract request ID from payload or synthesize deterministic fallback."""
        if isinstance(request_id, str) and request_id:
            return request_id
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            return str(request_id)
        return self.next_request_id()

    def next_request_id(self) -> str:
        """Generate deterministic fallback request IDs for invalid/missing IDs."""
        self._fallback_request_counter += 1
        return f"req-{self._fallback_request_counter:06d}"

    @staticmethod
    def success_response(request_id: str, result: dict[str, object]) -> dict[str, object]:
        """Build success envelope."""
        return {
            "request_id": request_id,
            "ok": True,
            "result": result,
            "warnings": [],
            "blocked": False,
        }

    @staticmethod
    def error_response(request_id: str, code: str, message: str) -> dict[str, object]:
        """Build explicit error envelope."""
        return {
            "request_id": request_id,
            "ok": False,
            "result": {},
            "warnings": [],
            "blocked": False,
            "error": {"code": code, "message": message},
        }

    @staticmethod
    def blocked_response(request_id: str, reason: str, hint: str) -> dict[str, object]:
        """Build access-denied envelope; never says whether the target exists."""
        return {
            "request_id": request_id,
            "ok": False,
            "result": {"reason": reason, "hint": hint},
            "warnings": [],
            "blocked": True,
            "error": {"code": "ACCESS_DENIED", "message": reason},
        }

    def enforce_response_size_limit(
        self,
        request_id: str,
        response: dict[str, object],
    ) -> dict[str, object]:
        """Block responses that exceed max_total_bytes_per_response."""
        response_bytes = len(json.dumps(response, sort_keys=True).encode("utf-8"))
        if response_bytes <= self._limits.max_total_bytes_per_response:
            return response
        return self.blocked_response(
            request_id=request_id,
            reason="Response exceeds max_total_bytes_per_response limit.",
            hint="Narrow the query or open a smaller document.",
        )

    def log_request(
        self,
        request_id: str,
        tool_name: str,
        arguments: dict[str, object],
        response: dict[str, object],
    ) -> None:
        """Log one sanitized request event."""
        error_payload = response.get("error")
        error_code: str | None = None
        if isinstance(error_payload, dict):
            code_value = error_payload.get("code")
            if isinstance(code_value, str):
                error_code = code_value
        event = AuditEvent(
            timestamp=utc_timestamp(),
            request_id=request_id,
            tool=tool_name,
            ok=bool(response.get("ok", False)),
            blocked=bool(response.get("blocked", False)),
            error_code=error_code,
            metadata=sanitize_arguments(arguments),
        )
        try:
            self._audit_logger.append(event)
        except OSError as error:
            logger.warning("Could not write audit event: %s", error)


def create_server(
    root_dir: str | Path | None = None,
    cli_overrides: CliOverrides | None = None,
    observer_factory: ObserverFactory | None = Observer,
) -> StdioServer:
    """Load effective config and build a server for ``root_dir``."""
    root = Path(root_dir) if root_dir is not None else None
    config = load_effective_config(root, overrides=cli_overrides)
    return StdioServer(config, observer_factory=observer_factory)


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for the document server process."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    overrides = CliOverrides(
        data_dir=Path(args.data_dir).resolve() if args.data_dir is not None else None,
        max_file_bytes=args.max_file_bytes,
        result_cap=args.max_search_results,
        stability_window_seconds=args.stability_window,
        watch_enabled=False if args.no_watch else None,
    )
    try:
        server = create_server(root_dir=args.root, cli_overrides=overrides)
    except ValueError as error:
        parser.error(str(error))
    try:
        asyncio.run(server.serve(in_stream=sys.stdin, out_stream=sys.stdout))
    except KeyboardInterrupt:
        logger.info("Server shutting down")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
