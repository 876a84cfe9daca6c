from __future__ import annotations

import inspect
import json
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from dqaudit import mcp_tools
from dqaudit.errors import AuditError, OrchestratorFailure


MCP_TOOL_NAMES = [
    "add_rule",
    "list_rules",
    "set_rule_active",
    "run_audit",
    "get_run_results",
    "list_table_scores",
    "list_exceptions",
    "resolve_exception",
    "reopen_exception",
]


def _normalize_tool_exception(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, SQLAlchemyError):
        return {
            "code": "DB_ERROR",
            "message": "Database operation failed",
            "retryable": False,
        }

    if isinstance(exc, AuditError):
        retryable = isinstance(exc, OrchestratorFailure) or bool(getattr(exc, "retryable", False))
        return {
            "code": exc.code,
            "message": exc.message,
            "retryable": retryable,
        }

    if isinstance(exc, ValueError):
        return {
            "code": "INVALID_ARGUMENT",
            "message": str(exc),
            "retryable": False,
        }

    return {
        "code": "INTERNAL_ERROR",
        "message": "Operation failed",
        "retryable": False,
    }


def _wrap_tool(tool_fn: Callable[..., Any]) -> Callable[..., Any]:
    def _wrapped(*args: Any, **kwargs: Any) -> Any:
        try:
            return tool_fn(*args, **kwargs)
        except Exception as exc:  # noqa: BLE001
            payload = {"error": _normalize_tool_exception(exc)}
            raise RuntimeError(json.dumps(payload)) from exc

    _wrapped.__name__ = tool_fn.__name__
    _wrapped.__doc__ = tool_fn.__doc__
    _wrapped.__signature__ = inspect.signature(tool_fn)  # type: ignore[attr-defined]
    return _wrapped


def create_mcp_server():
    try:
        from mcp.server.fastmcp import FastMCP
    except ImportError as exc:
        raise RuntimeError("Install the 'mcp' extra to run the MCP server") from exc

    server = FastMCP("dq-audit")
    for name in MCP_TOOL_NAMES:
        server.tool(name=name)(_wrap_tool(getattr(mcp_tools, name)))
    return server


def main() -> None:
    server = create_mcp_server()
    server.run()


if __name__ == "__main__":
    main()
