"""Tidewave MCP proxy tools.

Each ``tidewave_<tool>`` forwards its arguments unchanged to the Tidewave
tool of the same name; ``tidewave_call_tool`` forwards to any named tool.
"""

from __future__ import annotations

from typing import Any

from ...bridge import TidewaveBridge
from ...config import SpectraConfig
from ..definitions_tidewave import TIDEWAVE_PREFIX
from ..types import HandlerFunc, SpectraServices, ToolResult
from .common import as_dict, text_of

PROXIED_TOOLS = (
    "get_logs",
    "get_source_location",
    "get_docs",
    "project_eval",
    "search_package_docs",
    "execute_sql_query",
    "get_ecto_schemas",
)

# Failures of these are flagged isError for the client.
FLAGGED_ERRORS = {"project_eval"}


def _forward(services: SpectraServices, tool: str, params: dict[str, Any], *, flag_error: bool) -> ToolResult:
    outcome = services.tidewave_bridge.execute(tool, params)
    if not outcome.ok:
        return ToolResult.error(outcome.error or "", is_error=flag_error)
    return ToolResult.text(TidewaveBridge.format_response(outcome.result), log_response=outcome.result)


def _proxy(tool: str) -> HandlerFunc:
    flag_error = tool in FLAGGED_ERRORS

    def handler(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
        return _forward(services, tool, dict(args), flag_error=flag_error)

    handler.__name__ = f"handle_{tool}"
    return handler


def handle_call_tool(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    name = text_of(args.get("name"))
    return _forward(services, name, dict(as_dict(args.get("arguments"))), flag_error=True)


TIDEWAVE_HANDLERS: dict[str, tuple] = {
    **{f"{TIDEWAVE_PREFIX}{tool}": (_proxy(tool), False) for tool in PROXIED_TOOLS},
    f"{TIDEWAVE_PREFIX}call_tool": (handle_call_tool, False),
}
