"""Tau5 GUI log tools (read from the per-session log directories)."""

from __future__ import annotations

from typing import Any

from ...bridge import pretty_json
from ...config import SpectraConfig
from ...session_logs import DEFAULT_TAIL_LINES, LogSearchError, SearchOptions
from ..types import SpectraServices, ToolResult
from .common import int_arg


def handle_logs_get(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    lines = int_arg(args, "lines", DEFAULT_TAIL_LINES)
    session = int_arg(args, "session", 0)
    return ToolResult.text(services.logs.tail(lines, session))


def handle_logs_sessions(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    return ToolResult.text(pretty_json(services.logs.describe()))


def handle_logs_search(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    try:
        text = services.logs.search(SearchOptions.from_args(args))
    except LogSearchError as exc:
        return ToolResult.error(str(exc))
    return ToolResult.text(text)


LOG_HANDLERS: dict[str, tuple] = {
    "tau5_logs_search": (handle_logs_search, False),
    "tau5_logs_getSessions": (handle_logs_sessions, False),
    "tau5_logs_get": (handle_logs_get, False),
}
