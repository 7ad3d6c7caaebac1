"""
Tool registry with dispatch table for the MCP server.

Handlers flagged as activity-logged get one JSONL record per call.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING, Any

from .types import HandlerFunc, SpectraServices, ToolResult

if TYPE_CHECKING:
    from ..config import SpectraConfig

logger = logging.getLogger("mcp.spectra.registry")


class ToolRegistry:
    """Registry for tool handlers with optional activity logging."""

    def __init__(self) -> None:
        # name -> (handler, activity_logged)
        self._handlers: dict[str, tuple[HandlerFunc, bool]] = {}

    def register(
        self,
        name: str,
        handler: HandlerFunc,
        activity_logged: bool = False,
    ) -> None:
        """Register a tool handler."""
        self._handlers[name] = (handler, activity_logged)

    def register_many(self, handlers: dict[str, tuple[HandlerFunc, bool]]) -> None:
        """Register multiple handlers at once."""
        self._handlers.update(handlers)

    def get(self, name: str) -> tuple[HandlerFunc, bool] | None:
        return self._handlers.get(name)

    def has(self, name: str) -> bool:
        return name in self._handlers

    def dispatch(
        self,
        name: str,
        config: SpectraConfig,
        services: SpectraServices,
        arguments: dict[str, Any],
    ) -> ToolResult:
        """
        Dispatch tool call to its handler.

        Unexpected handler exceptions are reported as a text result for this
        call only.

        Raises:
            KeyError: If tool not found
        """
        handler_info = self._handlers.get(name)
        if handler_info is None:
            raise KeyError(f"Unknown tool: {name}")

        handler, activity_logged = handler_info
        request_id = str(uuid.uuid4())
        started = time.monotonic()
        try:
            result = handler(config, services, arguments)
        except Exception as exc:
            logger.exception("Tool %s failed", name)
            result = ToolResult.error(f"Error executing tool: {exc}", status="crash")

        if activity_logged and services.activity is not None:
            duration_ms = int((time.monotonic() - started) * 1000)
            response = result.log_response if result.log_response is not None else result.first_text()
            services.activity.log_activity(
                name,
                request_id,
                arguments,
                result.status,
                duration_ms,
                error=result.error_text,
                response=response,
            )
        return result

    @property
    def tool_names(self) -> list[str]:
        """Registered tool names in registration order."""
        return list(self._handlers.keys())

    def __len__(self) -> int:
        return len(self._handlers)


def create_default_registry() -> ToolRegistry:
    """Create registry with every Spectra handler."""
    from .handlers import ALL_HANDLERS

    registry = ToolRegistry()
    registry.register_many(ALL_HANDLERS)
    return registry
