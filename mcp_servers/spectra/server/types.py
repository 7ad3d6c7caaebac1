"""
Type definitions for MCP tool responses and handlers.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..activity_log import ActivityLog
    from ..bridge import CdpBridge, TidewaveBridge
    from ..cdp_client import CdpClient
    from ..config import SpectraConfig
    from ..session_logs import GuiLogSessions
    from ..tidewave import TidewaveProxy


@dataclass(slots=True)
class ToolContent:
    """Single content item in a tool response."""

    type: str  # "text" or "json"
    text: str | None = None
    data: Any = None  # raw item for "json"; structured payload next to "text"

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP content format."""
        if self.type == "json":
            return dict(self.data or {})
        out: dict[str, Any] = {"type": "text", "text": self.text or ""}
        if self.data is not None:
            out["data"] = self.data
        return out


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution.

    ``status`` and ``error_text`` feed the activity log; they are not part of the
    MCP wire format.
    """

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    status: str = "success"
    error_text: str | None = None
    log_response: Any | None = None

    @classmethod
    def text(
        cls,
        text: str,
        *,
        status: str = "success",
        data: Any = None,
        log_response: Any | None = None,
    ) -> ToolResult:
        return cls(
            content=[ToolContent(type="text", text=text or "", data=data)],
            status=status,
            log_response=log_response,
        )

    @classmethod
    def error(cls, message: str, *, status: str = "error", is_error: bool = False) -> ToolResult:
        """Error reported as plain text (agents read it like any other reply)."""
        return cls(
            content=[ToolContent(type="text", text=message)],
            is_error=is_error,
            status=status,
            error_text=message,
        )

    @classmethod
    def raw(cls, data: dict[str, Any]) -> ToolResult:
        return cls(content=[ToolContent(type="json", data=data)], log_response=data)

    @classmethod
    def item(cls, item: dict[str, Any]) -> ToolResult:
        """Wrap a content item built by ``format_response``."""
        if item.get("type") == "text" and set(item) == {"type", "text"}:
            return cls.text(str(item.get("text") or ""))
        return cls.raw(item)

    def first_text(self) -> str:
        for c in self.content:
            if c.type == "text" and c.text is not None:
                return c.text
        return ""

    def to_content_list(self) -> list[dict[str, Any]]:
        """Convert to MCP content list format."""
        return [c.to_dict() for c in self.content]


@dataclass(slots=True)
class SpectraServices:
    """Long-lived collaborators shared by all handlers."""

    client: CdpClient
    bridge: CdpBridge
    tidewave: TidewaveProxy
    tidewave_bridge: TidewaveBridge
    logs: GuiLogSessions
    activity: ActivityLog | None = None


class ToolHandler(Protocol):
    """Protocol for tool handler functions."""

    def __call__(
        self,
        config: SpectraConfig,
        services: SpectraServices,
        arguments: dict[str, Any],
    ) -> ToolResult: ...


HandlerFunc = Callable[["SpectraConfig", SpectraServices, dict[str, Any]], ToolResult]
