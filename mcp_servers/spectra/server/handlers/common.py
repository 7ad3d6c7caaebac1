"""Helpers shared by the CDP-facing handlers."""

from __future__ import annotations

from typing import Any

from ...bridge import BridgeOutcome, format_response, render_number
from ..types import ToolResult


def failed(outcome: BridgeOutcome) -> ToolResult:
    """Bridge failure as the ``Error: ...`` text agents expect."""
    return ToolResult.error(outcome.error_text)


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def remote_object(result: Any) -> dict[str, Any]:
    """The ``result`` RemoteObject of a Runtime.evaluate/callFunctionOn reply."""
    return as_dict(as_dict(result).get("result"))


def evaluated_value(result: Any) -> Any:
    return remote_object(result).get("value")


def exception_text(result: Any) -> str | None:
    details = as_dict(result).get("exceptionDetails")
    if details is None:
        return None
    return str(as_dict(details).get("text") or "")


def render_remote_value(remote: dict[str, Any]) -> str:
    if "value" not in remote:
        return "undefined"
    return str(format_response(remote["value"])["text"])


def num(value: Any) -> str:
    """Numeric field as text; missing or non-numeric values read as 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "0"
    return render_number(value)


def flag(value: Any, yes: str = "YES", no: str = "NO") -> str:
    return yes if value is True else no


def text_of(value: Any) -> str:
    return value if isinstance(value, str) else ""


def int_arg(args: dict[str, Any], key: str, default: int) -> int:
    raw = args.get(key)
    if raw is None or isinstance(raw, bool):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def bool_arg(args: dict[str, Any], key: str, default: bool = False) -> bool:
    raw = args.get(key)
    return raw if isinstance(raw, bool) else default
