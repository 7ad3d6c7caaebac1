"""DOM and runtime handlers (``chromium_devtools_*``)."""

from __future__ import annotations

from typing import Any

from ... import js_snippets
from ...bridge import format_response, pretty_json
from ...config import SpectraConfig
from ..definitions_devtools import PREFIX
from ..types import SpectraServices, ToolResult
from .common import (
    as_dict,
    as_list,
    bool_arg,
    evaluated_value,
    exception_text,
    failed,
    int_arg,
    remote_object,
    render_remote_value,
    text_of,
)

HARD_REFRESH_UNAVAILABLE = "not available"


def handle_get_document(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    """Get the DOM tree (pierces shadow roots and iframes)."""
    depth = int_arg(args, "depth", 5)
    outcome = services.bridge.execute(lambda c: c.get_document(depth))
    if not outcome.ok:
        return failed(outcome)
    return ToolResult.text(pretty_json(outcome.result), log_response=outcome.result)


def handle_query_selector(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    selector = text_of(args.get("selector"))
    outcome = services.bridge.execute(lambda c: c.query_selector(selector))
    if not outcome.ok:
        return failed(outcome)
    node_id = as_dict(outcome.result).get("nodeId") or 0
    if node_id == 0:
        return ToolResult.text(f"No element found matching selector: {selector}", status="not_found")
    return ToolResult.text(f"Found element with nodeId: {node_id}")


def handle_get_outer_html(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    node_id = int_arg(args, "nodeId", 0)
    outcome = services.bridge.execute(lambda c: c.get_outer_html(node_id))
    if not outcome.ok:
        return failed(outcome)
    return ToolResult.text(text_of(as_dict(outcome.result).get("outerHTML")))


def handle_evaluate_javascript(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    """Evaluate an expression; objects come back as references, not values."""
    expression = text_of(args.get("expression"))
    outcome = services.bridge.execute(lambda c: c.evaluate_with_object_references(expression))
    if not outcome.ok:
        return failed(outcome)

    exc = exception_text(outcome.result)
    if exc is not None:
        return ToolResult.error(f"JavaScript exception: {exc}", status="exception")

    remote = remote_object(outcome.result)
    if "objectId" in remote and "value" not in remote:
        ref = {
            "type": "object_reference",
            "objectId": text_of(remote.get("objectId")),
            "className": text_of(remote.get("className")),
            "objectType": text_of(remote.get("type")),
            "subtype": text_of(remote.get("subtype")),
            "description": text_of(remote.get("description")),
        }
        return ToolResult.text(pretty_json(ref), log_response=ref)
    return ToolResult.text(render_remote_value(remote))


def handle_hard_refresh(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.evaluate_javascript(js_snippets.HARD_REFRESH))
    if not outcome.ok:
        return failed(outcome)
    value = evaluated_value(outcome.result)
    if isinstance(value, str) and HARD_REFRESH_UNAVAILABLE in value:
        return ToolResult.error(value)
    return ToolResult.text("Hard refresh initiated")


def handle_set_attribute(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    node_id = int_arg(args, "nodeId", 0)
    name = text_of(args.get("name"))
    value = text_of(args.get("value"))
    outcome = services.bridge.execute(lambda c: c.set_attribute_value(node_id, name, value))
    if not outcome.ok:
        return failed(outcome)
    return ToolResult.text(f"Set attribute '{name}' = '{value}' on node {node_id}")


def handle_remove_attribute(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    node_id = int_arg(args, "nodeId", 0)
    name = text_of(args.get("name"))
    outcome = services.bridge.execute(lambda c: c.remove_attribute(node_id, name))
    if not outcome.ok:
        return failed(outcome)
    return ToolResult.text(f"Removed attribute '{name}' from node {node_id}")


def handle_navigate(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    """Navigate the page; /dev/* on the local app is refused client-side."""
    url = text_of(args.get("url"))
    outcome = services.bridge.execute(lambda c: c.navigate_to(url))
    if not outcome.ok:
        return failed(outcome)
    return ToolResult.text(f"Navigated to: {url}")


def handle_get_computed_style(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    selector = text_of(args.get("selector"))
    props = [str(p) for p in as_list(args.get("properties"))]
    raw = bool_arg(args, "rawJson")

    expression = js_snippets.computed_style(selector, props or None)
    outcome = services.bridge.execute(lambda c: c.evaluate_javascript(expression))
    if not outcome.ok:
        return failed(outcome)

    value = evaluated_value(outcome.result)
    if isinstance(value, dict) and "error" in value:
        message = text_of(value.get("error"))
        if raw:
            result = ToolResult.raw({"error": message})
            result.status = "error"
            result.error_text = message
            return result
        return ToolResult.error(message)
    return ToolResult.item(format_response(value, raw))


def handle_get_properties(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    object_id = text_of(args.get("objectId"))
    outcome = services.bridge.execute(lambda c: c.get_properties(object_id))
    if not outcome.ok:
        return failed(outcome)

    exc = exception_text(outcome.result)
    if exc is not None:
        return ToolResult.error(f"Error: {exc}", status="exception")

    formatted: dict[str, Any] = {}
    for prop in as_list(as_dict(outcome.result).get("result")):
        prop = as_dict(prop)
        value = as_dict(prop.get("value"))
        formatted[text_of(prop.get("name"))] = {
            "type": text_of(value.get("type")),
            "value": value.get("value"),
            "description": text_of(value.get("description")),
            "className": text_of(value.get("className")),
        }
    return ToolResult.text(pretty_json(formatted), log_response=formatted)


def handle_call_method(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    object_id = text_of(args.get("objectId"))
    declaration = text_of(args.get("functionDeclaration"))
    outcome = services.bridge.execute(lambda c: c.call_function_on(object_id, declaration))
    if not outcome.ok:
        return failed(outcome)

    exc = exception_text(outcome.result)
    if exc is not None:
        return ToolResult.error(f"Error: {exc}", status="exception")

    remote = remote_object(outcome.result)
    if "objectId" in remote and "value" not in remote:
        ref = {
            "type": "object_reference",
            "objectId": text_of(remote.get("objectId")),
            "className": text_of(remote.get("className")),
            "description": text_of(remote.get("description")),
        }
        return ToolResult.text(pretty_json(ref), log_response=ref)
    return ToolResult.text(render_remote_value(remote))


def handle_release_object(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    object_id = text_of(args.get("objectId"))
    outcome = services.bridge.execute(lambda c: c.release_object(object_id))
    if not outcome.ok:
        return failed(outcome)
    return ToolResult.text(f"Released object: {object_id}")


def _selector_path(detail: Any) -> str | None:
    path = text_of(as_dict(detail).get("path"))
    if not path or path.endswith(" > #text"):
        return None
    return path


def handle_get_selection_info(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    """Describe the current selection; styles/HTML are fetched in one extra evaluation."""
    include_context = bool_arg(args, "includeContext", True)
    context_length = int_arg(args, "contextLength", 50)
    include_styles = bool_arg(args, "includeStyles")
    include_html = bool_arg(args, "includeHtml")
    raw = bool_arg(args, "rawJson")

    expression = js_snippets.selection_info(
        include_context=include_context,
        context_length=context_length,
        want_elements=include_styles or include_html,
    )
    outcome = services.bridge.execute(lambda c: c.evaluate_javascript(expression))
    if not outcome.ok:
        return failed(outcome)

    exc = exception_text(outcome.result)
    if exc is not None:
        return ToolResult.error(f"JavaScript exception: {exc}", status="exception")

    info = evaluated_value(outcome.result)
    if not isinstance(info, dict):
        return ToolResult.error("Unexpected result format")
    if not info.get("hasSelection"):
        return ToolResult.text("No text is currently selected")

    details = info.get("elementDetails")
    if (include_styles or include_html) and isinstance(details, list) and details:
        batch = js_snippets.selection_details_batch(
            [_selector_path(d) for d in details],
            include_styles=include_styles,
            include_html=include_html,
        )
        extra = services.bridge.execute(lambda c: c.evaluate_javascript(batch))
        fetched = evaluated_value(extra.result) if extra.ok else None
        if isinstance(fetched, list):
            merged = []
            for detail, item in zip(details, fetched + [None] * (len(details) - len(fetched))):
                detail = dict(as_dict(detail))
                item = as_dict(item)
                for key in ("styles", "outerHtml"):
                    if key in item:
                        detail[key] = item[key]
                merged.append(detail)
            info["elementDetails"] = merged

    return ToolResult.item(format_response(info, raw))


def handle_hydra_eval(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    """Post new Hydra code to the background iframe."""
    expression = js_snippets.hydra_update_sketch(text_of(args.get("code")))
    outcome = services.bridge.execute(lambda c: c.evaluate_javascript(expression))
    if not outcome.ok:
        return failed(outcome)

    exc = exception_text(outcome.result)
    if exc is not None:
        return ToolResult.error(f"JavaScript exception: {exc}", status="exception", is_error=True)

    value = evaluated_value(outcome.result)
    return ToolResult.text(text_of(value) or "Hydra sketch update attempted")


DOM_HANDLERS: dict[str, tuple] = {
    f"{PREFIX}getDocument": (handle_get_document, True),
    f"{PREFIX}querySelector": (handle_query_selector, True),
    f"{PREFIX}getOuterHTML": (handle_get_outer_html, True),
    f"{PREFIX}evaluateJavaScript": (handle_evaluate_javascript, True),
    f"{PREFIX}hardRefresh": (handle_hard_refresh, True),
    f"{PREFIX}setAttribute": (handle_set_attribute, True),
    f"{PREFIX}removeAttribute": (handle_remove_attribute, True),
    f"{PREFIX}navigate": (handle_navigate, True),
    f"{PREFIX}getComputedStyle": (handle_get_computed_style, True),
    f"{PREFIX}getProperties": (handle_get_properties, True),
    f"{PREFIX}callMethod": (handle_call_method, True),
    f"{PREFIX}releaseObject": (handle_release_object, True),
    f"{PREFIX}getSelectionInfo": (handle_get_selection_info, True),
    "tau5_hydra_eval": (handle_hydra_eval, True),
}
