"""Capture-store reports and page probes rendered as text for agents.

Every handler here answers with a human-readable report. Reads of the capture
stores still go through the bridge so an absent browser is reported the same
way as for live CDP commands; the clear tools act on the stores directly.
"""

from __future__ import annotations

import json
from collections import Counter
from typing import Any

from ...bridge import pretty_json
from ...config import SpectraConfig
from ..definitions_devtools import PREFIX
from ..types import SpectraServices, ToolResult
from .common import as_dict, as_list, evaluated_value, failed, flag, num, text_of

MB = 1048576

COOP_HEADER = "cross-origin-opener-policy"
COEP_HEADER = "cross-origin-embedder-policy"


def _filters(args: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    return {k: args[k] for k in keys if k in args}


def _as_float(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return 0.0


def _mb(value: Any) -> str:
    return num(_as_float(value) / MB)


# ─────────────────────────────────────────────────────────────────────────────
# Console
# ─────────────────────────────────────────────────────────────────────────────


def _console_plain(messages: list[Any]) -> str:
    lines: list[str] = []
    for msg in messages:
        msg = as_dict(msg)
        location = ""
        if "url" in msg and "lineNumber" in msg:
            location = f" ({text_of(msg.get('url'))}:{num(msg.get('lineNumber'))})"
        lines.append(f"[{text_of(msg.get('timestamp'))}] [{text_of(msg.get('level')).upper()}] {text_of(msg.get('text'))}{location}")
        if "stackTrace" in msg:
            lines.append(text_of(msg.get("stackTrace")))
    return "\n".join(lines) or "No console messages found"


def _console_csv(messages: list[Any]) -> str:
    lines = ["Timestamp,Level,Message,URL,Line,Column,Function"]
    for msg in messages:
        msg = as_dict(msg)
        escaped = text_of(msg.get("text")).replace('"', '\\"')
        fields = [
            text_of(msg.get("timestamp")),
            text_of(msg.get("level")),
            f'"{escaped}"',
            text_of(msg.get("url")),
            num(msg.get("lineNumber")),
            num(msg.get("columnNumber")),
            text_of(msg.get("functionName")),
        ]
        lines.append(",".join(fields))
    return "\n".join(lines)


def handle_get_console_messages(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    filters = _filters(args, ("limit", "level", "search", "regex", "since", "last", "since_last_call", "format"))
    outcome = services.bridge.execute(lambda c: c.get_console_messages(filters))
    if not outcome.ok:
        return failed(outcome)

    result = as_dict(outcome.result)
    messages = as_list(result.get("messages"))
    fmt = text_of(result.get("format")) or "json"
    if fmt == "plain":
        return ToolResult.text(_console_plain(messages))
    if fmt == "csv":
        return ToolResult.text(_console_csv(messages))
    count = result.get("count", len(messages))
    return ToolResult.text(f"=== Console Messages ({count} total) ===\n" + pretty_json(messages))


def handle_clear_console_messages(
    config: SpectraConfig, services: SpectraServices, args: dict[str, Any]
) -> ToolResult:
    services.client.store.clear_console()
    return ToolResult.text("Console messages cleared successfully")


# ─────────────────────────────────────────────────────────────────────────────
# Network
# ─────────────────────────────────────────────────────────────────────────────


def handle_get_network_requests(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    filters = _filters(args, ("urlPattern", "includeResponse", "includeTimings", "limit"))
    outcome = services.bridge.execute(lambda c: c.get_network_requests(filters))
    if not outcome.ok:
        return failed(outcome)

    requests = as_list(as_dict(outcome.result).get("requests"))
    out = f"=== Network Requests ({len(requests)} total) ===\n\n"
    for req in requests:
        req = as_dict(req)
        out += f"[{text_of(req.get('timestamp'))}] {text_of(req.get('method'))} {text_of(req.get('url'))}\n"
        if "statusCode" in req:
            out += f"  Status: {num(req.get('statusCode'))} {text_of(req.get('statusText'))}\n"
        if "failureReason" in req:
            out += f"  FAILED: {text_of(req.get('failureReason'))}\n"
        headers = as_dict(req.get("responseHeaders"))
        if COOP_HEADER in headers or COEP_HEADER in headers:
            out += "  CORS Headers:\n"
            if COOP_HEADER in headers:
                out += f"    COOP: {text_of(headers.get(COOP_HEADER))}\n"
            if COEP_HEADER in headers:
                out += f"    COEP: {text_of(headers.get(COEP_HEADER))}\n"
        out += "\n"
    return ToolResult.text(out)


def handle_get_response_body(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    """Report on a response body, flagging valid WASM modules by magic number."""
    request_id = text_of(args.get("requestId"))
    outcome = services.bridge.execute(lambda c: c.get_response_body(request_id))

    out = f"=== Response Body Info ===\nRequest ID: {request_id}\n"
    info = as_dict(outcome.result) if outcome.ok else {}
    if "base64Encoded" not in info:
        return ToolResult.text(out + "Unable to retrieve response body\n")

    encoded = info.get("base64Encoded") is True
    out += f"Base64 Encoded: {flag(encoded)}\n"
    if "decodedSize" in info:
        out += f"Decoded Size: {num(info.get('decodedSize'))} bytes\n"
    if info.get("isWasmModule") is True:
        out += "\n Valid WASM Module Detected!\n"
        out += f"WASM Version: {num(info.get('wasmVersion'))}\n"
    elif encoded:
        out += "\n Not a valid WASM module (wrong magic number)\n"

    if not encoded:
        body = text_of(info.get("body"))
        if len(body) > 100:
            out += f"\nFirst 100 chars:\n{body[:100]}...\n"
        else:
            out += f"\nBody:\n{body}\n"
    return ToolResult.text(out)


# ─────────────────────────────────────────────────────────────────────────────
# Page probes
# ─────────────────────────────────────────────────────────────────────────────


def handle_get_memory_usage(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.get_memory_usage())
    if not outcome.ok:
        return failed(outcome)
    metrics = as_dict(outcome.result)
    out = "=== Memory Usage ===\n"
    for key in sorted(metrics):
        out += f"{key}: {num(metrics[key])}\n"
    return ToolResult.text(out)


def handle_get_exceptions(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.get_pending_exceptions())
    if not outcome.ok:
        return failed(outcome)

    exceptions = as_list(as_dict(outcome.result).get("exceptions"))
    out = f"=== Runtime Exceptions ({len(exceptions)} total) ===\n\n"
    for ex in exceptions:
        ex = as_dict(ex)
        out += f"[{text_of(ex.get('timestamp'))}] {text_of(ex.get('text'))}\n"
        out += (
            f"  Location: {text_of(ex.get('url'))}:{num(ex.get('lineNumber'))}:{num(ex.get('columnNumber'))}\n"
        )
        if "stackTrace" in ex:
            out += "  Stack Trace:\n" + pretty_json(ex.get("stackTrace")) + "\n"
        out += "\n"
    return ToolResult.text(out)


def handle_get_loaded_resources(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.get_loaded_resources())
    if not outcome.ok:
        return failed(outcome)

    resources = as_list(as_dict(outcome.result).get("resources"))
    out = f"=== Loaded Resources ({len(resources)} total) ===\n\n"
    by_type: Counter[str] = Counter()
    for res in resources:
        res = as_dict(res)
        rtype = text_of(res.get("type"))
        by_type[rtype] += 1
        out += f"[{rtype}] {text_of(res.get('url'))}\n"

    out += "\n=== Summary by Type ===\n"
    for rtype in sorted(by_type):
        out += f"{rtype}: {by_type[rtype]}\n"
    return ToolResult.text(out)


def handle_get_audio_contexts(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.get_audio_contexts())
    if not outcome.ok:
        return failed(outcome)

    out = "=== Audio Contexts ===\n"
    contexts = evaluated_value(outcome.result)
    if isinstance(contexts, list):
        if not contexts:
            out += "No AudioContext instances found\n"
        for ctx in contexts:
            ctx = as_dict(ctx)
            out += f"State: {text_of(ctx.get('state'))}\n"
            out += f"Sample Rate: {num(ctx.get('sampleRate'))}\n"
            out += f"Current Time: {num(ctx.get('currentTime'))}\n"
            out += f"Base Latency: {num(ctx.get('baseLatency'))}\n"
            out += f"Output Latency: {num(ctx.get('outputLatency'))}\n"
    return ToolResult.text(out)


def handle_get_workers(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.get_workers())
    if not outcome.ok:
        return failed(outcome)

    workers = as_list(as_dict(outcome.result).get("workers"))
    out = f"=== Workers ({len(workers)} total) ===\n\n"
    for worker in workers:
        worker = as_dict(worker)
        out += f"[{text_of(worker.get('type'))}] {text_of(worker.get('url'))}\n"
        out += f"  Title: {text_of(worker.get('title'))}\n"
        out += f"  ID: {text_of(worker.get('targetId'))}\n\n"
    return ToolResult.text(out)


def handle_get_cross_origin_isolation_status(
    config: SpectraConfig, services: SpectraServices, args: dict[str, Any]
) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.get_cross_origin_isolation_status())
    if not outcome.ok:
        return failed(outcome)

    status = as_dict(outcome.result)
    isolated = status.get("crossOriginIsolated") is True
    out = "=== Cross-Origin Isolation Status ===\n"
    out += f"SharedArrayBuffer Available: {flag(status.get('sharedArrayBufferAvailable'))}\n"
    out += f"Cross-Origin Isolated: {flag(isolated)}\n"
    out += f"COEP Status: {text_of(status.get('coep'))}\n"
    out += f"User Agent: {text_of(status.get('userAgent'))}\n"
    if not isolated:
        out += "\n SharedArrayBuffer requires proper COOP/COEP headers:\n"
        out += "  - Cross-Origin-Opener-Policy: same-origin\n"
        out += "  - Cross-Origin-Embedder-Policy: require-corp\n"
    return ToolResult.text(out, log_response="Cross-origin isolation status retrieved")


def handle_get_security_state(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.get_security_state())
    if not outcome.ok:
        return failed(outcome)

    state = as_dict(outcome.result)
    out = "=== Security State ===\n"
    out += f"Security State: {text_of(state.get('securityState'))}\n"
    if "certificateSecurityState" in state:
        cert = as_dict(state.get("certificateSecurityState"))
        out += f"Certificate Valid: {flag(cert.get('certificateHasWeakSignature'), yes='NO', no='YES')}\n"
        out += f"Protocol: {text_of(cert.get('protocol'))}\n"
    return ToolResult.text(out, log_response="Security state retrieved")


def handle_monitor_wasm_instantiation(
    config: SpectraConfig, services: SpectraServices, args: dict[str, Any]
) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.monitor_wasm_instantiation())
    if not outcome.ok:
        return failed(outcome)

    monitor = as_dict(outcome.result)
    out = "=== WASM Instantiation Monitor ===\n"
    if "available" in monitor and monitor.get("available") is not True:
        return ToolResult.text(out + "WebAssembly API not available\n")

    out += f"Monitoring Enabled: {flag(monitor.get('monitoringEnabled'))}\n"
    if "instantiations" in monitor:
        attempts = as_list(monitor.get("instantiations"))
        out += f"\nInstantiation Attempts: {len(attempts)}\n\n"
        for inst in attempts:
            inst = as_dict(inst)
            ok = inst.get("success") is True
            out += f"[{text_of(inst.get('timestamp'))}] Method: {text_of(inst.get('method'))}\n"
            out += f"  Success: {flag(ok)}\n"
            if not ok:
                out += f"  Error: {text_of(inst.get('error'))}\n"
            elif "exports" in inst:
                out += f"  Exports: {len(as_list(inst.get('exports')))} functions\n"
            out += f"  Duration: {num(inst.get('duration'))}ms\n\n"
    out += "\n Console will show [WASM] prefixed messages for future instantiations\n"
    return ToolResult.text(out)


def handle_get_audio_worklet_state(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.get_audio_worklet_state())
    if not outcome.ok:
        return failed(outcome)

    state = as_dict(outcome.result)
    available = "Available"
    missing = "Not Available"
    out = "=== AudioWorklet State ===\n"
    if "audioWorkletNodeAvailable" in state:
        out += f"AudioWorkletNode API: {flag(state.get('audioWorkletNodeAvailable'), available, missing)}\n"
    if "audioWorkletAvailable" in state:
        out += f"AudioWorklet on Context: {flag(state.get('audioWorkletAvailable'), available, missing)}\n"
    out += f"SharedArrayBuffer: {flag(state.get('sharedArrayBufferAvailable'), available, missing)}\n"

    if "audioContexts" in state:
        contexts = as_list(state.get("audioContexts"))
        out += f"\nAudio Contexts: {len(contexts)}\n"
        for ctx in contexts:
            ctx = as_dict(ctx)
            out += f"\n  State: {text_of(ctx.get('state'))}\n"
            out += f"  Sample Rate: {num(ctx.get('sampleRate'))}\n"
            out += f"  Current Time: {num(ctx.get('currentTime'))}\n"
            out += f"  Has Worklet: {flag(ctx.get('hasWorklet'))}\n"

    if state.get("audioWorkletAvailable") is not True:
        out += "\n AudioWorklet not available - needed for WASM audio processing\n"
    return ToolResult.text(out)


def handle_get_performance_timeline(
    config: SpectraConfig, services: SpectraServices, args: dict[str, Any]
) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.get_performance_timeline())
    if not outcome.ok:
        return failed(outcome)

    out = "=== Performance Timeline ===\n"
    timeline = as_dict(evaluated_value(outcome.result))

    if "navigation" in timeline:
        nav = as_dict(timeline.get("navigation"))
        out += "\nNavigation Timing:\n"
        out += f"  DOM Content Loaded: {num(nav.get('domContentLoaded'))}ms\n"
        out += f"  Page Load Complete: {num(nav.get('loadComplete'))}ms\n"

    if "resources" in timeline:
        resources = as_list(timeline.get("resources"))
        if resources:
            out += "\nWASM/AudioWorklet Resources:\n"
            for res in resources:
                res = as_dict(res)
                out += f"\n  {text_of(res.get('name'))}\n"
                out += f"    Duration: {num(res.get('duration'))}ms\n"
                out += f"    Start Time: {num(res.get('startTime'))}ms\n"
                out += f"    Transfer Size: {num(res.get('transferSize'))} bytes\n"
                out += f"    Decoded Size: {num(res.get('decodedBodySize'))} bytes\n"
        else:
            out += "\nNo WASM or AudioWorklet resources found in timeline\n"

    if "memory" in timeline:
        mem = as_dict(timeline.get("memory"))
        out += "\nMemory Usage:\n"
        out += f"  Used JS Heap: {_mb(mem.get('usedJSHeapSize'))} MB\n"
        out += f"  Total JS Heap: {_mb(mem.get('totalJSHeapSize'))} MB\n"
    return ToolResult.text(out, log_response="Performance timeline retrieved")


# ─────────────────────────────────────────────────────────────────────────────
# LiveView debugging
# ─────────────────────────────────────────────────────────────────────────────


def handle_get_websocket_frames(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    filters = _filters(args, ("url", "sentOnly", "receivedOnly", "search", "limit"))
    outcome = services.bridge.execute(lambda c: c.get_websocket_frames(filters))
    if not outcome.ok:
        return failed(outcome)

    result = as_dict(outcome.result)
    frames = as_list(result.get("frames"))
    out = "=== WebSocket Frames ===\n\n"
    if not frames:
        out += "No WebSocket frames captured.\n"
    for frame in frames:
        frame = as_dict(frame)
        out += f"[{text_of(frame.get('timestamp'))}] {text_of(frame.get('direction')).upper()} {text_of(frame.get('url'))}\n"
        if "liveViewEvent" in frame:
            out += f"  LiveView Event: {text_of(frame.get('liveViewEvent'))}\n"
        if "parsedData" in frame:
            compact = json.dumps(frame.get("parsedData"), separators=(",", ":"), ensure_ascii=False)
            out += f"  Parsed: {compact}\n"
        elif "data" in frame:
            data = text_of(frame.get("data"))
            if len(data) > 200:
                data = data[:200] + "..."
            out += f"  Data: {data}\n"
        out += "\n"
    out += f"\nTotal frames captured: {num(result.get('total'))}\n"
    return ToolResult.text(out, log_response=f"Retrieved {len(frames)} WebSocket frames")


def handle_clear_websocket_frames(
    config: SpectraConfig, services: SpectraServices, args: dict[str, Any]
) -> ToolResult:
    services.client.store.clear_websocket_frames()
    return ToolResult.text("WebSocket frames cleared successfully")


def handle_start_dom_mutation_observer(
    config: SpectraConfig, services: SpectraServices, args: dict[str, Any]
) -> ToolResult:
    selector = text_of(args.get("selector")) or "body"
    outcome = services.bridge.execute(lambda c: c.start_dom_mutation_observer(selector))
    if not outcome.ok:
        return failed(outcome)

    value = as_dict(evaluated_value(outcome.result))
    if "error" in value:
        return ToolResult.error(f"Failed to start observer: {text_of(value.get('error'))}")
    if value.get("success") is True:
        return ToolResult.text(
            f"DOM Mutation Observer started on: {selector}\n\n"
            "Mutations will be captured in the console with [DOM_MUTATION] prefix.\n"
            "Use getDOMMutations to retrieve captured mutations."
        )
    return ToolResult.error("Failed to start DOM Mutation Observer")


def handle_stop_dom_mutation_observer(
    config: SpectraConfig, services: SpectraServices, args: dict[str, Any]
) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.stop_dom_mutation_observer())
    if not outcome.ok:
        return failed(outcome)

    value = as_dict(evaluated_value(outcome.result))
    if value.get("success") is True:
        return ToolResult.text("DOM Mutation Observer stopped successfully")
    return ToolResult.error(f"Failed to stop observer: {text_of(value.get('error')) or 'Unknown error'}")


def handle_get_dom_mutations(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    options = _filters(args, ("limit",))
    outcome = services.bridge.execute(lambda c: c.get_dom_mutations(options))
    if not outcome.ok:
        return failed(outcome)

    mutations = as_list(as_dict(outcome.result).get("mutations"))
    out = "=== DOM Mutations ===\n\n"
    if not mutations:
        out += "No DOM mutations captured.\n"
        out += f"Start observing with {PREFIX}startDOMMutationObserver first."
        return ToolResult.text(out)

    for mutation in mutations:
        mutation = as_dict(mutation)
        out += f"[{text_of(mutation.get('timestamp'))}] {text_of(mutation.get('type'))}\n"
        if "target" in mutation:
            out += f"  Target: {text_of(mutation.get('target'))}\n"
        if "attributeName" in mutation:
            out += f"  Attribute: {text_of(mutation.get('attributeName'))}\n"
        if "oldValue" in mutation:
            out += f"  Old Value: {text_of(mutation.get('oldValue'))}\n"
        for key, label in (("addedNodes", "Added"), ("removedNodes", "Removed")):
            nodes = as_list(mutation.get(key))
            if nodes:
                out += f"  {label}: " + "".join(f"{text_of(n)} " for n in nodes) + "\n"
        out += "\n"
    out += f"\nTotal mutations: {len(mutations)}\n"
    return ToolResult.text(out)


def handle_clear_dom_mutations(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    services.client.store.clear_dom_mutations()
    return ToolResult.text("DOM mutations cleared successfully")


def _stat_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return num(value)
    return json.dumps(value, separators=(",", ":"))


def handle_get_javascript_profile(config: SpectraConfig, services: SpectraServices, args: dict[str, Any]) -> ToolResult:
    outcome = services.bridge.execute(lambda c: c.get_javascript_profile())
    if not outcome.ok:
        return failed(outcome)

    profile = as_dict(evaluated_value(outcome.result))
    out = "=== JavaScript Performance Profile ===\n\n"

    measures = as_list(profile.get("measures"))
    if measures:
        out += "Performance Measures:\n"
        for measure in measures:
            measure = as_dict(measure)
            duration = _as_float(measure.get("duration"))
            start = _as_float(measure.get("startTime"))
            out += f"  {text_of(measure.get('name'))}: {duration:.2f}ms (start: {start:.2f}ms)\n"
        out += "\n"

    hook_stats = as_dict(profile.get("hookStats"))
    if hook_stats:
        out += "LiveView Hook Stats:\n"
        for key in sorted(hook_stats):
            out += f"  {key}: {_stat_text(hook_stats[key])}\n"
        out += "\n"

    if profile.get("usedJSHeapSize") is not None:
        used = _as_float(profile.get("usedJSHeapSize")) / MB
        total = _as_float(profile.get("totalJSHeapSize")) / MB
        out += "Memory Usage:\n"
        out += f"  Used: {used:.2f} MB\n"
        out += f"  Total: {total:.2f} MB\n"
        if total > 0:
            out += f"  Usage: {used / total * 100:.1f}%\n"

    if not measures and not hook_stats:
        out += "No performance data captured.\n"
        out += "LiveView hooks can be profiled by adding performance.mark() calls."
    return ToolResult.text(out)


CAPTURE_HANDLERS: dict[str, tuple] = {
    f"{PREFIX}getConsoleMessages": (handle_get_console_messages, True),
    f"{PREFIX}clearConsoleMessages": (handle_clear_console_messages, True),
    f"{PREFIX}getNetworkRequests": (handle_get_network_requests, True),
    f"{PREFIX}getMemoryUsage": (handle_get_memory_usage, True),
    f"{PREFIX}getExceptions": (handle_get_exceptions, True),
    f"{PREFIX}getLoadedResources": (handle_get_loaded_resources, True),
    f"{PREFIX}getAudioContexts": (handle_get_audio_contexts, True),
    f"{PREFIX}getWorkers": (handle_get_workers, True),
    f"{PREFIX}getCrossOriginIsolationStatus": (handle_get_cross_origin_isolation_status, True),
    f"{PREFIX}getSecurityState": (handle_get_security_state, True),
    f"{PREFIX}monitorWasmInstantiation": (handle_monitor_wasm_instantiation, True),
    f"{PREFIX}getAudioWorkletState": (handle_get_audio_worklet_state, True),
    f"{PREFIX}getPerformanceTimeline": (handle_get_performance_timeline, True),
    f"{PREFIX}getResponseBody": (handle_get_response_body, True),
    f"{PREFIX}getWebSocketFrames": (handle_get_websocket_frames, True),
    f"{PREFIX}clearWebSocketFrames": (handle_clear_websocket_frames, True),
    f"{PREFIX}startDOMMutationObserver": (handle_start_dom_mutation_observer, True),
    f"{PREFIX}stopDOMMutationObserver": (handle_stop_dom_mutation_observer, True),
    f"{PREFIX}getDOMMutations": (handle_get_dom_mutations, True),
    f"{PREFIX}clearDOMMutations": (handle_clear_dom_mutations, True),
    f"{PREFIX}getJavaScriptProfile": (handle_get_javascript_profile, True),
}
