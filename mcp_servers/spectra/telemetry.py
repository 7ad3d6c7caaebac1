"""CDP event capture (server-side, no page injection required).

Goal:
- Keep what the page reports through CDP events in bounded in-memory stores.
- Answer the capture-read tools from those stores without a CDP round trip.

Stores:
- console messages (Runtime.consoleAPICalled + Log.entryAdded), cap 10,000
- network requests (Network.*), cap 1,000
- runtime exceptions (Runtime.exceptionThrown), cap 1,000
- WebSocket frames (Network.webSocketFrame*), cap 10,000

DOM mutations are console messages prefixed with ``[DOM_MUTATION]``.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from .ring_buffer import RingBuffer

logger = logging.getLogger("mcp.spectra.cdp")

MAX_CONSOLE_MESSAGES = 10_000
MAX_NETWORK_REQUESTS = 1_000
MAX_EXCEPTIONS = 1_000
MAX_WEBSOCKET_FRAMES = 10_000

DEFAULT_QUERY_LIMIT = 100
DOM_MUTATION_PREFIX = "[DOM_MUTATION]"

_CONSOLE_FILTER_KEYS = ("search", "regex", "level", "since", "last")


def _iso_ms(ts: datetime) -> str:
    return ts.isoformat(timespec="milliseconds")


def _iso(ts: datetime) -> str:
    return ts.isoformat(timespec="seconds")


def _js_scalar(value: Any) -> str:
    """Render a CDP primitive the way the page would print it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if value is None:
        return ""
    return str(value)


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def render_console_args(args: Any) -> str:
    parts: list[str] = []
    if not isinstance(args, list):
        return ""
    for arg in args:
        if not isinstance(arg, dict):
            continue
        kind = arg.get("type")
        if kind == "string":
            parts.append(str(arg.get("value", "")))
        elif kind in ("number", "boolean"):
            parts.append(_js_scalar(arg.get("value")))
        elif kind == "object":
            description = arg.get("description")
            class_name = arg.get("className")
            if description:
                parts.append(str(description))
            elif class_name:
                parts.append(f"[{class_name}]")
            else:
                parts.append("[object]")
        elif kind == "undefined":
            parts.append("undefined")
    return " ".join(parts).strip()


def render_stack_trace(call_frames: list[Any]) -> str:
    lines = []
    for frame in call_frames:
        if not isinstance(frame, dict):
            continue
        fn = frame.get("functionName") or "<anonymous>"
        lines.append(
            f"    at {fn} ({frame.get('url', '')}:{_int(frame.get('lineNumber'))}:{_int(frame.get('columnNumber'))})\n"
        )
    return "".join(lines)


def parse_last_window(raw: Any) -> timedelta | None:
    """Parse ``30s`` / ``5m`` / ``2h`` into a timedelta (None when unusable)."""
    text = str(raw or "").strip().lower()
    m = re.fullmatch(r"(\d+)\s*([smh])", text)
    if not m:
        return None
    amount = int(m.group(1))
    if amount <= 0:
        return None
    unit = m.group(2)
    if unit == "s":
        return timedelta(seconds=amount)
    if unit == "m":
        return timedelta(minutes=amount)
    return timedelta(hours=amount)


def parse_since(raw: Any) -> datetime | None:
    text = str(raw or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


@dataclass
class ConsoleMessage:
    timestamp: datetime
    level: str
    text: str
    args: list[Any] = field(default_factory=list)
    stack_trace: str = ""
    url: str = ""
    line_number: int = 0
    column_number: int = 0
    function_name: str = ""
    group_start: bool = False
    group_end: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "timestamp": _iso_ms(self.timestamp),
            "level": self.level,
            "text": self.text,
        }
        if self.url:
            out["url"] = self.url
            out["lineNumber"] = self.line_number
            out["columnNumber"] = self.column_number
            if self.function_name:
                out["functionName"] = self.function_name
        if self.args:
            out["args"] = self.args
        if self.stack_trace:
            out["stackTrace"] = self.stack_trace
        if self.group_start:
            out["groupStart"] = True
        if self.group_end:
            out["groupEnd"] = True
        return out


@dataclass
class NetworkRequest:
    request_id: str
    url: str
    method: str
    timestamp: datetime
    resource_type: str = ""
    headers: dict[str, Any] = field(default_factory=dict)
    status_code: int = 0
    status_text: str = ""
    response_headers: dict[str, Any] = field(default_factory=dict)
    mime_type: str = ""
    from_cache: bool = False
    encoded_data_length: int = 0
    failure_reason: str = ""

    def to_dict(self, *, include_response: bool = False, include_timings: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "requestId": self.request_id,
            "url": self.url,
            "method": self.method,
            "timestamp": _iso_ms(self.timestamp),
            "resourceType": self.resource_type,
        }
        if include_response:
            out["statusCode"] = self.status_code
            out["statusText"] = self.status_text
            out["mimeType"] = self.mime_type
            out["responseHeaders"] = self.response_headers
            out["fromCache"] = self.from_cache
            if self.failure_reason:
                out["failureReason"] = self.failure_reason
        if include_timings:
            out["encodedDataLength"] = self.encoded_data_length
        return out


@dataclass
class RuntimeException:
    exception_id: str
    text: str
    timestamp: datetime
    url: str = ""
    line_number: int = 0
    column_number: int = 0
    stack_trace: dict[str, Any] = field(default_factory=dict)
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "exceptionId": self.exception_id,
            "text": self.text,
            "url": self.url,
            "lineNumber": self.line_number,
            "columnNumber": self.column_number,
            "timestamp": _iso_ms(self.timestamp),
        }
        if self.description:
            out["details"] = self.description
        if self.stack_trace:
            out["stackTrace"] = self.stack_trace
        return out


@dataclass
class WebSocketFrame:
    timestamp: datetime
    request_id: str
    opcode: str
    payload: str
    sent: bool
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "timestamp": _iso(self.timestamp),
            "direction": "sent" if self.sent else "received",
            "opcode": self.opcode,
            "url": self.url,
        }
        parsed = _parse_json_payload(self.payload)
        if parsed is None:
            out["data"] = self.payload
            return out
        out["parsedData"] = parsed
        event = _live_view_event(parsed)
        if event:
            out["liveViewEvent"] = event
        return out


def _parse_json_payload(payload: str) -> Any | None:
    stripped = payload.lstrip()
    if not stripped.startswith(("{", "[")):
        return None
    try:
        parsed = json.loads(stripped)
    except ValueError:
        return None
    return parsed if isinstance(parsed, (dict, list)) else None


def _live_view_event(parsed: Any) -> str | None:
    """Event name of a Phoenix channel message (object or v2 array form)."""
    if isinstance(parsed, dict):
        event = parsed.get("event")
        return event if isinstance(event, str) and event else None
    if not parsed:
        return None
    first = parsed[0]
    if isinstance(first, dict):
        event = first.get("event")
        return event if isinstance(event, str) and event else None
    if len(parsed) == 5 and isinstance(parsed[3], str) and parsed[3]:
        return parsed[3]
    return None


class CaptureStore:
    """Bounded stores fed by CDP events and read by the capture tools."""

    def __init__(
        self,
        *,
        console_capacity: int = MAX_CONSOLE_MESSAGES,
        network_capacity: int = MAX_NETWORK_REQUESTS,
        exception_capacity: int = MAX_EXCEPTIONS,
        frame_capacity: int = MAX_WEBSOCKET_FRAMES,
        clock: Callable[[], datetime] = datetime.now,
        on_console: Callable[[str, str], None] | None = None,
    ) -> None:
        self.console: RingBuffer[ConsoleMessage] = RingBuffer(console_capacity)
        self.network: RingBuffer[NetworkRequest] = RingBuffer(network_capacity)
        self.exceptions: RingBuffer[RuntimeException] = RingBuffer(exception_capacity)
        self.frames: RingBuffer[WebSocketFrame] = RingBuffer(frame_capacity)
        self._clock = clock
        self._on_console = on_console
        self._lock = threading.Lock()
        self._timers: dict[str, datetime] = {}
        self._last_retrieval: datetime | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # Ingestion
    # ─────────────────────────────────────────────────────────────────────────

    def ingest(self, method: str, params: dict[str, Any] | None) -> bool:
        """Route one CDP event into the matching store. Returns False if ignored."""
        p = params if isinstance(params, dict) else {}
        if method == "Runtime.consoleAPICalled":
            self._ingest_console_api(p)
        elif method == "Log.entryAdded":
            self._ingest_log_entry(p)
        elif method == "DOM.documentUpdated":
            logger.debug("DOM document updated")
        elif method in ("Network.webSocketFrameSent", "Network.webSocketFrameReceived"):
            self._ingest_ws_frame(method, p)
        elif method.startswith("Network."):
            return self._ingest_network(method, p)
        elif method == "Runtime.exceptionThrown":
            self._ingest_exception(p)
        else:
            return False
        return True

    def _ingest_console_api(self, params: dict[str, Any]) -> None:
        level = str(params.get("type") or "log")
        args = params.get("args") if isinstance(params.get("args"), list) else []
        text = render_console_args(args)
        now = self._clock()

        if level in ("time", "timeEnd") and args:
            first = args[0] if isinstance(args[0], dict) else {}
            label = _js_scalar(first.get("value")) or "default"
            with self._lock:
                if level == "time":
                    self._timers[label] = now
                else:
                    started = self._timers.pop(label, None)
                    if started is not None:
                        elapsed = int((now - started).total_seconds() * 1000)
                        text = f"{label}: {elapsed}ms"

        msg = ConsoleMessage(timestamp=now, level=level, text=text, args=list(args))
        stack = params.get("stackTrace")
        if isinstance(stack, dict):
            frames = stack.get("callFrames") if isinstance(stack.get("callFrames"), list) else []
            if frames and isinstance(frames[0], dict):
                top = frames[0]
                msg.url = str(top.get("url") or "")
                msg.line_number = _int(top.get("lineNumber"))
                msg.column_number = _int(top.get("columnNumber"))
                msg.function_name = str(top.get("functionName") or "<anonymous>")
            msg.stack_trace = render_stack_trace(frames)
        msg.group_start = level in ("group", "groupCollapsed")
        msg.group_end = level == "groupEnd"
        self._append_console(msg)

    def _ingest_log_entry(self, params: dict[str, Any]) -> None:
        entry = params.get("entry") if isinstance(params.get("entry"), dict) else {}
        level = str(entry.get("level") or "info")
        if level == "verbose":
            level = "debug"
        msg = ConsoleMessage(
            timestamp=self._clock(),
            level=level,
            text=str(entry.get("text") or ""),
            url=str(entry.get("url") or ""),
            line_number=_int(entry.get("lineNumber")),
        )
        self._append_console(msg)

    def _append_console(self, msg: ConsoleMessage) -> None:
        self.console.append(msg)
        cb = self._on_console
        if cb is not None:
            cb(msg.level, msg.text)

    def _ingest_network(self, method: str, params: dict[str, Any]) -> bool:
        request_id = str(params.get("requestId") or "")
        if method == "Network.requestWillBeSent":
            request = params.get("request") if isinstance(params.get("request"), dict) else {}
            headers = request.get("headers")
            self.network.append(
                NetworkRequest(
                    request_id=request_id,
                    url=str(request.get("url") or ""),
                    method=str(request.get("method") or ""),
                    timestamp=self._clock(),
                    resource_type=str(params.get("type") or ""),
                    headers=headers if isinstance(headers, dict) else {},
                )
            )
            return True

        def _same(req: NetworkRequest) -> bool:
            return req.request_id == request_id

        if method == "Network.responseReceived":
            response = params.get("response") if isinstance(params.get("response"), dict) else {}
            headers = response.get("headers") if isinstance(response.get("headers"), dict) else {}

            def _apply(req: NetworkRequest) -> None:
                req.status_code = _int(response.get("status"))
                req.status_text = str(response.get("statusText") or "")
                req.response_headers = headers
                req.mime_type = str(response.get("mimeType") or "")
                req.from_cache = bool(response.get("fromCache"))

            if self.network.update_last(_same, _apply):
                coop = headers.get("cross-origin-opener-policy")
                coep = headers.get("cross-origin-embedder-policy")
                if coop or coep:
                    logger.debug("CORS headers for %s - COOP: %s, COEP: %s", response.get("url"), coop, coep)
            return True

        if method == "Network.loadingFinished":
            length = _int(params.get("encodedDataLength"))

            def _finish(req: NetworkRequest) -> None:
                req.encoded_data_length = length

            self.network.update_last(_same, _finish)
            return True

        if method == "Network.loadingFailed":
            reason = str(params.get("errorText") or "")

            def _fail(req: NetworkRequest) -> None:
                req.failure_reason = reason

            if self.network.update_last(_same, _fail):
                logger.debug("Network request failed - %s", reason)
            return True

        return False

    def _ingest_exception(self, params: dict[str, Any]) -> None:
        details = params.get("exceptionDetails") if isinstance(params.get("exceptionDetails"), dict) else {}
        raw_ts = params.get("timestamp")
        if isinstance(raw_ts, (int, float)) and raw_ts > 0:
            ts = datetime.fromtimestamp(float(raw_ts) / 1000.0)
        else:
            ts = self._clock()
        record = RuntimeException(
            exception_id=str(_int(details.get("exceptionId"))),
            text=str(details.get("text") or ""),
            timestamp=ts,
            url=str(details.get("url") or ""),
            line_number=_int(details.get("lineNumber")),
            column_number=_int(details.get("columnNumber")),
        )
        if isinstance(details.get("stackTrace"), dict):
            record.stack_trace = details["stackTrace"]
        exc_obj = details.get("exception")
        if isinstance(exc_obj, dict):
            record.description = str(exc_obj.get("description") or "")
        self.exceptions.append(record)
        logger.debug("Runtime exception - %s at %s:%s", record.text, record.url, record.line_number)

    def _ingest_ws_frame(self, method: str, params: dict[str, Any]) -> None:
        request_id = str(params.get("requestId") or "")
        response = params.get("response") if isinstance(params.get("response"), dict) else {}
        opcode = response.get("opcode")
        source = self.network.find_last(lambda req: req.request_id == request_id)
        self.frames.append(
            WebSocketFrame(
                timestamp=self._clock(),
                request_id=request_id,
                opcode=_js_scalar(opcode) if opcode is not None else "",
                payload=str(response.get("payloadData") or ""),
                sent=method == "Network.webSocketFrameSent",
                url=source.url if source is not None else "",
            )
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────────

    def console_messages(self, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        """Filtered console messages, newest first.

        ``since_last_call`` only applies when none of search, regex, level,
        since or last is given.
        """
        f = filters if isinstance(filters, dict) else {}

        levels: set[str] = set()
        raw_level = f.get("level")
        if isinstance(raw_level, str) and raw_level:
            levels.add(raw_level)
        elif isinstance(raw_level, list):
            levels.update(str(v) for v in raw_level)

        search = str(f.get("search") or "").lower()
        pattern = None
        if f.get("regex"):
            pattern = re.compile(str(f["regex"]))

        since = parse_since(f.get("since")) if "since" in f else None
        if "last" in f:
            window = parse_last_window(f.get("last"))
            if window is not None:
                since = self._clock() - window

        has_filter = any(key in f for key in _CONSOLE_FILTER_KEYS)
        since_last_call = bool(f.get("since_last_call")) and not has_filter
        with self._lock:
            last_retrieval = self._last_retrieval
        if since_last_call and last_retrieval is not None:
            since = last_retrieval

        fmt = str(f.get("format") or "json")
        limit = _int(f.get("limit"), DEFAULT_QUERY_LIMIT) if f.get("limit") is not None else DEFAULT_QUERY_LIMIT

        messages: list[dict[str, Any]] = []
        for msg in self.console.newest_first():
            if levels and msg.level not in levels:
                continue
            if since is not None and msg.timestamp < since:
                continue
            if search and search not in msg.text.lower():
                continue
            if pattern is not None and not pattern.search(msg.text):
                continue
            messages.append(msg.to_dict())
            if limit > 0 and len(messages) >= limit:
                break

        if since_last_call:
            with self._lock:
                self._last_retrieval = self._clock()

        return {"messages": messages, "count": len(messages), "format": fmt}

    def clear_console(self) -> None:
        self.console.clear()
        with self._lock:
            self._timers.clear()
            self._last_retrieval = None

    def network_requests(self, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        f = filters if isinstance(filters, dict) else {}
        pattern = re.compile(str(f["urlPattern"])) if f.get("urlPattern") else None
        include_response = bool(f.get("includeResponse"))
        include_timings = bool(f.get("includeTimings"))
        limit = _int(f.get("limit"), DEFAULT_QUERY_LIMIT) if f.get("limit") is not None else DEFAULT_QUERY_LIMIT

        requests: list[dict[str, Any]] = []
        with self.network.lock:
            for req in self.network.snapshot():
                if pattern is not None and not pattern.search(req.url):
                    continue
                requests.append(req.to_dict(include_response=include_response, include_timings=include_timings))
                if limit > 0 and len(requests) >= limit:
                    break
        return {"requests": requests, "count": len(requests)}

    def clear_network(self) -> None:
        self.network.clear()

    def pending_exceptions(self) -> dict[str, Any]:
        exceptions = [ex.to_dict() for ex in self.exceptions.snapshot()]
        return {"exceptions": exceptions, "count": len(exceptions)}

    def clear_exceptions(self) -> None:
        self.exceptions.clear()

    def websocket_frames(self, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        f = filters if isinstance(filters, dict) else {}
        url_filter = str(f.get("url") or "")
        sent_only = bool(f.get("sentOnly"))
        received_only = bool(f.get("receivedOnly"))
        search = str(f.get("search") or "").lower()
        limit = _int(f.get("limit"), DEFAULT_QUERY_LIMIT) if f.get("limit") is not None else DEFAULT_QUERY_LIMIT

        frames: list[dict[str, Any]] = []
        all_frames = self.frames.snapshot()
        for frame in all_frames:
            if url_filter and url_filter not in frame.url:
                continue
            if sent_only and not frame.sent:
                continue
            if received_only and frame.sent:
                continue
            if search and search not in frame.payload.lower():
                continue
            frames.append(frame.to_dict())
            if limit > 0 and len(frames) >= limit:
                break
        return {"frames": frames, "total": len(all_frames)}

    def clear_websocket_frames(self) -> None:
        self.frames.clear()

    def dom_mutations(self, options: dict[str, Any] | None = None) -> dict[str, Any]:
        o = options if isinstance(options, dict) else {}
        limit = _int(o.get("limit"), DEFAULT_QUERY_LIMIT) if o.get("limit") is not None else DEFAULT_QUERY_LIMIT

        mutations: list[dict[str, Any]] = []
        for msg in self.console.snapshot():
            if not msg.text.startswith(DOM_MUTATION_PREFIX):
                continue
            try:
                parsed = json.loads(msg.text[len(DOM_MUTATION_PREFIX) :].strip())
            except ValueError:
                continue
            if not isinstance(parsed, dict):
                continue
            parsed["timestamp"] = _iso(msg.timestamp)
            mutations.append(parsed)
            if limit > 0 and len(mutations) >= limit:
                break
        return {"mutations": mutations, "count": len(mutations)}

    def clear_dom_mutations(self) -> int:
        return self.console.remove_if(lambda msg: msg.text.startswith(DOM_MUTATION_PREFIX))
