"""Chrome DevTools Protocol client for one page target.

The client owns a daemon thread running an asyncio loop (websocket read
loop, heartbeat, domain enabling). Callers on other threads get
``concurrent.futures.Future`` objects back and block on them with a timeout.

Pending-call table:
- every send adds exactly one entry (id -> Future);
- the matching response or a connection loss removes it;
- on disconnect all entries fail with ``Connection lost`` in send order.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import json
import logging
import re
import struct
import threading
import time
from collections.abc import Awaitable, Callable
from concurrent.futures import Future, InvalidStateError
from enum import Enum
from typing import TYPE_CHECKING, Any

import websockets

from . import js_snippets, navigation
from .http_client import HttpClientError, http_get
from .telemetry import CaptureStore

if TYPE_CHECKING:
    from .config import SpectraConfig

logger = logging.getLogger("mcp.spectra.cdp")

CDP_DOMAINS = ("DOM", "Runtime", "Log", "Page", "Network", "Security", "Performance")
WORKER_TYPES = {"worker", "service_worker", "shared_worker"}
WASM_MAGIC = 0x6D736100

CONNECTION_LOST = "Connection lost"
CONNECTING_MESSAGE = "Chrome DevTools connection in progress. Please try again in a moment."


class CdpError(Exception):
    """A CDP call failed; the message is shown to the agent verbatim."""


class ConnectionState(str, Enum):
    NOT_CONNECTED = "not_connected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


def _failed(exc: BaseException) -> Future:
    fut: Future = Future()
    fut.set_exception(exc)
    return fut


def _completed(value: Any) -> Future:
    fut: Future = Future()
    fut.set_result(value)
    return fut


def select_target(targets: list[Any], title: str) -> dict[str, Any] | None:
    """Pick the page target to attach to.

    With a title: the first page whose title matches exactly.
    Without one: the first page that is not a devtools:// page, else the first page.
    """
    pages = [t for t in targets if isinstance(t, dict) and t.get("type") == "page"]
    if title:
        return next((p for p in pages if p.get("title") == title), None)
    for page in pages:
        if not str(page.get("url") or "").startswith("devtools://"):
            return page
    return pages[0] if pages else None


def inspect_response_body(result: dict[str, Any]) -> dict[str, Any]:
    """Summarize a Network.getResponseBody result, detecting WASM modules."""
    body = str(result.get("body") or "")
    encoded = bool(result.get("base64Encoded"))
    info: dict[str, Any] = {"body": body, "base64Encoded": encoded}
    if not encoded:
        return info
    try:
        decoded = base64.b64decode(body, validate=False)
    except ValueError:
        decoded = b""
    info["decodedSize"] = len(decoded)
    if len(decoded) >= 4 and struct.unpack_from("<I", decoded, 0)[0] == WASM_MAGIC:
        info["isWasmModule"] = True
        info["wasmVersion"] = struct.unpack_from("<I", decoded, 4)[0] if len(decoded) >= 8 else 0
    return info


def _collect_resources(frame: dict[str, Any], out: list[Any]) -> None:
    resources = frame.get("resources")
    if isinstance(resources, list):
        out.extend(resources)
    children = frame.get("childFrames")
    if isinstance(children, list):
        for child in children:
            if isinstance(child, dict):
                _collect_resources(child, out)


def _remote_value(result: dict[str, Any]) -> Any:
    inner = result.get("result")
    return inner.get("value") if isinstance(inner, dict) else None


class CdpClient:
    def __init__(
        self,
        config: SpectraConfig,
        *,
        store: CaptureStore | None = None,
        host: str = "localhost",
        on_state_change: Callable[[ConnectionState], None] | None = None,
    ) -> None:
        self.config = config
        self.port = int(config.devtools_port)
        self.host = host
        self.store = store if store is not None else CaptureStore(on_console=self._echo_console)
        self._on_state_change = on_state_change

        self._lock = threading.Lock()
        self._state_changed = threading.Condition(self._lock)
        self._state = ConnectionState.NOT_CONNECTED

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

        self._ws: Any | None = None
        self._ws_url = ""
        self._target_id = ""
        self._target_title = config.target_title
        self._targets: list[dict[str, Any]] = []
        self._last_error: str | None = None

        self._next_id = 1
        self._pending: dict[int, Future] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def target_title(self) -> str:
        with self._lock:
            return self._target_title

    @property
    def target_id(self) -> str:
        with self._lock:
            return self._target_id

    @property
    def ws_url(self) -> str:
        with self._lock:
            return self._ws_url

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_changed:
            if self._state == state:
                return
            self._state = state
            self._state_changed.notify_all()
        self._notify(state)

    def _notify(self, state: ConnectionState) -> None:
        logger.debug("DevTools connection state: %s", state.value)
        cb = self._on_state_change
        if cb is not None:
            cb(state)

    def wait_until_settled(self, timeout: float) -> ConnectionState:
        """Block while a connection attempt is in progress (bounded)."""
        deadline = time.monotonic() + max(0.0, float(timeout))
        with self._state_changed:
            while self._state == ConnectionState.CONNECTING:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._state_changed.wait(remaining)
            return self._state

    def _not_ready_error_locked(self) -> str | None:
        if self._state == ConnectionState.CONNECTED and self._ws is not None:
            return None
        if self._state == ConnectionState.CONNECTING:
            return CONNECTING_MESSAGE
        return (
            "Not connected to Chrome DevTools. "
            f"Ensure Tau5 is running with --remote-debugging-port={self.port}"
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Discovery
    # ─────────────────────────────────────────────────────────────────────────

    def fetch_targets(self) -> list[dict[str, Any]]:
        url = f"http://{self.host}:{self.port}/json/list"
        try:
            reply = http_get(url, timeout=self.config.http_timeout)
        except HttpClientError as exc:
            raise CdpError(f"Cannot connect to Chrome DevTools on port {self.port}: {exc}") from exc
        try:
            targets = json.loads(reply.text())
        except ValueError:
            targets = None
        if not isinstance(targets, list):
            raise CdpError("Invalid DevTools target list format - Tau5 may not be running")
        cleaned = [t for t in targets if isinstance(t, dict)]
        with self._lock:
            self._targets = cleaned
        return cleaned

    def pick_target(self, targets: list[dict[str, Any]]) -> tuple[str, str]:
        target = select_target(targets, self.target_title)
        if target is None:
            raise CdpError("No suitable DevTools target found - check if Tau5 is running in dev mode")
        ws_url = str(target.get("webSocketDebuggerUrl") or "")
        if not ws_url:
            raise CdpError("No WebSocket debugger URL found - ensure Tau5 is running with DevTools enabled")
        return ws_url, str(target.get("id") or "")

    def available_targets(self) -> list[dict[str, Any]]:
        """Refresh and return the target list (cached list on failure)."""
        try:
            self.fetch_targets()
        except CdpError as exc:
            logger.warning("Could not list DevTools targets: %s", exc)
        with self._lock:
            return list(self._targets)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is not None and self._thread is not None and self._thread.is_alive():
                return self._loop
            loop = asyncio.new_event_loop()
            t = threading.Thread(target=self._run_loop, args=(loop,), name="spectra-cdp", daemon=True)
            self._loop = loop
            self._thread = t
        t.start()
        return loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            with contextlib.suppress(RuntimeError):
                loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def connect(self) -> None:
        """Start a connection attempt unless one is running or established."""
        with self._state_changed:
            if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
                return
            self._state = ConnectionState.CONNECTING
            self._state_changed.notify_all()
        self._notify(ConnectionState.CONNECTING)
        loop = self._ensure_loop()
        asyncio.run_coroutine_threadsafe(self._session(), loop)

    def disconnect(self) -> None:
        with self._lock:
            ws = self._ws
            loop = self._loop
        if ws is None:
            return
        self._drop_connection(ws)
        if loop is not None and loop.is_running():
            asyncio.run_coroutine_threadsafe(ws.close(), loop)

    def close(self, *, timeout: float = 2.0) -> None:
        self.disconnect()
        with self._lock:
            loop = self._loop
            t = self._thread
            self._loop = None
            self._thread = None
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(loop.stop)
        if t is not None:
            t.join(timeout=timeout)

    def set_target_by_title(self, title: str) -> bool:
        """Switch the attach title; reconnects when a session is open."""
        with self._lock:
            self._target_title = title
            connected = self._state == ConnectionState.CONNECTED
        if connected:
            logger.info("Switching DevTools target to '%s'", title)
            self.disconnect()
            self.connect()
        return True

    async def _session(self) -> None:
        loop = asyncio.get_running_loop()

        try:
            targets = await loop.run_in_executor(None, self.fetch_targets)
        except CdpError as exc:
            self._fail_attempt(str(exc), ConnectionState.FAILED)
            return
        except Exception as exc:
            self._fail_attempt(f"Cannot connect to Chrome DevTools on port {self.port}: {exc}", ConnectionState.FAILED)
            return
        try:
            ws_url, target_id = self.pick_target(targets)
        except CdpError as exc:
            self._fail_attempt(str(exc), ConnectionState.NOT_CONNECTED)
            return

        try:
            ws = await websockets.connect(
                ws_url,
                ping_interval=None,
                open_timeout=self.config.http_timeout,
                max_size=None,
            )
        except Exception as exc:
            # asyncio.TimeoutError is not a TimeoutError before 3.11
            self._fail_attempt(f"WebSocket connection to {ws_url} failed: {exc}", ConnectionState.FAILED)
            return

        with self._lock:
            self._ws = ws
            self._ws_url = ws_url
            self._target_id = target_id
            self._last_error = None
        self._set_state(ConnectionState.CONNECTED)

        heartbeat = asyncio.create_task(self._heartbeat(ws))
        enabler = asyncio.create_task(self._enable_domains())
        try:
            async for raw in ws:
                self._on_raw(raw)
        except websockets.exceptions.ConnectionClosed as exc:
            logger.info("DevTools connection closed: %s", exc)
        finally:
            for task in (heartbeat, enabler):
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._drop_connection(ws)
            with contextlib.suppress(Exception):
                await ws.close()

    def _fail_attempt(self, message: str, state: ConnectionState) -> None:
        logger.warning("%s", message)
        with self._lock:
            self._last_error = message
        self._set_state(state)

    def _drop_connection(self, ws: Any) -> None:
        with self._lock:
            if self._ws is not ws:
                return
            self._ws = None
            self._ws_url = ""
            self._target_id = ""
            pending = list(self._pending.values())
            self._pending.clear()
        self._set_state(ConnectionState.NOT_CONNECTED)
        for fut in pending:
            with contextlib.suppress(InvalidStateError):
                if not fut.done():
                    fut.set_exception(CdpError(CONNECTION_LOST))
        if pending:
            logger.info("Failed %d pending DevTools call(s) after disconnect", len(pending))

    async def _heartbeat(self, ws: Any) -> None:
        interval = max(0.1, float(self.config.heartbeat_interval))
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.wait_for(
                    self._call("Runtime.evaluate", {"expression": "1"}),
                    timeout=self.config.command_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("DevTools heartbeat timed out; closing connection")
                await ws.close()
                return
            except CdpError as exc:
                logger.warning("DevTools heartbeat failed: %s", exc)

    async def _enable_domains(self) -> None:
        for domain in CDP_DOMAINS:
            try:
                await asyncio.wait_for(self._call(f"{domain}.enable"), timeout=self.config.command_timeout)
            except (CdpError, asyncio.TimeoutError) as exc:
                logger.warning("Failed to enable %s domain: %s", domain, str(exc) or "timeout")

    # ─────────────────────────────────────────────────────────────────────────
    # Wire
    # ─────────────────────────────────────────────────────────────────────────

    def send_command(self, method: str, params: dict[str, Any] | None = None) -> Future:
        fut: Future = Future()
        with self._lock:
            err = self._not_ready_error_locked()
            if err is not None:
                fut.set_exception(CdpError(err))
                return fut
            ws = self._ws
            loop = self._loop
            req_id = self._next_id
            self._next_id += 1
            self._pending[req_id] = fut
        payload = {"id": req_id, "method": method, "params": params or {}}
        asyncio.run_coroutine_threadsafe(self._transmit(ws, req_id, payload), loop)  # type: ignore[arg-type]
        return fut

    async def _transmit(self, ws: Any, req_id: int, payload: dict[str, Any]) -> None:
        try:
            await ws.send(json.dumps(payload, ensure_ascii=False, separators=(",", ":")))
        except Exception as exc:  # noqa: BLE001
            with self._lock:
                fut = self._pending.pop(req_id, None)
            if fut is not None:
                with contextlib.suppress(InvalidStateError):
                    fut.set_exception(CdpError(f"Failed to send {payload.get('method')}: {exc}"))

    async def _call(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await asyncio.wrap_future(self.send_command(method, params))

    def _on_raw(self, raw: Any) -> None:
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.warning("Dropping unparseable DevTools message")
            return
        if not isinstance(msg, dict):
            return

        method = msg.get("method")
        if isinstance(method, str) and "id" not in msg:
            params = msg.get("params")
            self.store.ingest(method, params if isinstance(params, dict) else {})
            return

        raw_id = msg.get("id")
        if not isinstance(raw_id, int):
            return
        with self._lock:
            fut = self._pending.pop(raw_id, None)
        if fut is None or fut.done():
            return
        err = msg.get("error")
        with contextlib.suppress(InvalidStateError):
            if isinstance(err, dict):
                fut.set_exception(CdpError(str(err.get("message") or "Unknown DevTools error")))
            else:
                result = msg.get("result")
                fut.set_result(result if isinstance(result, dict) else {})

    def _run(self, factory: Callable[[], Awaitable[Any]]) -> Future:
        with self._lock:
            err = self._not_ready_error_locked()
            loop = self._loop
        if err is not None or loop is None:
            return _failed(CdpError(err or CONNECTION_LOST))
        return asyncio.run_coroutine_threadsafe(factory(), loop)  # type: ignore[arg-type]

    @staticmethod
    def _echo_console(level: str, text: str) -> None:
        logger.debug("[Console %s] %s", level, text)

    # ─────────────────────────────────────────────────────────────────────────
    # DOM + Runtime
    # ─────────────────────────────────────────────────────────────────────────

    def get_document(self, depth: int = 5, pierce: bool = True) -> Future:
        return self.send_command("DOM.getDocument", {"depth": int(depth), "pierce": bool(pierce)})

    def query_selector(self, selector: str) -> Future:
        async def _query() -> dict[str, Any]:
            doc = await self._call("DOM.getDocument")
            root = doc.get("root") if isinstance(doc.get("root"), dict) else {}
            return await self._call("DOM.querySelector", {"nodeId": root.get("nodeId", 0), "selector": selector})

        return self._run(_query)

    def get_outer_html(self, node_id: int) -> Future:
        return self.send_command("DOM.getOuterHTML", {"nodeId": int(node_id)})

    def evaluate_javascript(self, expression: str) -> Future:
        return self.send_command(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )

    def evaluate_with_object_references(self, expression: str) -> Future:
        return self.send_command(
            "Runtime.evaluate",
            {
                "expression": expression,
                "returnByValue": False,
                "awaitPromise": True,
                "generatePreview": True,
            },
        )

    def set_attribute_value(self, node_id: int, name: str, value: str) -> Future:
        return self.send_command("DOM.setAttributeValue", {"nodeId": int(node_id), "name": name, "value": value})

    def remove_attribute(self, node_id: int, name: str) -> Future:
        return self.send_command("DOM.removeAttribute", {"nodeId": int(node_id), "name": name})

    def set_outer_html(self, node_id: int, outer_html: str) -> Future:
        return self.send_command("DOM.setOuterHTML", {"nodeId": int(node_id), "outerHTML": outer_html})

    def get_properties(self, object_id: str) -> Future:
        return self.send_command(
            "Runtime.getProperties",
            {
                "objectId": object_id,
                "ownProperties": True,
                "accessorPropertiesOnly": False,
                "generatePreview": True,
            },
        )

    def call_function_on(self, object_id: str, function_declaration: str, arguments: list[Any] | None = None) -> Future:
        params: dict[str, Any] = {
            "objectId": object_id,
            "functionDeclaration": function_declaration,
            "returnByValue": False,
            "awaitPromise": True,
            "generatePreview": True,
        }
        if arguments:
            params["arguments"] = arguments
        return self.send_command("Runtime.callFunctionOn", params)

    def release_object(self, object_id: str) -> Future:
        return self.send_command("Runtime.releaseObject", {"objectId": object_id})

    def navigate_to(self, url: str) -> Future:
        if navigation.precheck_blocked(url):
            return _failed(CdpError(navigation.BLOCKED_MESSAGE))

        async def _navigate() -> dict[str, Any]:
            if not navigation.is_absolute(url):
                try:
                    current = await self._call(
                        "Runtime.evaluate", {"expression": js_snippets.CURRENT_URL, "returnByValue": True}
                    )
                except CdpError as exc:
                    raise CdpError(f"Failed to get current URL: {exc}") from exc
                base = _remote_value(current)
                if not isinstance(base, str) or not base:
                    raise CdpError("Failed to get current URL")
                resolved = navigation.resolve_relative(base, url)
                if navigation.is_blocked_resolved(resolved):
                    raise CdpError(navigation.BLOCKED_MESSAGE)
                result = dict(await self._call("Page.navigate", {"url": resolved}))
                result["resolvedUrl"] = resolved
                return result

            if navigation.is_blocked_resolved(url):
                raise CdpError(navigation.BLOCKED_MESSAGE)
            result = dict(await self._call("Page.navigate", {"url": url}))
            if navigation.is_external(url):
                result["externalNavigation"] = True
                result["navigatedTo"] = url
            return result

        return self._run(_navigate)

    # ─────────────────────────────────────────────────────────────────────────
    # Page probes
    # ─────────────────────────────────────────────────────────────────────────

    def _evaluate_value(self, expression: str) -> Future:
        async def _value() -> Any:
            res = await self._call("Runtime.evaluate", {"expression": expression, "returnByValue": True})
            return _remote_value(res)

        return self._run(_value)

    def get_memory_usage(self) -> Future:
        async def _metrics() -> dict[str, Any]:
            res = await self._call("Performance.getMetrics")
            out: dict[str, Any] = {}
            for metric in res.get("metrics") or []:
                if not isinstance(metric, dict):
                    continue
                name = str(metric.get("name") or "")
                if "Memory" in name or "JS" in name:
                    out[name] = metric.get("value")
            return out

        return self._run(_metrics)

    def get_loaded_resources(self) -> Future:
        async def _resources() -> dict[str, Any]:
            res = await self._call("Page.getResourceTree")
            found: list[Any] = []
            tree = res.get("frameTree")
            if isinstance(tree, dict):
                _collect_resources(tree, found)
            return {"resources": found, "count": len(found)}

        return self._run(_resources)

    def get_workers(self) -> Future:
        async def _workers() -> dict[str, Any]:
            res = await self._call("Target.getTargets")
            infos = res.get("targetInfos") if isinstance(res.get("targetInfos"), list) else []
            workers = [t for t in infos if isinstance(t, dict) and t.get("type") in WORKER_TYPES]
            return {"workers": workers, "count": len(workers)}

        return self._run(_workers)

    def get_security_state(self) -> Future:
        return self.send_command("Security.getSecurityState")

    def get_cross_origin_isolation_status(self) -> Future:
        return self._evaluate_value(js_snippets.CROSS_ORIGIN_ISOLATION)

    def get_response_body(self, request_id: str) -> Future:
        async def _body() -> dict[str, Any]:
            res = await self._call("Network.getResponseBody", {"requestId": request_id})
            return inspect_response_body(res)

        return self._run(_body)

    def get_audio_contexts(self) -> Future:
        return self.send_command("Runtime.evaluate", {"expression": js_snippets.AUDIO_CONTEXTS, "returnByValue": True})

    def get_audio_worklet_state(self) -> Future:
        return self._evaluate_value(js_snippets.AUDIO_WORKLET_STATE)

    def monitor_wasm_instantiation(self) -> Future:
        return self._evaluate_value(js_snippets.MONITOR_WASM_INSTANTIATION)

    def get_performance_timeline(self) -> Future:
        return self.send_command(
            "Runtime.evaluate", {"expression": js_snippets.PERFORMANCE_TIMELINE, "returnByValue": True}
        )

    def start_dom_mutation_observer(self, selector: str = "body") -> Future:
        return self.evaluate_javascript(js_snippets.start_dom_mutation_observer(selector or "body"))

    def stop_dom_mutation_observer(self) -> Future:
        return self.evaluate_javascript(js_snippets.STOP_DOM_MUTATION_OBSERVER)

    def get_javascript_profile(self) -> Future:
        return self.evaluate_javascript(js_snippets.JAVASCRIPT_PROFILE)

    # ─────────────────────────────────────────────────────────────────────────
    # Local reads (capture stores, no CDP round trip)
    # ─────────────────────────────────────────────────────────────────────────

    def _local(self, read: Callable[[], Any]) -> Future:
        try:
            return _completed(read())
        except re.error as exc:
            return _failed(CdpError(f"Invalid regex pattern: {exc}"))

    def get_console_messages(self, filters: dict[str, Any] | None = None) -> Future:
        return self._local(lambda: self.store.console_messages(filters))

    def get_network_requests(self, filters: dict[str, Any] | None = None) -> Future:
        return self._local(lambda: self.store.network_requests(filters))

    def get_pending_exceptions(self) -> Future:
        return self._local(self.store.pending_exceptions)

    def get_websocket_frames(self, filters: dict[str, Any] | None = None) -> Future:
        return self._local(lambda: self.store.websocket_frames(filters))

    def get_dom_mutations(self, options: dict[str, Any] | None = None) -> Future:
        return self._local(lambda: self.store.dom_mutations(options))

