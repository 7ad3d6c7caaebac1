"""JSON-RPC proxy to the Tidewave MCP endpoint served by the Phoenix app.

Each request is one HTTP POST. Requests run on a small thread pool and
resolve ``concurrent.futures.Future`` objects tracked in a pending table.
"""

from __future__ import annotations

import contextlib
import json
import logging
import threading
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from typing import Any

from .http_client import HttpClientError, HttpReply, http_post_json

logger = logging.getLogger("mcp.spectra.tidewave")

JSONRPC_VERSION = "2.0"
MCP_VERSION = "2025-03-26"
USER_AGENT = "Tau5-Spectra-TidewaveProxy/1.0"


class TidewaveError(Exception):
    pass


class TidewaveProxy:
    def __init__(
        self,
        port: int,
        *,
        host: str = "localhost",
        request_timeout: float = 30.0,
        ping_timeout: float = 2.0,
        health_check_interval: float = 5.0,
        max_workers: int = 4,
    ) -> None:
        self.port = int(port)
        self.base_url = f"http://{host}:{self.port}/tidewave/mcp"
        self.request_timeout = float(request_timeout)
        self.ping_timeout = float(ping_timeout)
        self.health_check_interval = float(health_check_interval)

        self._lock = threading.Lock()
        self._next_id = 1
        self._pending: dict[int, Future] = {}
        self._available = False
        self._initialized = False

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="spectra-tidewave")
        self._stop = threading.Event()
        self._health_thread: threading.Thread | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # Availability
    # ─────────────────────────────────────────────────────────────────────────

    def is_available(self) -> bool:
        with self._lock:
            return self._available

    def is_initialized(self) -> bool:
        with self._lock:
            return self._initialized

    def check_availability(self) -> bool:
        """Ping the endpoint; only a reply without an HTTP error status counts as available."""
        request = self._make_request("ping", {})
        try:
            reply = self._post(request, timeout=self.ping_timeout)
            available = reply.status < 400
        except HttpClientError:
            available = False
        with self._lock:
            changed = available != self._available
            self._available = available
        if changed:
            logger.info("Tidewave proxy availability changed: %s", "available" if available else "unavailable")
        return available

    def start_health_checks(self) -> None:
        if self._health_thread is not None and self._health_thread.is_alive():
            return
        self._stop.clear()
        t = threading.Thread(target=self._health_loop, name="spectra-tidewave-health", daemon=True)
        self._health_thread = t
        t.start()

    def _health_loop(self) -> None:
        while not self._stop.wait(self.health_check_interval):
            self.check_availability()

    # ─────────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────────

    def _make_request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            req_id = self._next_id
            self._next_id += 1
        request: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": req_id, "method": method}
        if params:
            request["params"] = params
        return request

    def _post(self, request: dict[str, Any], *, timeout: float) -> HttpReply:
        return http_post_json(self.base_url, request, timeout=timeout, headers={"User-Agent": USER_AGENT})

    def send_request(self, method: str, params: dict[str, Any] | None = None) -> Future:
        request = self._make_request(method, params or {})
        req_id = int(request["id"])
        fut: Future = Future()
        with self._lock:
            self._pending[req_id] = fut
        self._executor.submit(self._perform, req_id, request)
        return fut

    def _perform(self, req_id: int, request: dict[str, Any]) -> None:
        result: Any = None
        error: str | None = None
        try:
            reply = self._post(request, timeout=self.request_timeout)
        except HttpClientError as exc:
            error = f"Network error: {exc}"
            logger.warning("Tidewave proxy network error: %s", exc)
        except Exception as exc:
            error = f"Network error: {exc}"
            logger.exception("Tidewave proxy request %d failed", req_id)
        else:
            result, error = self._parse_response(reply.body)
            if error is not None and reply.status >= 400 and error.startswith("JSON parse error"):
                error = f"Network error: HTTP {reply.status}"

        with self._lock:
            fut = self._pending.pop(req_id, None)
        if fut is None:
            return
        with contextlib.suppress(InvalidStateError):
            if error is not None:
                fut.set_exception(TidewaveError(error))
            else:
                fut.set_result(result)

    @staticmethod
    def _parse_response(body: bytes) -> tuple[Any, str | None]:
        try:
            response = json.loads(body.decode("utf-8", errors="replace"))
        except ValueError as exc:
            return None, f"JSON parse error: {exc}"
        if not isinstance(response, dict):
            return None, "No result in response"
        err = response.get("error")
        if err is not None:
            err_obj = err if isinstance(err, dict) else {}
            message = str(err_obj.get("message") or "")
            if "data" in err_obj:
                message += " - " + json.dumps(err_obj["data"], ensure_ascii=False, separators=(",", ":"))
            return None, message
        if "result" in response:
            res = response["result"]
            return (res if isinstance(res, dict) else {}), None
        return None, "No result in response"

    def initialize(self, params: dict[str, Any] | None = None) -> Future:
        init_params = dict(params or {})
        init_params.setdefault("protocolVersion", MCP_VERSION)
        fut = self.send_request("initialize", init_params)

        def _mark(done: Future) -> None:
            if not done.cancelled() and done.exception() is None:
                with self._lock:
                    self._initialized = True
                logger.info("Tidewave proxy initialized successfully")

        fut.add_done_callback(_mark)
        return fut

    def list_tools(self) -> Future:
        return self.send_request("tools/list")

    def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Future:
        return self.send_request("tools/call", {"name": name, "arguments": arguments or {}})

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def close(self) -> None:
        self._stop.set()
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for fut in pending:
            with contextlib.suppress(InvalidStateError):
                if not fut.done():
                    fut.set_exception(TidewaveError("Request aborted"))
        self._executor.shutdown(wait=False, cancel_futures=True)
