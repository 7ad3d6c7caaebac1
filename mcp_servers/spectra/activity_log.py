"""JSONL activity log for CDP tool invocations.

Layout
- ``<data>/mcp-logs/mcp-<name>.log``, one compact JSON object per line.
- A file over 10 MiB is renamed to ``<file>.<YYYYMMDD-HHMMSS>``; at most 5
  rotated siblings are kept (oldest mtime removed first).
- Each process writes a ``_session`` marker when it opens the log.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger("mcp.spectra.activity")

MAX_LOG_BYTES = 10 * 1024 * 1024
MAX_ROTATED_FILES = 5
MAX_RESPONSE_CHARS = 500
TRUNCATED_SUFFIX = "... (truncated)"

_ERROR_STATUSES = {"error", "exception", "crash"}


def _compact(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def serialized_size(value: Any) -> int:
    """Compact JSON byte size; primitives are measured as ``{"value": v}``."""
    if not isinstance(value, (dict, list)):
        value = {"value": value}
    return len(_compact(value).encode("utf-8"))


def truncate_response(value: Any) -> Any:
    if isinstance(value, str):
        text = value
    elif isinstance(value, (dict, list)):
        text = _compact(value)
        if len(text) <= MAX_RESPONSE_CHARS:
            return value
    else:
        return value
    if len(text) <= MAX_RESPONSE_CHARS:
        return text
    return text[:MAX_RESPONSE_CHARS] + TRUNCATED_SUFFIX


def rotate_if_needed(path: Path, *, max_bytes: int = MAX_LOG_BYTES, keep: int = MAX_ROTATED_FILES) -> Path | None:
    """Rotate ``path`` when it exceeds ``max_bytes``. Returns the rotated path."""
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return None
    if size <= max_bytes:
        return None

    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    rotated = path.with_name(f"{path.name}.{stamp}")
    n = 1
    while rotated.exists():
        rotated = path.with_name(f"{path.name}.{stamp}-{n}")
        n += 1
    os.replace(path, rotated)

    siblings = [p for p in path.parent.glob(f"{path.name}.*") if p.is_file()]
    siblings.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    for old in siblings[keep:]:
        try:
            old.unlink()
        except OSError as exc:
            logger.warning("Could not remove rotated log %s: %s", old, exc)
    return rotated


class ActivityLog:
    def __init__(
        self,
        log_dir: str | Path,
        name: str,
        *,
        max_bytes: int = MAX_LOG_BYTES,
        keep: int = MAX_ROTATED_FILES,
        pid: int | None = None,
    ) -> None:
        self.path = Path(log_dir) / f"mcp-{name}.log"
        self.max_bytes = int(max_bytes)
        self.keep = int(keep)
        self.pid = int(pid if pid is not None else os.getpid())
        self.session_id = f"{self.pid}_{datetime.now().strftime('%H%M%S')}"
        self._lock = threading.Lock()

        self.path.parent.mkdir(parents=True, exist_ok=True)
        rotate_if_needed(self.path, max_bytes=self.max_bytes, keep=self.keep)
        self._write(
            {
                "timestamp": _utc_now(),
                "session_id": self.session_id,
                "pid": self.pid,
                "tool": "_session",
                "status": "started",
                "params": {"type": "mcp_server_session", "session_id": self.session_id, "pid": self.pid},
            }
        )

    def log_activity(
        self,
        tool: str,
        request_id: str,
        params: dict[str, Any],
        status: str,
        duration_ms: int,
        *,
        error: str | None = None,
        response: Any = None,
    ) -> None:
        entry: dict[str, Any] = {
            "timestamp": _utc_now(),
            "session_id": self.session_id,
            "pid": self.pid,
            "tool": tool,
            "request_id": request_id,
            "params": params,
            "params_size": serialized_size(params),
            "status": status,
            "duration_ms": int(duration_ms),
        }
        if error and status in _ERROR_STATUSES:
            entry["error"] = error
        if response is not None and status == "success":
            logged = truncate_response(response)
            entry["response"] = logged
            entry["response_size"] = serialized_size(logged)
        self._write(entry)

    def _write(self, entry: dict[str, Any]) -> None:
        line = _compact(entry) + "\n"
        with self._lock:
            try:
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line)
                rotate_if_needed(self.path, max_bytes=self.max_bytes, keep=self.keep)
            except OSError as exc:
                logger.warning("Could not write activity log %s: %s", self.path, exc)
