from __future__ import annotations

import http.client
import json
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError
from urllib.request import Request, build_opener

USER_AGENT = "Tau5-Spectra/1.0"


class HttpClientError(Exception):
    pass


@dataclass(slots=True)
class HttpReply:
    status: int
    body: bytes

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def _open(req: Request, timeout: float) -> HttpReply:
    opener = build_opener()
    try:
        with opener.open(req, timeout=timeout) as resp:
            return HttpReply(status=int(resp.status), body=resp.read())
    except HTTPError as exc:
        # A status error is still a reply from the server.
        body = b""
        try:
            body = exc.read() or b""
        finally:
            exc.close()
        return HttpReply(status=int(exc.code), body=body)
    except (OSError, http.client.HTTPException) as exc:
        reason = getattr(exc, "reason", None)
        raise HttpClientError(str(reason or exc)) from exc


def http_get(url: str, *, timeout: float = 5.0, headers: dict[str, str] | None = None) -> HttpReply:
    req = Request(url, headers={"User-Agent": USER_AGENT, **(headers or {})})
    return _open(req, timeout)


def http_post_json(
    url: str,
    payload: dict[str, Any],
    *,
    timeout: float = 30.0,
    headers: dict[str, str] | None = None,
) -> HttpReply:
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    merged = {"Content-Type": "application/json", "User-Agent": USER_AGENT, **(headers or {})}
    req = Request(url, data=data, headers=merged, method="POST")
    return _open(req, timeout)
