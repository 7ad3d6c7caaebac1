"""Navigation guard for the page target.

The host app serves its developer dashboard under ``/dev/`` on the local
origin; agents may browse anywhere else.
"""

from __future__ import annotations

from urllib.parse import urljoin, urlsplit

BLOCKED_MESSAGE = "Navigation blocked: /dev/* paths are not accessible via Spectra"

_ABSOLUTE_PREFIXES = ("http://", "https://", "file://")
_LOCAL_MARKERS = ("://localhost", "://127.0.0.1")
_LOCAL_HOSTS = {"localhost", "127.0.0.1", ""}


def is_absolute(url: str) -> bool:
    return url.startswith(_ABSOLUTE_PREFIXES)


def is_local_host(host: str | None) -> bool:
    return (host or "").lower() in _LOCAL_HOSTS


def precheck_blocked(url: str) -> bool:
    """Cheap string check done before any CDP traffic."""
    if is_absolute(url) and not any(marker in url for marker in _LOCAL_MARKERS):
        return False
    return url.startswith("/dev/") or "/dev/dashboard" in url


def resolve_relative(base: str, url: str) -> str:
    return urljoin(base, url)


def is_blocked_resolved(url: str) -> bool:
    parts = urlsplit(url)
    return is_local_host(parts.hostname) and parts.path.startswith("/dev/")


def is_external(url: str) -> bool:
    parts = urlsplit(url)
    if parts.scheme == "file":
        return False
    return not is_local_host(parts.hostname)
