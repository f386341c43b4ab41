"""Request origin and client address resolution."""

from __future__ import annotations

from typing import Mapping
from urllib.parse import urlsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.title())
    return value or None


def url_origin(url: str) -> str | None:
    """Return the ``scheme://host[:port]`` origin of an absolute http(s) URL."""
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    host = parts.hostname
    if scheme not in _DEFAULT_PORTS or not host:
        return None

    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def resolve_origin(headers: Mapping[str, str], referer_fallback_enabled: bool) -> str | None:
    """Return the effective request origin.

    The ``Origin`` header wins and is returned verbatim. Without it, and only
    when the fallback is enabled, the origin of ``Referer`` (or the
    ``Referrer`` misspelling) is used; an unparseable referer yields None.
    """
    origin = _header(headers, "origin")
    if origin:
        return origin

    if not referer_fallback_enabled:
        return None

    referer = _header(headers, "referer") or _header(headers, "referrer")
    if not referer:
        return None
    return url_origin(referer)


def client_ip(headers: Mapping[str, str], peer_host: str | None) -> str | None:
    """Resolve client IP using X-Forwarded-For first, then the socket peer."""
    forwarded = _header(headers, "x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
        if ip:
            return ip
    return peer_host or None
