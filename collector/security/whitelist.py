"""Per-organization origin allow-list matching."""

from __future__ import annotations

from typing import Iterable

LOCALHOST_MARKER = "localhost"


def is_origin_allowed(origin: str, whitelisted_domains: Iterable[str]) -> bool:
    """Return whether ``origin`` passes the organization's allow-list.

    An empty allow-list admits every origin. Otherwise an entry matches when it
    occurs anywhere in the origin string, so ``example.com`` also admits
    ``https://example.com.evil.net``; origins containing ``localhost`` always
    pass. Matching is case-sensitive and does not strip schemes.
    """
    domains = [d for d in whitelisted_domains if d]
    if not domains:
        return True
    if LOCALHOST_MARKER in origin:
        return True
    return any(domain in origin for domain in domains)
