"""Which requests the interception policy is allowed to see."""

from __future__ import annotations

from typing import Iterable, Optional, Tuple
from urllib.parse import urlsplit

from cachestore.key_generator import canonical_origin
from cachestore.models import RequestDescriptor

SCHEMES = ("http", "https")


class InterceptionScope:
    """
    Same-origin, http(s)-only predicate.

    Also passes through non-GET requests and any path under a bypass prefix.
    Anything rejected here never touches the cache store.
    """

    def __init__(self, origin: str, bypass_paths: Optional[Iterable[str]] = None) -> None:
        self.origin = canonical_origin(origin)
        self.bypass_paths = tuple(p.rstrip("/") or "/" for p in (bypass_paths or ()))

    def same_origin(self, url: str) -> bool:
        parts = urlsplit(url)
        if parts.scheme.lower() not in SCHEMES:
            return False
        try:
            parts.port
        except ValueError:
            # Unparseable or out-of-range port: never the application origin
            return False
        return canonical_origin(url) == self.origin

    def check(self, request: RequestDescriptor) -> Tuple[bool, str]:
        """Return (in_scope, reason). reason names the rule that rejected it."""
        scheme = urlsplit(request.url).scheme.lower()
        if scheme not in SCHEMES:
            return False, "scheme"
        if not self.same_origin(request.url):
            return False, "cross_origin"
        if request.method != "GET":
            return False, "method"
        path = urlsplit(request.url).path or "/"
        for prefix in self.bypass_paths:
            if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
                return False, "bypass"
        return True, "in_scope"

    def __contains__(self, request: RequestDescriptor) -> bool:
        return self.check(request)[0]
