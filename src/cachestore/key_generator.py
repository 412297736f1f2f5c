#!/usr/bin/env python3
"""
Cache Key Generation — Request-Addressed Entries

Implements:
- resolve(url) → absolute URL against the application origin, fragment dropped
- descriptor(url, method) → RequestDescriptor
- generate_cache_key(request) → deterministic key
- Same method + same absolute URL = same key, whichever generation holds it
"""

import hashlib
import logging
from urllib.parse import urljoin, urlsplit, urlunsplit

from cachestore.models import RequestDescriptor

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


def canonical_origin(url: str) -> str:
    """
    scheme://host[:port] of a URL, lowercased, default port dropped.

    "HTTPS://Shop.Example.com:443/x" → "https://shop.example.com"
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        port = None
    if port is None or DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


class CacheKeyGenerator:
    """
    Turn request URLs into stable cache keys.

    Design:
    - Relative URLs ("/", "/icon.png") resolve against the application origin
    - Fragments never reach the network, so they never split an entry
    - key = SHA256(METHOD + " " + absolute_url)
    """

    def __init__(self, origin: str):
        if not urlsplit(origin).scheme:
            raise ValueError(f"Origin must be absolute, got {origin!r}")
        self.origin = canonical_origin(origin)

    def resolve(self, url: str) -> str:
        absolute = urljoin(self.origin + "/", url)
        parts = urlsplit(absolute)
        path = parts.path or "/"
        if parts.scheme.lower() in DEFAULT_PORTS:
            netloc = canonical_origin(absolute).split("://", 1)[1]
        else:
            netloc = parts.netloc
        return urlunsplit((parts.scheme.lower(), netloc, path, parts.query, ""))

    def descriptor(self, url: str, method: str = "GET") -> RequestDescriptor:
        return RequestDescriptor(url=self.resolve(url), method=method)

    def root(self) -> RequestDescriptor:
        """Key of the application shell's root document."""
        return self.descriptor("/")

    @staticmethod
    def generate_cache_key(request: RequestDescriptor) -> str:
        key_data = f"{request.method} {request.url}"
        key = hashlib.sha256(key_data.encode()).hexdigest()
        logger.debug(f"Generated key: {key[:12]} ({request.method} {request.url})")
        return key
