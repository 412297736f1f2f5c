#!/usr/bin/env python3
"""
Origin Fetch Client

The network side of the interception policy. Anything with a
fetch(request) -> CachedResponse method that raises FetchError when no
response arrives can stand in for it (tests use a dict-backed fake).

Implements:
- fetch(request) -> CachedResponse
- get_stats() -> {requests, errors}
"""

import logging
from typing import Optional, Dict, Any

import requests

from cachestore.models import RequestDescriptor, CachedResponse
from offline.errors import FetchError

logger = logging.getLogger(__name__)


class OriginClient:
    """
    Thin wrapper over requests for same-process origin fetches.

    Design principles:
    - No retries: a failed fetch is reported once and the caller decides
    - No timeout unless one is configured; a stalled origin stalls the fetch
    - Any HTTP status is a response; only transport failures raise
    """

    def __init__(self, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self._request_count = 0
        self._error_count = 0

    def fetch(self, request: RequestDescriptor, headers: Optional[Dict[str, str]] = None) -> CachedResponse:
        self._request_count += 1
        try:
            response = self.session.request(
                request.method,
                request.url,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            self._error_count += 1
            logger.warning(f"Origin timeout: {request.method} {request.url} (>{self.timeout}s)")
            raise FetchError(request.url, "timeout", e) from e
        except requests.ConnectionError as e:
            self._error_count += 1
            logger.warning(f"Origin connection error: {request.method} {request.url}")
            raise FetchError(request.url, "connection error", e) from e
        except requests.RequestException as e:
            self._error_count += 1
            logger.error(f"Origin request failed: {request.method} {request.url}: {e}")
            raise FetchError(request.url, str(e), e) from e

        if response.status_code >= 400:
            logger.debug(f"Origin replied {response.status_code} for {request.method} {request.url}")

        return CachedResponse(
            status=response.status_code,
            body=response.content,
            headers=dict(response.headers),
            url=response.url or request.url,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "requests": self._request_count,
            "errors": self._error_count,
        }

    def close(self):
        self.session.close()
