import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cachestore.key_generator import CacheKeyGenerator
from cachestore.models import CachedResponse
from cachestore.store import MemoryCacheStore
from offline.errors import FetchError

ORIGIN = "http://shop.test"


class FakeOrigin:
    """Dict-backed origin. Unknown URLs answer 404; down=True drops every request."""

    def __init__(self, origin: str = ORIGIN):
        self.origin = origin
        self.routes = {}
        self.down = False
        self.failing = set()
        self.calls = []
        self.gate = None

    def add(self, path, body=b"ok", status=200, content_type="text/html", response_type="basic"):
        url = path if "://" in path else self.origin + path
        if isinstance(body, str):
            body = body.encode()
        self.routes[url] = CachedResponse(
            status=status,
            body=body,
            headers={"Content-Type": content_type},
            url=url,
            response_type=response_type,
        )

    def fetch(self, request):
        self.calls.append(request.url)
        if self.gate is not None:
            self.gate.wait(5)
        if self.down or request.url in self.failing:
            raise FetchError(request.url, "network down")
        response = self.routes.get(request.url)
        if response is None:
            return CachedResponse(status=404, body=b"not found", url=request.url)
        return response.copy()


@pytest.fixture
def origin():
    fake = FakeOrigin()
    yield fake
    if fake.gate is not None:
        fake.gate.set()


@pytest.fixture
def store():
    return MemoryCacheStore()


@pytest.fixture
def keys():
    return CacheKeyGenerator(ORIGIN)


@pytest.fixture
def released_gate(origin):
    """Hold background fetches until the test sets the event."""
    origin.gate = threading.Event()
    return origin.gate
