#!/usr/bin/env python3
"""
Unit tests for the Interception Policy
Hit / miss / offline fallback / pass-through and background revalidation
"""

import pytest
import threading
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from cachestore.models import CachedResponse, RequestDescriptor
from offline.errors import FetchError, MissFetchFailure
from offline.interceptor import InterceptionPolicy
from offline.lifecycle import LifecycleController
from offline.scope import InterceptionScope

ORIGIN = "http://shop.test"


class RecordingStore:
    """Wraps a store and records every attribute accessed on it."""

    def __init__(self, inner):
        self.inner = inner
        self.touched = []

    def __getattr__(self, name):
        self.touched.append(name)
        return getattr(self.inner, name)


@pytest.fixture
def controller(store, origin, keys):
    origin.add("/", "<html>shell</html>")
    controller = LifecycleController("1.0.0", ["/"], store, origin, keys, cache_prefix="app")
    controller.on_install()
    controller.on_activate()
    origin.calls.clear()
    return controller


@pytest.fixture
def decisions():
    return []


@pytest.fixture
def policy(controller, store, origin, decisions):
    policy = InterceptionPolicy(
        controller, store, origin, InterceptionScope(ORIGIN, ["/api/auth"]), on_decision=decisions.append
    )
    yield policy
    policy.close(wait=True)


def runtime_entry(store, keys, path):
    return store.get("app-runtime", keys.descriptor(path))


class TestCacheHit:

    def test_hit_returns_without_waiting_on_network(self, policy, store, keys, origin, released_gate):
        store.open("app-runtime").put(
            keys.descriptor("/api/products"), CachedResponse(status=200, body=b'{"items":[]}')
        )
        origin.add("/api/products", '{"items":[1]}')

        response = policy.intercept(keys.descriptor("/api/products"))

        # Background refresh is still parked on the gate
        assert not released_gate.is_set()
        assert response.body == b'{"items":[]}'

        released_gate.set()
        assert policy.drain(timeout=5)

    def test_hit_refreshes_runtime_entry(self, policy, store, keys, origin):
        store.open("app-runtime").put(keys.descriptor("/api/products"), CachedResponse(status=200, body=b"old"))
        origin.add("/api/products", "new")

        first = policy.intercept(keys.descriptor("/api/products"))
        assert policy.drain(timeout=5)
        second = policy.intercept(keys.descriptor("/api/products"))

        assert first.body == b"old"
        assert second.body == b"new"
        assert runtime_entry(store, keys, "/api/products").response.body == b"new"
        assert policy.get_stats()["revalidated"] >= 1

    def test_network_down_on_hit_serves_stored_body(self, policy, store, keys, origin):
        store.open("app-runtime").put(
            keys.descriptor("/api/products"), CachedResponse(status=200, body=b'{"items":[]}')
        )
        origin.down = True

        response = policy.intercept(keys.descriptor("/api/products"))
        assert policy.drain(timeout=5)

        assert response.body == b'{"items":[]}'
        assert runtime_entry(store, keys, "/api/products").response.body == b'{"items":[]}'
        assert policy.get_stats()["revalidation_failures"] == 1

    def test_refresh_with_error_status_keeps_cached_copy(self, policy, store, keys, origin):
        store.open("app-runtime").put(keys.descriptor("/api/products"), CachedResponse(status=200, body=b"good"))
        origin.add("/api/products", "broken", status=503)

        policy.intercept(keys.descriptor("/api/products"))
        assert policy.drain(timeout=5)

        assert runtime_entry(store, keys, "/api/products").response.body == b"good"

    def test_precache_hit_refreshes_into_runtime(self, policy, store, keys, origin):
        origin.add("/", "<html>v2</html>")

        response = policy.intercept(keys.descriptor("/"))
        assert policy.drain(timeout=5)

        assert response.body == b"<html>shell</html>"
        assert runtime_entry(store, keys, "/").response.body == b"<html>v2</html>"
        # Precache copy is never rewritten by the policy
        assert store.get("app-v1.0.0", keys.descriptor("/")).response.body == b"<html>shell</html>"

    def test_runtime_generation_preferred_over_precache(self, policy, store, keys):
        store.open("app-runtime").put(keys.descriptor("/"), CachedResponse(status=200, body=b"fresher"))

        assert policy.intercept(keys.descriptor("/")).body == b"fresher"

    def test_hit_decision_recorded(self, policy, store, keys, decisions):
        store.open("app-runtime").put(keys.descriptor("/a"), CachedResponse(status=200, body=b"a"))

        policy.intercept(keys.descriptor("/a"))

        record = decisions[-1]
        assert record.outcome == "hit"
        assert record.generation == "app-runtime"
        assert record.revalidate_scheduled is True


class TestCacheMiss:

    def test_miss_fetches_and_stores(self, policy, store, keys, origin, decisions):
        origin.add("/products/42", "<html>product</html>")

        response = policy.intercept(keys.descriptor("/products/42"))

        assert response.status == 200
        assert response.body == b"<html>product</html>"
        assert runtime_entry(store, keys, "/products/42").response.body == b"<html>product</html>"
        assert decisions[-1].outcome == "miss_stored"

    def test_miss_500_returned_and_not_cached(self, policy, store, keys, origin):
        origin.add("/dashboard", "server error", status=500)

        response = policy.intercept(keys.descriptor("/dashboard"))

        assert response.status == 500
        assert response.body == b"server error"
        assert runtime_entry(store, keys, "/dashboard") is None

    def test_miss_error_type_not_cached(self, policy, store, keys, origin):
        origin.add("/opaque", "", status=200, response_type="error")

        response = policy.intercept(keys.descriptor("/opaque"))

        assert response.response_type == "error"
        assert runtime_entry(store, keys, "/opaque") is None

    @pytest.mark.parametrize("response_type", ["default", "opaqueredirect"])
    def test_miss_standard_fetch_types_stored(self, policy, store, keys, origin, decisions, response_type):
        origin.add("/products", "<html>list</html>", response_type=response_type)

        response = policy.intercept(keys.descriptor("/products"))

        assert response.body == b"<html>list</html>"
        assert runtime_entry(store, keys, "/products") is not None
        assert decisions[-1].response_type == response_type

    def test_unlisted_response_type_still_served(self, policy, store, keys, origin, decisions, caplog):
        origin.add("/products", "<html>list</html>", response_type="x-custom")

        response = policy.intercept(keys.descriptor("/products"))

        assert response.status == 200
        assert response.body == b"<html>list</html>"
        assert runtime_entry(store, keys, "/products") is not None
        assert decisions == []
        assert "Dropping decision record" in caplog.text

        # and again as a hit
        assert policy.intercept(keys.descriptor("/products")).body == b"<html>list</html>"
        policy.drain(timeout=5)

    def test_offline_miss_falls_back_to_root_document(self, policy, keys, origin, decisions):
        origin.down = True

        response = policy.intercept(keys.descriptor("/categories/3"))

        assert response.body == b"<html>shell</html>"
        assert decisions[-1].outcome == "fallback"
        assert policy.get_stats()["fallbacks"] == 1

    def test_offline_miss_without_root_propagates(self, policy, store, keys, origin):
        store.delete("app-v1.0.0")
        origin.down = True

        with pytest.raises(MissFetchFailure) as excinfo:
            policy.intercept(keys.descriptor("/categories/3"))

        assert excinfo.value.url == keys.resolve("/categories/3")
        assert policy.get_stats()["failures"] == 1

    def test_no_coalescing(self, policy, keys, origin):
        origin.add("/a", "a", status=500)

        policy.intercept(keys.descriptor("/a"))
        policy.intercept(keys.descriptor("/a"))

        assert origin.calls.count(keys.resolve("/a")) == 2


class TestPassThrough:

    @pytest.fixture
    def watched(self, controller, store, origin):
        recording = RecordingStore(store)
        policy = InterceptionPolicy(controller, recording, origin, InterceptionScope(ORIGIN, ["/api/auth"]))
        yield policy, recording
        policy.close(wait=True)

    @pytest.mark.parametrize("request_", [
        RequestDescriptor("https://cdn.example.com/lib.js"),
        RequestDescriptor("chrome-extension://abc/inject.js"),
        RequestDescriptor(ORIGIN + "/api/posts", method="POST"),
        RequestDescriptor(ORIGIN + "/api/auth/me"),
    ])
    def test_out_of_scope_never_touches_store(self, watched, origin, request_):
        policy, recording = watched
        origin.add(request_.url, "origin says hi")

        response = policy.intercept(request_)

        assert response.body == b"origin says hi"
        assert recording.touched == []

    def test_out_of_scope_failure_propagates_unmodified(self, watched, origin):
        policy, recording = watched
        origin.down = True

        with pytest.raises(FetchError) as excinfo:
            policy.intercept(RequestDescriptor("https://cdn.example.com/lib.js"))

        assert not isinstance(excinfo.value, MissFetchFailure)
        assert recording.touched == []

    def test_inactive_version_passes_through(self, policy, controller, store, keys, origin):
        controller.retire()
        origin.add("/fresh", "fresh")

        policy.intercept(keys.descriptor("/fresh"))

        assert runtime_entry(store, keys, "/fresh") is None
        assert policy.get_stats()["passthrough"] == 1


class TestStats:

    def test_hit_rate(self, policy, store, keys, origin):
        store.open("app-runtime").put(keys.descriptor("/a"), CachedResponse(status=200, body=b"a"))
        origin.add("/b", "b")

        policy.intercept(keys.descriptor("/a"))
        policy.intercept(keys.descriptor("/b"))
        policy.drain(timeout=5)

        stats = policy.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == 50.0
        assert stats["pending_revalidations"] == 0

    def test_concurrent_hits_all_counted(self, policy, store, keys):
        store.open("app-runtime").put(keys.descriptor("/a"), CachedResponse(status=200, body=b"a"))

        def worker():
            for _ in range(200):
                policy.intercept(keys.descriptor("/a"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        policy.drain(timeout=10)

        stats = policy.get_stats()
        assert stats["hits"] == 1600
        assert stats["revalidated"] + stats["revalidation_failures"] == 1600

    def test_closed_pool_skips_refresh(self, policy, store, keys, decisions):
        store.open("app-runtime").put(keys.descriptor("/a"), CachedResponse(status=200, body=b"a"))
        policy.close(wait=True)

        response = policy.intercept(keys.descriptor("/a"))

        assert response.body == b"a"
        assert decisions[-1].revalidate_scheduled is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
