#!/usr/bin/env python3
"""
Interception Policy — Stale-While-Revalidate Over The Offline Store

Consulted once per outbound request while its version is ACTIVE:

  Out of scope      → straight to origin, store never touched
  Hit               → stored payload now, background refresh of runtime entry
  Miss + 200        → fetch, store copy in runtime generation, return
  Miss + non-200    → fetch, return as-is, nothing stored
  Miss + no network → root document from any generation, else MissFetchFailure

Requests are independent: no coalescing, no ordering, and two refreshes of
the same key simply race with the last write winning.
"""

import json
import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Optional, Callable, Dict, Any, Set

from cachestore.models import RequestDescriptor, CachedResponse, CacheEntry
from cachestore.store import CacheStore
from offline.errors import FetchError, MissFetchFailure
from offline.lifecycle import LifecycleController
from offline.observability import DecisionRecord
from offline.scope import InterceptionScope

logger = logging.getLogger(__name__)


class InterceptionPolicy:
    """
    Per-request serve/fetch decision for one version.

    Background revalidation runs on a thread pool and is never joined by
    the caller: its result only matters to later requests, and its failure
    is discarded by contract. drain() exists for shutdown and tests only.
    """

    def __init__(
        self,
        controller: LifecycleController,
        store: CacheStore,
        origin,
        scope: InterceptionScope,
        max_workers: int = 4,
        on_decision: Optional[Callable[[DecisionRecord], None]] = None,
    ):
        self.controller = controller
        self.store = store
        self.origin = origin
        self.scope = scope
        self.on_decision = on_decision

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"revalidate-{controller.version}",
        )
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        # Request threads and refresh workers both bump these
        self._stats_lock = threading.Lock()

        self.stats = {
            "passthrough": 0,
            "hits": 0,
            "misses": 0,
            "stored": 0,
            "uncached": 0,
            "fallbacks": 0,
            "failures": 0,
            "revalidated": 0,
            "revalidation_failures": 0,
        }

    def intercept(self, request: RequestDescriptor) -> CachedResponse:
        """
        Decide the response for one request.

        Raises:
            FetchError: out-of-scope request whose origin fetch failed (unmodified)
            MissFetchFailure: in-scope miss, network down, no root document cached
        """
        start = time.monotonic()
        in_scope, reason = self.scope.check(request)
        if in_scope and not self.controller.is_active:
            in_scope, reason = False, "inactive"

        if not in_scope:
            self._count("passthrough")
            response = self.origin.fetch(request)
            self._record(request, "passthrough", reason, start, response=response)
            return response

        entry = self.store.match(
            request, [self.controller.runtime_name, self.controller.precache_name]
        )
        if entry is not None:
            self._count("hits")
            scheduled = self._schedule_revalidation(request)
            self._record(request, "hit", "cached", start, entry=entry, revalidate=scheduled)
            return entry.response.copy()

        self._count("misses")
        return self._fetch_and_store(request, start)

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = dict(self.stats)
        served = stats["hits"] + stats["misses"]
        hit_rate = (stats["hits"] / served * 100) if served > 0 else 0
        with self._pending_lock:
            pending = len(self._pending)
        return {**stats, "hit_rate_percent": round(hit_rate, 1), "pending_revalidations": pending}

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for outstanding background refreshes. True if all finished."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def close(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)

    # ── Private methods ──

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self.stats[name] += 1

    def _fetch_and_store(self, request: RequestDescriptor, start: float) -> CachedResponse:
        try:
            response = self.origin.fetch(request)
        except FetchError as e:
            fallback = self.store.match(self.controller.keys.root())
            if fallback is not None:
                self._count("fallbacks")
                logger.info(f"Offline: serving root document for {request.url} ({e.reason})")
                self._record(request, "fallback", e.reason, start, entry=fallback)
                return fallback.response.copy()

            self._count("failures")
            self._record(request, "failed", e.reason, start)
            raise MissFetchFailure(request.url, e.reason, e) from e

        if not response.cacheable:
            self._count("uncached")
            self._record(request, "miss_uncached", f"status {response.status}", start, response=response)
            return response

        try:
            self.store.put(self.controller.runtime_name, request, response)
            self._count("stored")
        except Exception as e:
            # The caller still gets the fresh response
            logger.error(f"Cache write failed for {request.url}: {e}")
        self._record(request, "miss_stored", "fetched", start, response=response)
        return response

    def _schedule_revalidation(self, request: RequestDescriptor) -> bool:
        try:
            future = self._executor.submit(self._revalidate, request, self.controller.runtime_name)
        except RuntimeError:
            logger.debug(f"Revalidation pool closed, not refreshing {request.url}")
            return False
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return True

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _revalidate(self, request: RequestDescriptor, runtime_name: str) -> None:
        # Bound to the runtime generation name at spawn time. If a newer
        # version activated meanwhile, this write still lands.
        try:
            response = self.origin.fetch(request)
            if not response.cacheable:
                self._count("revalidation_failures")
                logger.debug(f"Refresh of {request.url} got status {response.status}, keeping cached copy")
                return
            self.store.put(runtime_name, request, response)
            self._count("revalidated")
        except Exception as e:
            self._count("revalidation_failures")
            logger.debug(f"Background refresh of {request.url} failed: {e}")

    def _record(
        self,
        request: RequestDescriptor,
        outcome: str,
        reason: str,
        start: float,
        entry: Optional[CacheEntry] = None,
        response: Optional[CachedResponse] = None,
        revalidate: bool = False,
    ) -> None:
        if response is None and entry is not None:
            response = entry.response
        record = DecisionRecord(
            request_id=uuid.uuid4().hex[:12],
            method=request.method,
            url=request.url,
            version=self.controller.version,
            outcome=outcome,
            reason=reason,
            latency_ms_total=round((time.monotonic() - start) * 1000, 3),
            revalidate_scheduled=revalidate,
            generation=entry.generation if entry is not None else None,
            status=response.status if response is not None else None,
            response_type=response.response_type if response is not None else None,
            entry_age_seconds=entry.age_seconds if entry is not None else None,
        )
        try:
            payload = record.to_dict()
        except ValueError as e:
            # The response is already decided; a bad log line must not change it
            logger.warning(f"Dropping decision record for {request.url}: {e}")
            return
        logger.debug(json.dumps(payload))
        if self.on_decision is not None:
            self.on_decision(record)
