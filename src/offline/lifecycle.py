#!/usr/bin/env python3
"""
Lifecycle Controller — Version Install, Adoption and Cache GC

One controller per deployed version. It owns the only code allowed to
create or delete cache generations.

  INSTALLING → INSTALLED → ACTIVATING → ACTIVE → REDUNDANT
       └──→ INSTALL_FAILED (terminal)

Install is all-or-nothing: every manifest URL is fetched before anything
is written, so a failed install leaves no precache generation behind and
never touches the generations of the version currently serving.
"""

import logging
import time
from enum import Enum
from typing import Optional, List, Iterable, Tuple

from cachestore.key_generator import CacheKeyGenerator
from cachestore.models import RequestDescriptor, CachedResponse
from cachestore.store import CacheStore, Generation
from offline.errors import (
    FetchError,
    InstallFetchFailure,
    GenerationDeleteFailure,
    LifecycleStateError,
)

logger = logging.getLogger(__name__)


class LifecycleState(Enum):
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVE = "active"
    INSTALL_FAILED = "install_failed"
    REDUNDANT = "redundant"


def precache_name_for(cache_prefix: str, version: str) -> str:
    return f"{cache_prefix}-v{version}"


def runtime_name_for(cache_prefix: str) -> str:
    return f"{cache_prefix}-runtime"


class LifecycleController:
    """
    Install/activate state machine for one version.

    Usage:
        controller = LifecycleController("1.0.0", manifest, store, origin, keys)
        controller.on_install()    # raises InstallFetchFailure on any bad fetch
        controller.on_activate()   # never raises for cleanup failures
    """

    def __init__(
        self,
        version: str,
        manifest: Iterable[str],
        store: CacheStore,
        origin,
        keys: CacheKeyGenerator,
        cache_prefix: str = "studentstore",
    ):
        self.version = version
        self.manifest: Tuple[str, ...] = tuple(manifest)
        self.store = store
        self.origin = origin
        self.keys = keys
        self.precache_name = precache_name_for(cache_prefix, version)
        self.runtime_name = runtime_name_for(cache_prefix)

        self.state = LifecycleState.INSTALLING
        self.history: List[LifecycleState] = [self.state]
        self.skip_waiting = False
        self.claim_clients = False
        self.install_error: Optional[Exception] = None
        self.delete_failures: List[GenerationDeleteFailure] = []
        self.deleted: List[str] = []

    @property
    def is_active(self) -> bool:
        return self.state == LifecycleState.ACTIVE

    def on_install(self) -> Generation:
        """
        Fetch the whole manifest, then write it into this version's precache.

        Returns the populated precache generation.
        Raises InstallFetchFailure if any URL fails or answers anything but 200.
        """
        self._require(LifecycleState.INSTALLING, "install")
        start = time.time()
        logger.info(f"Installing version {self.version} ({len(self.manifest)} precache URLs)")

        fetched: List[Tuple[RequestDescriptor, CachedResponse]] = []
        for url in self.manifest:
            request = self.keys.descriptor(url)
            try:
                response = self.origin.fetch(request)
            except FetchError as e:
                raise self._fail_install(request.url, e.reason, e)
            if not response.cacheable:
                raise self._fail_install(request.url, f"status {response.status}")
            fetched.append((request, response))

        created = not self.store.has(self.precache_name)
        generation = self.store.open(self.precache_name)
        try:
            for request, response in fetched:
                generation.put(request, response)
        except Exception as e:
            if created:
                self.store.delete(self.precache_name)
            self.install_error = e
            self._transition(LifecycleState.INSTALL_FAILED)
            logger.error(f"Install of {self.version} failed writing precache: {e}")
            raise

        self._transition(LifecycleState.INSTALLED)
        # Adopt immediately instead of waiting for the next navigation
        self.skip_waiting = True
        logger.info(
            f"Installed {self.precache_name}: {len(fetched)} entries "
            f"in {(time.time() - start) * 1000:.0f}ms"
        )
        return generation

    def on_activate(self) -> List[str]:
        """
        Delete every generation that is neither this version's precache nor
        the runtime generation. Returns the names actually deleted.
        """
        self._require(LifecycleState.INSTALLED, "activate")
        self._transition(LifecycleState.ACTIVATING)

        keep = {self.precache_name, self.runtime_name}
        try:
            stale = sorted(self.store.list_generations() - keep)
        except Exception as e:
            logger.error(f"Could not list cache generations during activation: {e}")
            stale = []

        for name in stale:
            try:
                if self.store.delete(name):
                    self.deleted.append(name)
            except Exception as e:
                failure = GenerationDeleteFailure(name, e)
                self.delete_failures.append(failure)
                logger.warning(f"Ignoring cleanup failure: {failure}")

        self._transition(LifecycleState.ACTIVE)
        # Take over every open client session now, no per-session opt-in
        self.claim_clients = True
        logger.info(
            f"Activated {self.version}: removed {len(self.deleted)} stale generation(s)"
            + (f", {len(self.delete_failures)} failed" if self.delete_failures else "")
        )
        return list(self.deleted)

    def retire(self) -> None:
        """Mark this version superseded. In-flight background work is left alone."""
        if self.state == LifecycleState.REDUNDANT:
            return
        self._transition(LifecycleState.REDUNDANT)

    # ── Private methods ──

    def _fail_install(self, url: str, reason: str, cause: Optional[BaseException] = None) -> InstallFetchFailure:
        error = InstallFetchFailure(self.version, url, reason, cause)
        self.install_error = error
        self._transition(LifecycleState.INSTALL_FAILED)
        logger.warning(f"Install of {self.version} abandoned: {error}")
        return error

    def _require(self, expected: LifecycleState, action: str) -> None:
        if self.state != expected:
            raise LifecycleStateError(
                f"cannot {action} version {self.version} from state {self.state.value}"
            )

    def _transition(self, state: LifecycleState) -> None:
        logger.debug(f"Version {self.version}: {self.state.value} → {state.value}")
        self.state = state
        self.history.append(state)
