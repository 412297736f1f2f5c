#!/usr/bin/env python3
"""
Offline Runtime — Host Adapter

Binds the lifecycle and interception handlers to whatever sits in front
of the network (an HTTP middleware, a local proxy, a test harness):

  deploy(version, manifest) → install → activate → claim clients
  fetch(request)            → active version's policy, or origin if none
  push(payload)             → notification hook

A failed deployment is reported on the returned controller and leaves the
version that is already serving untouched.
"""

import logging
from typing import Optional, Dict, Iterable, Union, Callable, Any, List

from cachestore.key_generator import CacheKeyGenerator
from cachestore.models import RequestDescriptor, CachedResponse
from cachestore.store import CacheStore, SqliteCacheStore
from offline.config import OfflineConfig, DEFAULT_PRECACHE_MANIFEST
from offline.interceptor import InterceptionPolicy
from offline.lifecycle import LifecycleController, LifecycleState
from offline.observability import DecisionRecord
from offline.origin import OriginClient
from offline.push import PushHandler, Notification
from offline.scope import InterceptionScope

logger = logging.getLogger(__name__)


class OfflineRuntime:
    """
    Owns the store, the origin client and the currently active version.

    1. deploy() installs a version; any fetch failure → INSTALL_FAILED, nothing adopted
    2. A successful install asks to skip waiting → activated right away
    3. Activation garbage-collects old generations and retires the previous version
    4. Every connected client is claimed by the new version immediately
    """

    def __init__(
        self,
        store: CacheStore,
        origin,
        origin_url: str,
        app_name: str = "StudentStore",
        cache_prefix: str = "studentstore",
        bypass_paths: Iterable[str] = (),
        revalidate_workers: int = 4,
        notification_icon: str = "/web-app-manifest-192x192.png",
        notification_badge: str = "/favicon-96x96.png",
        show_notification: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
        on_decision: Optional[Callable[[DecisionRecord], None]] = None,
    ):
        self.store = store
        self.origin = origin
        self.keys = CacheKeyGenerator(origin_url)
        self.scope = InterceptionScope(origin_url, bypass_paths)
        self.cache_prefix = cache_prefix
        self.revalidate_workers = revalidate_workers
        self.on_decision = on_decision
        self.push_handler = PushHandler(
            app_name=app_name,
            icon=notification_icon,
            badge=notification_badge,
            show_notification=show_notification,
        )

        self.active: Optional[LifecycleController] = None
        self.waiting: Optional[LifecycleController] = None
        self.policy: Optional[InterceptionPolicy] = None
        self.retired: List[InterceptionPolicy] = []
        # client id → version controlling it (None = uncontrolled)
        self.clients: Dict[str, Optional[str]] = {}

    @classmethod
    def from_config(
        cls,
        config: OfflineConfig,
        show_notification: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
    ) -> "OfflineRuntime":
        """Build a runtime on a SQLite store and a requests-backed origin client."""
        return cls(
            store=SqliteCacheStore(str(config.db_path)),
            origin=OriginClient(timeout=config.fetch_timeout_sec),
            origin_url=config.origin,
            app_name=config.app_name,
            cache_prefix=config.cache_prefix,
            bypass_paths=config.bypass_paths,
            revalidate_workers=config.revalidate_workers,
            notification_icon=config.notification.icon,
            notification_badge=config.notification.badge,
            show_notification=show_notification,
        )

    def deploy(self, version: str, manifest: Iterable[str] = DEFAULT_PRECACHE_MANIFEST) -> LifecycleController:
        """Install a version and, if it asks to skip waiting, activate it."""
        controller = LifecycleController(
            version, manifest, self.store, self.origin, self.keys, cache_prefix=self.cache_prefix
        )
        try:
            controller.on_install()
        except Exception as e:
            logger.warning(
                "Deployment of %s not adopted (%s); still serving %s",
                version, e, self.active.version if self.active else "nothing",
            )
            return controller

        if controller.skip_waiting:
            self._activate(controller)
        else:
            self.waiting = controller
        return controller

    def activate_waiting(self) -> Optional[LifecycleController]:
        """Activate an installed version that did not skip waiting."""
        controller, self.waiting = self.waiting, None
        if controller is not None:
            self._activate(controller)
        return controller

    def connect(self, client_id: str) -> Optional[str]:
        """Register a client session. Returns the version now controlling it."""
        version = self.active.version if self.active else None
        self.clients[client_id] = version
        return version

    def disconnect(self, client_id: str) -> bool:
        """Forget a client session. False if it was never connected."""
        if client_id not in self.clients:
            return False
        del self.clients[client_id]
        return True

    def controller_for(self, client_id: str) -> Optional[str]:
        """Version controlling a client, None if uncontrolled or unknown."""
        return self.clients.get(client_id)

    def fetch(self, request: Union[RequestDescriptor, str], client_id: Optional[str] = None) -> CachedResponse:
        """
        Route one request through the active version.

        Args:
            request: Descriptor, or a URL resolved against the origin as a GET
            client_id: Registered on first sight so a later deploy claims it

        Returns:
            The policy's response, or the origin's when no version is active
        """
        if isinstance(request, str):
            request = self.keys.descriptor(request)
        if client_id is not None and client_id not in self.clients:
            self.connect(client_id)

        if self.policy is None:
            return self.origin.fetch(request)
        return self.policy.intercept(request)

    def push(self, payload: Union[str, bytes, None] = None) -> Notification:
        """Hand a push payload to the notification hook."""
        return self.push_handler.on_push(payload)

    def get_status(self) -> str:
        """Human-readable summary of the active version, generations and traffic."""
        lines = ["Offline Cache Status:"]
        if self.active:
            lines.append(f"  Active version: {self.active.version} ({self.active.state.value})")
        else:
            lines.append("  Active version: none (pass-through)")
        lines.append(f"  Generations: {', '.join(sorted(self.store.list_generations())) or 'none'}")
        lines.append(f"  Clients: {len(self.clients)}")
        if self.retired:
            lines.append(f"  Retired versions still refreshing: {len(self.retired)}")
        if self.policy:
            stats = self.policy.get_stats()
            lines.append(
                f"  Requests: {stats['hits']} hits, {stats['misses']} misses, "
                f"{stats['passthrough']} pass-through, {stats['fallbacks']} offline fallbacks"
            )
        return "\n".join(lines)

    def close(self):
        """Wait for background refreshes, then release the origin client and the store."""
        for policy in self.retired + ([self.policy] if self.policy else []):
            policy.close(wait=True)
        self.retired = []
        close_origin = getattr(self.origin, "close", None)
        if close_origin is not None:
            close_origin()
        self.store.close()

    # ── Private methods ──

    def _activate(self, controller: LifecycleController) -> None:
        controller.on_activate()
        policy = InterceptionPolicy(
            controller,
            self.store,
            self.origin,
            self.scope,
            max_workers=self.revalidate_workers,
            on_decision=self.on_decision,
        )

        previous, previous_policy = self.active, self.policy
        self.active, self.policy = controller, policy
        if previous is not None and previous.state == LifecycleState.ACTIVE:
            previous.retire()
        if previous_policy is not None:
            # Queued and running refreshes of the old version finish on their own
            previous_policy.close(wait=False)
            self.retired.append(previous_policy)
        self._prune_retired()

        if controller.claim_clients:
            for client_id in self.clients:
                self.clients[client_id] = controller.version
        logger.info(f"Version {controller.version} now controls {len(self.clients)} client(s)")

    def _prune_retired(self) -> None:
        # A retired policy is only kept while it still has refreshes in flight
        self.retired = [policy for policy in self.retired if not policy.drain(timeout=0)]
