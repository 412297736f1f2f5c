"""
Offline Shell Cache
Version lifecycle, request interception and the push hook, wired
together by OfflineRuntime.
"""

from .errors import (
    OfflineCacheError,
    FetchError,
    InstallFetchFailure,
    MissFetchFailure,
    GenerationDeleteFailure,
    LifecycleStateError,
)
from .config import OfflineConfig, load_config
from .scope import InterceptionScope
from .origin import OriginClient
from .lifecycle import LifecycleController, LifecycleState
from .interceptor import InterceptionPolicy
from .push import PushHandler, Notification, DEFAULT_NOTIFICATION_TEXT
from .runtime import OfflineRuntime

__all__ = [
    "OfflineCacheError",
    "FetchError",
    "InstallFetchFailure",
    "MissFetchFailure",
    "GenerationDeleteFailure",
    "LifecycleStateError",
    "OfflineConfig",
    "load_config",
    "InterceptionScope",
    "OriginClient",
    "LifecycleController",
    "LifecycleState",
    "InterceptionPolicy",
    "PushHandler",
    "Notification",
    "DEFAULT_NOTIFICATION_TEXT",
    "OfflineRuntime",
]
