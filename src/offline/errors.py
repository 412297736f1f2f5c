"""Error types raised by the offline cache core."""

from typing import Optional


class OfflineCacheError(Exception):
    """Base class for offline cache errors."""


class FetchError(OfflineCacheError):
    """Origin produced no response at all (connection refused, timeout, bad URL)."""

    def __init__(self, url: str, reason: str = "network error", cause: Optional[BaseException] = None):
        self.url = url
        self.reason = reason
        self.cause = cause
        super().__init__(f"fetch failed for {url}: {reason}")


class InstallFetchFailure(FetchError):
    """A precache URL could not be fetched with status 200; the install is abandoned."""

    def __init__(self, version: str, url: str, reason: str, cause: Optional[BaseException] = None):
        self.version = version
        super().__init__(url, reason, cause)


class MissFetchFailure(FetchError):
    """A cache-miss fetch failed and no root document was cached to fall back on."""


class GenerationDeleteFailure(OfflineCacheError):
    """A stale generation could not be deleted during activation. Recorded, never raised."""

    def __init__(self, name: str, cause: BaseException):
        self.name = name
        self.cause = cause
        super().__init__(f"could not delete generation {name}: {cause}")


class LifecycleStateError(OfflineCacheError):
    """A lifecycle handler was invoked from a state it cannot run in."""
