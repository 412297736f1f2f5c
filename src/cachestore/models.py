"""
Cache Store Models
Request keys and stored response payloads shared by the store and the policy.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Dict, Any

# Response types as reported by the fetch layer. "error" marks a response
# object that stands for a failed request rather than an origin reply.
RESPONSE_TYPES = ("basic", "cors", "default", "error", "opaque", "opaqueredirect")


@dataclass(frozen=True)
class RequestDescriptor:
    """Method + absolute URL. The only thing an entry is keyed on."""
    url: str
    method: str = "GET"

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())


@dataclass
class CachedResponse:
    """A response as seen by callers, whether it came from origin or the store."""
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""
    response_type: str = "basic"

    @property
    def content_type(self) -> str:
        for name, value in self.headers.items():
            if name.lower() == "content-type":
                return value
        return ""

    @property
    def cacheable(self) -> bool:
        """Only a plain 200 that is not an error-typed response may be stored."""
        return self.status == 200 and self.response_type != "error"

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)

    def copy(self) -> "CachedResponse":
        return CachedResponse(
            status=self.status,
            body=self.body,
            headers=dict(self.headers),
            url=self.url,
            response_type=self.response_type,
        )


@dataclass
class CacheEntry:
    """One stored response inside a generation."""
    generation: str
    request: RequestDescriptor
    response: CachedResponse
    stored_at: float = field(default_factory=time.time)

    @property
    def age_seconds(self) -> int:
        return max(0, int(time.time() - self.stored_at))
