"""
Offline Cache Store
Versioned generations of request-addressed responses.
"""

from .models import RequestDescriptor, CachedResponse, CacheEntry
from .key_generator import CacheKeyGenerator
from .store import CacheStore, Generation, MemoryCacheStore, SqliteCacheStore

__all__ = [
    'RequestDescriptor',
    'CachedResponse',
    'CacheEntry',
    'CacheKeyGenerator',
    'CacheStore',
    'Generation',
    'MemoryCacheStore',
    'SqliteCacheStore',
]
