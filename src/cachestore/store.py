#!/usr/bin/env python3
"""
Offline Cache Store
Named generations of request-addressed responses, in memory or in SQLite.

Implements:
- open(name) → Generation (created if missing)
- Generation.get(request) → CacheEntry | None
- Generation.put(request, response) → bool (only status 200 is ever written)
- list_generations() → set of names
- delete(name) → bool
- match(request, names) → first entry found across generations
- get_stats() → {hits, misses, writes, refused, deletions, generations, entries}
"""

import json
import logging
import os
import sqlite3
import threading
import time
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable, Set

from cachestore.key_generator import CacheKeyGenerator
from cachestore.models import RequestDescriptor, CachedResponse, CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.path.expanduser("~/.studentstore/offline/cache.db")


class Generation:
    """
    Handle on one named generation.

    Holding a handle does not keep the generation alive: if it is deleted
    and a later put() arrives through an old handle, the generation is
    recreated. Writers bound to a superseded version rely on this.
    """

    def __init__(self, store: "CacheStore", name: str):
        self.store = store
        self.name = name

    def get(self, request: RequestDescriptor) -> Optional[CacheEntry]:
        return self.store.get(self.name, request)

    def put(self, request: RequestDescriptor, response: CachedResponse) -> bool:
        return self.store.put(self.name, request, response)

    def keys(self) -> List[RequestDescriptor]:
        return self.store.keys(self.name)

    def __len__(self) -> int:
        return len(self.keys())

    def __repr__(self) -> str:
        return f"Generation({self.name!r})"


class CacheStore:
    """
    Base store. Subclasses provide the storage primitives
    (_create, _exists, _names, _drop, _read, _write, _list_keys);
    the write discipline and the counters live here.

    Every write is a full-entry replace, so concurrent writers to the same
    key need no coordination: the last one wins.
    """

    def __init__(self):
        self._stats_lock = threading.Lock()
        self.stats = {
            "hits": 0,
            "misses": 0,
            "writes": 0,
            "refused": 0,
            "deletions": 0,
            "start_time": time.time(),
        }

    # ── Public interface ──

    def open(self, name: str) -> Generation:
        """Open a generation by name, creating it if it does not exist yet."""
        self._create(name)
        return Generation(self, name)

    def has(self, name: str) -> bool:
        """True if a generation with this name exists."""
        return self._exists(name)

    def list_generations(self) -> Set[str]:
        """Names of every generation currently present."""
        return set(self._names())

    def delete(self, name: str) -> bool:
        """Delete a generation and every entry in it. False if it was absent."""
        removed = self._drop(name)
        if removed:
            self._count("deletions")
            logger.info(f"Deleted cache generation {name}")
        return removed

    def get(self, name: str, request: RequestDescriptor) -> Optional[CacheEntry]:
        """
        Read one entry from a generation.

        Args:
            name: Generation to read from
            request: Method + absolute URL of the entry

        Returns:
            The stored entry, or None on a miss
        """
        key = CacheKeyGenerator.generate_cache_key(request)
        entry = self._read(name, key)
        if entry is None:
            self._count("misses")
            return None
        self._count("hits")
        return entry

    def put(self, name: str, request: RequestDescriptor, response: CachedResponse) -> bool:
        """
        Store a copy of a response, replacing any entry under the same key.

        The generation is recreated if it was deleted in the meantime.

        Returns:
            True if written, False if the response is not cacheable
        """
        if not response.cacheable:
            # Only successful responses are ever written
            self._count("refused")
            logger.debug(
                f"Skipping cache write for {request.url} "
                f"(status={response.status}, type={response.response_type})"
            )
            return False

        key = CacheKeyGenerator.generate_cache_key(request)
        entry = CacheEntry(generation=name, request=request, response=response.copy())
        self._create(name)
        self._write(name, key, entry)
        self._count("writes")
        logger.debug(f"Cached {request.method} {request.url} in {name} ({len(response.body)} bytes)")
        return True

    def keys(self, name: str) -> List[RequestDescriptor]:
        """Request descriptors of every entry in a generation."""
        return self._list_keys(name)

    def match(self, request: RequestDescriptor, names: Optional[Iterable[str]] = None) -> Optional[CacheEntry]:
        """
        Look a request up across generations, first match wins.

        Args:
            request: Request to look up
            names: Generations to search, in order (default: all, in creation order)
        """
        search = list(names) if names is not None else self._names()
        for name in search:
            if not self._exists(name):
                continue
            entry = self.get(name, request)
            if entry is not None:
                return entry
        return None

    def get_stats(self) -> Dict[str, Any]:
        """Lookup/write counters plus current generation and entry totals."""
        names = self._names()
        with self._stats_lock:
            stats = dict(self.stats)
        lookups = stats["hits"] + stats["misses"]
        hit_rate = (stats["hits"] / lookups * 100) if lookups > 0 else 0
        return {
            "hits": stats["hits"],
            "misses": stats["misses"],
            "hit_rate_percent": round(hit_rate, 1),
            "writes": stats["writes"],
            "refused": stats["refused"],
            "deletions": stats["deletions"],
            "generations": len(names),
            "entries": sum(len(self._list_keys(n)) for n in names),
            "uptime_seconds": int(time.time() - stats["start_time"]),
        }

    def print_report(self):
        stats = self.get_stats()

        print("\n" + "=" * 60)
        print("OFFLINE CACHE STORE REPORT")
        print("=" * 60)
        print(f"Generations: {', '.join(sorted(self._names())) or '(none)'}")
        print(f"Entries: {stats['entries']}")
        print(f"Lookups: {stats['hits']} hits / {stats['misses']} misses ({stats['hit_rate_percent']}%)")
        print(f"Writes: {stats['writes']} | Refused: {stats['refused']} | Deleted generations: {stats['deletions']}")
        print("=" * 60 + "\n")

    def close(self):
        pass

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self.stats[name] += 1

    # ── Storage primitives ──

    def _create(self, name: str) -> None:
        raise NotImplementedError

    def _exists(self, name: str) -> bool:
        raise NotImplementedError

    def _names(self) -> List[str]:
        raise NotImplementedError

    def _drop(self, name: str) -> bool:
        raise NotImplementedError

    def _read(self, name: str, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def _write(self, name: str, key: str, entry: CacheEntry) -> None:
        raise NotImplementedError

    def _list_keys(self, name: str) -> List[RequestDescriptor]:
        raise NotImplementedError


class MemoryCacheStore(CacheStore):
    """Process-local store. Entries are replaced whole, never edited in place."""

    def __init__(self):
        super().__init__()
        self._generations: Dict[str, Dict[str, CacheEntry]] = {}

    def _create(self, name: str) -> None:
        self._generations.setdefault(name, {})

    def _exists(self, name: str) -> bool:
        return name in self._generations

    def _names(self) -> List[str]:
        return list(self._generations)

    def _drop(self, name: str) -> bool:
        return self._generations.pop(name, None) is not None

    def _read(self, name: str, key: str) -> Optional[CacheEntry]:
        return self._generations.get(name, {}).get(key)

    def _write(self, name: str, key: str, entry: CacheEntry) -> None:
        self._generations.setdefault(name, {})[key] = entry

    def _list_keys(self, name: str) -> List[RequestDescriptor]:
        return [e.request for e in list(self._generations.get(name, {}).values())]


SCHEMA = """
CREATE TABLE IF NOT EXISTS generations (
    name TEXT PRIMARY KEY,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS cache_entries (
    generation TEXT NOT NULL,
    cache_key TEXT NOT NULL,
    method TEXT NOT NULL,
    url TEXT NOT NULL,
    status INTEGER NOT NULL,
    headers TEXT NOT NULL DEFAULT '{}',
    body BLOB NOT NULL,
    response_type TEXT NOT NULL DEFAULT 'basic',
    stored_at REAL NOT NULL,
    PRIMARY KEY (generation, cache_key)
);

CREATE INDEX IF NOT EXISTS idx_entries_generation ON cache_entries(generation);
"""


class SqliteCacheStore(CacheStore):
    """
    SQLite-backed store: the process's local, persistent cache.

    Design principles:
    - INSERT OR REPLACE: every write replaces the whole entry
    - Generation delete removes its rows in one transaction
    - One connection shared across threads, guarded only for sqlite3's sake
    """

    def __init__(self, db_path: str = None):
        super().__init__()
        if db_path is None:
            db_path = DEFAULT_DB_PATH

        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        # check_same_thread=False: background revalidation writes from worker threads
        self.conn = sqlite3.connect(db_path, check_same_thread=False, timeout=10.0)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()

        with self._lock:
            self.conn.executescript(SCHEMA)
            self.conn.commit()

        logger.info(f"SqliteCacheStore initialized at {db_path}")

    def _create(self, name: str) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT OR IGNORE INTO generations (name, created_at) VALUES (?, ?)",
                (name, time.time()),
            )
            self.conn.commit()

    def _exists(self, name: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM generations WHERE name = ?", (name,)
            ).fetchone()
        return row is not None

    def _names(self) -> List[str]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT name FROM generations ORDER BY created_at, name"
            ).fetchall()
        return [row["name"] for row in rows]

    def _drop(self, name: str) -> bool:
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM cache_entries WHERE generation = ?", (name,))
            cursor.execute("DELETE FROM generations WHERE name = ?", (name,))
            removed = cursor.rowcount > 0
            self.conn.commit()
        return removed

    def _read(self, name: str, key: str) -> Optional[CacheEntry]:
        with self._lock:
            row = self.conn.execute(
                """
                SELECT method, url, status, headers, body, response_type, stored_at
                FROM cache_entries
                WHERE generation = ? AND cache_key = ?
                LIMIT 1
                """,
                (name, key),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_entry(name, row)

    def _write(self, name: str, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO cache_entries
                (generation, cache_key, method, url, status, headers, body, response_type, stored_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    key,
                    entry.request.method,
                    entry.request.url,
                    entry.response.status,
                    json.dumps(entry.response.headers),
                    sqlite3.Binary(entry.response.body),
                    entry.response.response_type,
                    entry.stored_at,
                ),
            )
            self.conn.commit()

    def _list_keys(self, name: str) -> List[RequestDescriptor]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT method, url FROM cache_entries WHERE generation = ? ORDER BY stored_at",
                (name,),
            ).fetchall()
        return [RequestDescriptor(url=row["url"], method=row["method"]) for row in rows]

    @staticmethod
    def _row_to_entry(name: str, row: sqlite3.Row) -> CacheEntry:
        request = RequestDescriptor(url=row["url"], method=row["method"])
        response = CachedResponse(
            status=row["status"],
            body=bytes(row["body"]),
            headers=json.loads(row["headers"] or "{}"),
            url=row["url"],
            response_type=row["response_type"],
        )
        return CacheEntry(generation=name, request=request, response=response, stored_at=row["stored_at"])

    def close(self):
        if self.conn:
            self.conn.close()
            logger.info("SqliteCacheStore closed")


if __name__ == "__main__":
    store = SqliteCacheStore("/tmp/offline_cache_test.db")
    keys = CacheKeyGenerator("http://localhost:3000")

    runtime = store.open("studentstore-runtime")
    runtime.put(
        keys.descriptor("/api/products"),
        CachedResponse(status=200, body=b'{"items":[]}', headers={"Content-Type": "application/json"}),
    )

    entry = runtime.get(keys.descriptor("/api/products"))
    if entry:
        print(f"Cache hit: {entry.response.text()} (age {entry.age_seconds}s)")
    else:
        print("Cache miss")

    store.print_report()
    store.close()
