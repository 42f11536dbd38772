"""
Analysis Cache
Maps (entity type, entity id, variant) to a previously computed AnalysisResult.

Entries are stored serialized, so the cache never holds a reference to a live
graph. Expiry is checked lazily on read; expired entries are treated as absent
and dropped. Two backing stores are provided:

- InMemoryCacheBackend: bounded in-process store (oldest entry evicted first)
- FileCacheBackend: one JSON file per key, survives restarts

KeyedLocks is an optional computation-lock layer callers can put around the
cache to get at-most-one concurrent computation per key.
"""
import asyncio
import hashlib
import json
import os
import threading
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from core.schemas import AnalysisResult, CacheEntry


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(entity_type: str, entity_id: str, variant: str) -> str:
    """Build the flat key used by backing stores."""
    return f"{entity_type}|{entity_id}|{variant}"


class CacheBackend(Protocol):
    """Storage used by AnalysisCache."""

    def get(self, key: str) -> Optional[CacheEntry]: ...

    def set(self, key: str, entry: CacheEntry) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...

    def clear(self) -> None: ...


class InMemoryCacheBackend:
    """Thread-safe, size-bounded in-process store."""

    def __init__(self, max_entries: int = 1024):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            # last write wins
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"[InMemoryCacheBackend] Evicted {evicted}")

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries.keys())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class FileCacheBackend:
    """One JSON document per key under a directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self.directory / f"{digest}.json"

    def get(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            entry = CacheEntry.model_validate(raw["entry"])
        except (OSError, ValueError, KeyError, ValidationError) as e:
            logger.warning(f"[FileCacheBackend] Unreadable cache file {path.name}: {e}")
            return None
        if raw.get("key") != key:
            return None
        return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        path = self._path(key)
        payload = json.dumps({"key": key, "entry": entry.model_dump(mode="json")})
        tmp = path.with_suffix(f".{os.getpid()}.{threading.get_ident()}.tmp")
        with self._lock:
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)

    def delete(self, key: str) -> None:
        with self._lock:
            self._path(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        keys = []
        for path in self.directory.glob("*.json"):
            try:
                keys.append(json.loads(path.read_text(encoding="utf-8"))["key"])
            except (OSError, ValueError, KeyError):
                continue
        return keys

    def clear(self) -> None:
        with self._lock:
            for path in self.directory.glob("*.json"):
                path.unlink(missing_ok=True)


class AnalysisCache:
    """TTL cache of serialized analysis results."""

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        default_ttl_hours: float = 24.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.backend = backend if backend is not None else InMemoryCacheBackend()
        self.default_ttl_hours = default_ttl_hours
        self.clock = clock or _utcnow

    def get(self, entity_type: str, entity_id: str, variant: str) -> Optional[AnalysisResult]:
        """Return a fresh copy of the cached result, or None on a miss."""
        key = cache_key(entity_type, entity_id, variant)
        entry = self.backend.get(key)
        if entry is None:
            logger.debug(f"[AnalysisCache] Miss: {key}")
            return None

        if entry.is_expired(self.clock()):
            logger.debug(f"[AnalysisCache] Expired: {key}")
            self.backend.delete(key)
            return None

        try:
            result = AnalysisResult.model_validate_json(entry.value)
        except ValidationError as e:
            logger.warning(f"[AnalysisCache] Dropping undecodable entry {key}: {e}")
            self.backend.delete(key)
            return None

        logger.debug(f"[AnalysisCache] Hit: {key} (expires {entry.expires_at.isoformat()})")
        return result

    def put(
        self,
        entity_type: str,
        entity_id: str,
        variant: str,
        result: AnalysisResult,
        ttl_hours: Optional[float] = None,
    ) -> CacheEntry:
        """Store a completed result."""
        ttl = self.default_ttl_hours if ttl_hours is None else ttl_hours
        if ttl <= 0:
            raise ValueError("ttl_hours must be positive")

        now = self.clock()
        entry = CacheEntry(
            entity_type=entity_type,
            entity_id=entity_id,
            variant=variant,
            value=result.model_dump_json(),
            created_at=now,
            expires_at=now + timedelta(hours=ttl),
        )
        key = cache_key(entity_type, entity_id, variant)
        self.backend.set(key, entry)
        logger.debug(f"[AnalysisCache] Stored {key} for {ttl}h")
        return entry

    def invalidate(self, entity_type: str, entity_id: str, variant: str) -> None:
        self.backend.delete(cache_key(entity_type, entity_id, variant))

    def purge_expired(self) -> int:
        """Drop every expired entry. Optional; reads already ignore them."""
        now = self.clock()
        removed = 0
        for key in self.backend.keys():
            entry = self.backend.get(key)
            if entry is not None and entry.is_expired(now):
                self.backend.delete(key)
                removed += 1
        if removed:
            logger.info(f"[AnalysisCache] Purged {removed} expired entries")
        return removed


class KeyedLocks:
    """One asyncio.Lock per key, released from the table once unused."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


def build_cache_backend(kind: str, max_entries: int = 1024, directory: str = "./cache") -> CacheBackend:
    """Create the backing store named in configuration."""
    if kind == "memory":
        return InMemoryCacheBackend(max_entries=max_entries)
    if kind == "file":
        return FileCacheBackend(directory)
    raise ValueError(f"Unknown cache backend: {kind}")
