"""In-memory TTL cache for generated content.

Keys are derived deterministically from the identifying fields of a request
(recipe name + description for images, the ingredient set for suggestions), so
repeated requests for the same logical content share one entry. Expired entries
are treated as misses and evicted on lookup. When the cache is full, the entry
with the fewest hits (oldest first on ties) is evicted.
"""

import hashlib
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Optional, TypeVar

from kitchenpal.utils.logger import logger

V = TypeVar("V")

_WHITESPACE = re.compile(r"\s+")


def _normalize(value: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", (value or "").strip()).lower()


def _digest(*parts: str) -> str:
    # Unit separator keeps ("ab", "c") and ("a", "bc") apart
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


def _slug(value: str, limit: int = 40) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value)[:limit].strip("-")


def image_cache_key(recipe_name: str, description: Optional[str] = None) -> str:
    """Key for a generated image: ``image:<slug>:<sha256(name, description)>``."""
    name = _normalize(recipe_name)
    return f"image:{_slug(name)}:{_digest(name, _normalize(description))}"


def recipe_cache_key(recipe_name: str) -> str:
    name = _normalize(recipe_name)
    return f"recipe:{_slug(name)}:{_digest(name)}"


def ingredients_cache_key(ingredients: Iterable[str], extra: str = "") -> str:
    """Key for recipe suggestions: order and case of ingredients do not matter."""
    items = sorted({_normalize(item) for item in ingredients if _normalize(item)})
    return f"ingredients:{_digest(*items, _normalize(extra))}"


@dataclass
class CacheEntry(Generic[V]):
    value: V
    inserted_at: float
    ttl: float
    hits: int = 0

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


@dataclass
class CacheStats:
    hits: int
    misses: int
    size: int
    hit_rate: float


class ContentCache(Generic[V]):
    """Thread-safe TTL cache bounded by ``max_entries``."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 100,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got: {max_entries}")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.name = name
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            entry.hits += 1
            self._hits += 1
            return entry.value

    def set(self, key: str, value: V, ttl: Optional[float] = None) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict()
            self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(),
                                            ttl=self.ttl_seconds if ttl is None else ttl)

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.expired(self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def cleanup(self) -> int:
        """Remove all expired entries. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Cache '{self.name}' removed {len(expired)} expired entries")
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._entries),
                hit_rate=self._hits / total if total else 0.0,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict(self) -> None:
        # Caller holds the lock. Expired entries go first.
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expired(now)]
        if expired:
            for key in expired:
                del self._entries[key]
            return
        victim = min(self._entries, key=lambda k: (self._entries[k].hits, self._entries[k].inserted_at))
        del self._entries[victim]
