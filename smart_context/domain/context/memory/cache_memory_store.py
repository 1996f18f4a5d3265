from typing import Any, Callable, Dict, Iterable, Optional
from collections import OrderedDict
import asyncio
import hashlib
import json
import time


class CacheMemoryStore:
    """In-memory bounded cache with TTL support"""

    def __init__(self, ttl_seconds: float = 300, max_entries: int = 128, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.cache: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._clock = clock
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @staticmethod
    def make_key(
        task: str,
        current_file: Optional[str],
        token_budget: int,
        progressive_level: int,
        min_relevance_score: float,
        conversation_id: Optional[str],
        file_paths: Iterable[str],
        viewed_files: Iterable[str] = (),
    ) -> str:
        """Stable key for a context request"""

        payload = json.dumps(
            [task, current_file, token_budget, progressive_level, min_relevance_score,
             conversation_id, sorted(set(file_paths)), sorted(set(viewed_files))],
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Set a value in cache with TTL"""

        async with self._lock:
            expires_at = self._clock() + (self.ttl_seconds if ttl is None else ttl)
            self.cache.pop(key, None)
            self.cache[key] = {
                "value": value,
                "expires_at": expires_at
            }

            # Evict oldest when full
            while len(self.cache) > self.max_entries:
                self.cache.popitem(last=False)
                self.evictions += 1

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired"""

        async with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                self.misses += 1
                return None

            # Check if expired
            if self._clock() >= entry["expires_at"]:
                del self.cache[key]
                self.misses += 1
                return None

            self.hits += 1
            return entry["value"]

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self.cache.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self.cache.clear()

    async def clear_expired(self) -> int:
        """Clear expired entries and return count"""

        async with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self.cache.items() if now >= entry["expires_at"]]
            for key in expired_keys:
                del self.cache[key]
            return len(expired_keys)

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        async with self._lock:
            now = self._clock()
            active_count = sum(1 for entry in self.cache.values() if now < entry["expires_at"])
            return {
                "total_keys": len(self.cache),
                "active_keys": active_count,
                "expired_keys": len(self.cache) - active_count,
                "max_entries": self.max_entries,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }
