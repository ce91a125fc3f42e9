import fnmatch
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from cost_guard.models.schemas import CacheStats
from cost_guard.services.metrics_service import metrics_service

logger = structlog.get_logger(__name__)


class CacheService:
    """In-process cache with per-entry time-to-live.

    Expiry is enforced on every read and by ``cleanup_expired()``; both
    paths use the same clock, so an entry past its deadline is never
    returned whether or not a sweep has run.
    """

    def __init__(
        self,
        name: str = "default",
        default_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.default_ttl = default_ttl
        self._clock = clock
        self._store: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def _is_expired(self, deadline: Optional[float], now: float) -> bool:
        return deadline is not None and deadline <= now

    def _live_entry(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        """Return the entry if present and unexpired, evicting it otherwise"""
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._is_expired(entry[1], self._clock()):
            del self._store[key]
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                self._misses += 1
                metrics_service.record_cache_operation(self.name, "get", "miss")
                return None
            self._hits += 1
            metrics_service.record_cache_operation(self.name, "get", "hit")
            return entry[0]

    def peek(self, key: str) -> Optional[Any]:
        """Get value without touching hit/miss statistics"""
        with self._lock:
            entry = self._live_entry(key)
            return entry[0] if entry else None

    def set(self, key: str, value: Any, expire: Optional[float] = None) -> bool:
        """Set value in cache with optional expiration in seconds"""
        ttl = self.default_ttl if expire is None else expire
        if ttl is not None and ttl <= 0:
            logger.warning("Refusing to cache already-expired value", cache=self.name, key=key)
            return False

        with self._lock:
            deadline = self._clock() + ttl if ttl is not None else None
            self._store[key] = (value, deadline)
        metrics_service.record_cache_operation(self.name, "set", "ok")
        return True

    def replace(self, key: str, value: Any) -> bool:
        """Overwrite a live value, keeping its remaining time-to-live"""
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False
            self._store[key] = (value, entry[1])
            return True

    def delete(self, key: str) -> bool:
        """Delete key from cache"""
        with self._lock:
            return self._store.pop(key, None) is not None

    def keys(self, pattern: str = "*") -> List[str]:
        """Keys of all live entries matching a glob pattern"""
        with self._lock:
            return [key for key in list(self._store) if self._live_entry(key) is not None
                    and fnmatch.fnmatchcase(key, pattern)]

    def flush(self) -> int:
        """Drop every entry; returns how many were held"""
        with self._lock:
            count = len(self._store)
            self._store.clear()
        logger.info("Cache flushed", cache=self.name, keys_removed=count)
        return count

    def cleanup_expired(self) -> int:
        """Sweep expired entries; returns how many were evicted"""
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, deadline) in self._store.items() if self._is_expired(deadline, now)]
            for key in expired:
                del self._store[key]
        if expired:
            logger.debug("Expired cache entries removed", cache=self.name, count=len(expired))
        return len(expired)

    def get_stats(self) -> CacheStats:
        with self._lock:
            now = self._clock()
            live = sum(1 for _, deadline in self._store.values() if not self._is_expired(deadline, now))
            return CacheStats(keys=live, hits=self._hits, misses=self._misses)

    # Specialized cache methods for cost data

    @staticmethod
    def cost_data_key(account_id: str, start_date: Optional[str], end_date: Optional[str]) -> str:
        return f"cost_data:{account_id}:{start_date or 'default'}:{end_date or 'default'}"

    def cache_cost_data(
        self,
        account_id: str,
        start_date: Optional[str],
        end_date: Optional[str],
        data: Any,
        ttl: Optional[float] = None
    ) -> bool:
        """Cache cost data with standardized key format"""
        return self.set(self.cost_data_key(account_id, start_date, end_date), data, expire=ttl)

    def get_cached_cost_data(
        self,
        account_id: str,
        start_date: Optional[str],
        end_date: Optional[str]
    ) -> Optional[Any]:
        """Get cached cost data"""
        return self.get(self.cost_data_key(account_id, start_date, end_date))

