import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from config import get_settings


logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: float
    last_accessed_at: float
    inserted: int


class LocalCache:
    """In-process LRU cache with per-entry expiry.

    A daemon thread sweeps expired entries every ``cleanup_interval_seconds``;
    pass ``None`` or ``0`` to disable it (tests drive ``cleanup()`` by hand).
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        default_ttl_seconds: Optional[float] = None,
        cleanup_interval_seconds: Optional[float] = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.max_size = max_size if max_size is not None else settings.metrics_cache_max_size
        self.default_ttl_seconds = (
            default_ttl_seconds
            if default_ttl_seconds is not None
            else settings.metrics_cache_ttl_secs
        )
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}
        self._counter = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if cleanup_interval_seconds:
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                args=(cleanup_interval_seconds,),
                name="local-cache-sweeper",
                daemon=True,
            )
            self._sweeper.start()

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            removed = self.cleanup()
            if removed:
                logger.debug(f"local_cache_sweep: removed={removed}")

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            now = self._clock()
            if now >= entry.expires_at:
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None
            entry.last_accessed_at = now
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_lru()
            now = self._clock()
            self._counter += 1
            self._entries[key] = _Entry(
                value=value,
                expires_at=now + ttl,
                last_accessed_at=now,
                inserted=self._counter,
            )

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        victim = min(
            self._entries,
            key=lambda k: (
                self._entries[k].last_accessed_at,
                self._entries[k].inserted,
            ),
        )
        del self._entries[victim]
        self._evictions += 1

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._expirations += 1
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)
            return len(expired)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size

    def get_stats(self) -> dict[str, float]:
        with self._lock:
            total = self._hits + self._misses
            hit_rate = round(self._hits / total * 100, 2) if total else 0
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": hit_rate,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expirations = 0

    def destroy(self) -> None:
        self._stop.set()
        if self._sweeper is not None and self._sweeper.is_alive():
            self._sweeper.join(timeout=1)
        self._sweeper = None
        self.clear()


_global_cache: Optional[LocalCache] = None
_global_lock = threading.Lock()


def get_global_metrics_cache() -> LocalCache:
    global _global_cache
    with _global_lock:
        if _global_cache is None:
            _global_cache = LocalCache()
            logger.info(
                f"local_cache_init: max_size={_global_cache.max_size} "
                f"ttl={_global_cache.default_ttl_seconds}"
            )
        return _global_cache


def reset_global_metrics_cache() -> None:
    global _global_cache
    with _global_lock:
        if _global_cache is not None:
            _global_cache.destroy()
        _global_cache = None
