"""
TTL Cache
Thread-safe keyed memoization with per-entry expiry and a background sweeper
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from collections import OrderedDict
import logging
import threading
import time

logger = logging.getLogger(__name__)


class TTLCache:
    """Keyed store; entries expire a fixed number of seconds after insertion"""

    def __init__(self, name: str, ttl_seconds: float, max_size: Optional[int] = None,
                 clock: Callable[[], float] = time.time):
        self.name = name
        self.ttl_seconds = float(ttl_seconds)
        self.max_size = max_size
        self._clock = clock
        self._cache: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.RLock()

    def _expired(self, inserted_at: float, now: float) -> bool:
        return now - inserted_at > self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired (expired entries are evicted)"""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            inserted_at, value = entry
            if self._expired(inserted_at, self._clock()):
                del self._cache[key]
                return None
            return value

    def set(self, key: str, value: Any):
        """Store a value, overwriting any existing entry"""
        with self._lock:
            self._cache[key] = (self._clock(), value)
            self._cache.move_to_end(key)
            if self.max_size:
                while len(self._cache) > self.max_size:
                    self._cache.popitem(last=False)

    def sweep(self) -> int:
        """Evict every expired entry; returns the number removed"""
        with self._lock:
            now = self._clock()
            expired = [k for k, (inserted_at, _) in self._cache.items() if self._expired(inserted_at, now)]
            for key in expired:
                del self._cache[key]
            remaining = len(self._cache)
        if expired:
            logger.info("[Cache:%s] Cleaned %d expired entries, %d remaining", self.name, len(expired), remaining)
        return len(expired)

    def clear(self):
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    @property
    def size(self) -> int:
        return len(self)


class CacheSweeper:
    """Background thread that periodically sweeps a set of caches"""

    def __init__(self, caches: Iterable[TTLCache], interval_seconds: float = 1800.0):
        self.caches: List[TTLCache] = list(caches)
        self.interval_seconds = max(0.01, float(interval_seconds))
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def sweep_once(self) -> int:
        removed = 0
        for cache in self.caches:
            try:
                removed += cache.sweep()
            except Exception as e:
                logger.error("Cache sweep failed for %s: %s", getattr(cache, "name", cache), e)
        return removed

    def _run(self):
        while not self._stop.wait(self.interval_seconds):
            self.sweep_once()

    def start(self):
        with self._lock:
            if self.is_running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="bgstreams-cache-sweeper", daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 2.0):
        with self._lock:
            self._stop.set()
            thread = self._thread
            self._thread = None
        if thread is not None:
            thread.join(timeout=timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


@dataclass
class StreamCaches:
    """The three cache instances shared by sources"""
    search: TTLCache
    containers: TTLCache
    streams: TTLCache

    @classmethod
    def create(cls, search_ttl: float = 3600.0, container_ttl: float = 86400.0,
               stream_ttl: float = 7200.0, clock: Callable[[], float] = time.time) -> "StreamCaches":
        return cls(
            search=TTLCache("search", search_ttl, clock=clock),
            containers=TTLCache("containers", container_ttl, clock=clock),
            streams=TTLCache("streams", stream_ttl, clock=clock),
        )

    @classmethod
    def from_settings(cls, settings) -> "StreamCaches":
        return cls.create(
            search_ttl=float(settings.get("search_cache_ttl_seconds", 3600.0) or 3600.0),
            container_ttl=float(settings.get("container_cache_ttl_seconds", 86400.0) or 86400.0),
            stream_ttl=float(settings.get("stream_cache_ttl_seconds", 7200.0) or 7200.0),
        )

    def all(self) -> List[TTLCache]:
        return [self.search, self.containers, self.streams]

    def stats(self) -> Dict[str, int]:
        return {cache.name: cache.size for cache in self.all()}
