"""
Stream Aggregator
Fans a stream request out to every enabled source, then merges and de-duplicates
"""
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass
from concurrent.futures import ThreadPoolExecutor, wait
import logging
import threading
import time

from ..models.stream import MediaMeta, SessionCredentials, StreamCandidate, StreamRequest, StreamResolution
from ..sources.base import BaseSource
from .event_bus import EventBus, Events

logger = logging.getLogger(__name__)


@dataclass
class SourceHealth:
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_error: str = ""
    last_latency_ms: float = 0.0
    last_attempt_at: float = 0.0
    last_success_at: float = 0.0
    cooldown_until: float = 0.0
    circuit_open: bool = False
    skipped_due_circuit: int = 0


class StreamAggregator:
    """Resolves inbound stream requests across all registered sources"""

    def __init__(self, event_bus: EventBus, metadata=None, reliability: Optional[Dict] = None,
                 clock=time.time):
        self.event_bus = event_bus
        self.metadata = metadata
        self._sources: Dict[str, BaseSource] = {}
        self._order: List[str] = []
        self._enabled: Dict[str, bool] = {}
        self._health: Dict[str, SourceHealth] = {}
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=10, thread_name_prefix="bgstreams-source")
        self._clock = clock

        reliability = reliability or {}
        self._circuit_failure_threshold = int(reliability.get("circuit_failure_threshold", 4))
        self._circuit_cooldown_seconds = float(reliability.get("circuit_cooldown_seconds", 90.0))
        self._aggregate_timeout_seconds = float(reliability.get("aggregate_timeout_seconds", 45.0))

    @classmethod
    def from_settings(cls, settings, event_bus: EventBus, metadata=None) -> "StreamAggregator":
        return cls(event_bus, metadata=metadata, reliability={
            "circuit_failure_threshold": settings.get("source_circuit_failure_threshold", 4),
            "circuit_cooldown_seconds": settings.get("source_circuit_cooldown_seconds", 90.0),
            "aggregate_timeout_seconds": settings.get("aggregate_timeout_seconds", 45.0),
        })

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, source, enabled: bool = True):
        """Register a source; registration order is the dedup priority order"""
        if not isinstance(source, BaseSource):
            raise TypeError(f"Invalid source type for register(): {type(source)}. Expected BaseSource.")
        if not getattr(source, "key", ""):
            raise ValueError("Source must define non-empty 'key'.")
        with self._lock:
            if source.key not in self._sources:
                self._order.append(source.key)
            self._sources[source.key] = source
            self._enabled[source.key] = bool(enabled)
            self._health.setdefault(source.key, SourceHealth())

    def unregister(self, source_key: str):
        with self._lock:
            if source_key in self._sources:
                del self._sources[source_key]
                self._enabled.pop(source_key, None)
                self._health.pop(source_key, None)
                self._order.remove(source_key)

    def enable_source(self, source_key: str, enabled: bool = True):
        with self._lock:
            if source_key in self._enabled:
                self._enabled[source_key] = enabled

    def set_order(self, order: List[str]):
        """Reorder registered sources; unknown keys are ignored, unlisted ones keep their relative order"""
        with self._lock:
            listed = [k for k in order if k in self._sources]
            self._order = listed + [k for k in self._order if k not in listed]

    def get_source(self, source_key: str) -> Optional[BaseSource]:
        with self._lock:
            return self._sources.get(source_key)

    def get_source_keys(self) -> List[str]:
        with self._lock:
            return list(self._order)

    def get_enabled_sources(self) -> List[str]:
        with self._lock:
            return [key for key in self._order if self._enabled.get(key)]

    def get_source_health_snapshot(self) -> Dict[str, Dict]:
        with self._lock:
            now = self._clock()
            out = {}
            for key, h in self._health.items():
                source = self._sources.get(key)
                out[key] = {
                    "name": getattr(source, "name", key),
                    "enabled": bool(self._enabled.get(key)),
                    "attempts": h.attempts,
                    "successes": h.successes,
                    "failures": h.failures,
                    "consecutive_failures": h.consecutive_failures,
                    "last_error": h.last_error,
                    "last_latency_ms": round(h.last_latency_ms, 2),
                    "last_attempt_at": h.last_attempt_at,
                    "last_success_at": h.last_success_at,
                    "circuit_open": h.circuit_open and now < h.cooldown_until,
                    "cooldown_until": h.cooldown_until,
                    "skipped_due_circuit": h.skipped_due_circuit,
                }
            return out

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, content_type: str, content_id: str,
                enabled_sources: Optional[Dict[str, bool]] = None,
                credentials: Optional[Dict[str, SessionCredentials]] = None) -> List[StreamCandidate]:
        """Never raises; every failure path yields a (possibly empty) list"""
        try:
            return self.resolve_detailed(content_type, content_id, enabled_sources, credentials).streams
        except Exception as e:
            logger.error("[Stream] Error resolving %s %s: %s", content_type, content_id, e)
            return []

    def resolve_detailed(self, content_type: str, content_id: str,
                         enabled_sources: Optional[Dict[str, bool]] = None,
                         credentials: Optional[Dict[str, SessionCredentials]] = None) -> StreamResolution:
        logger.info("[Stream] type=%s id=%s", content_type, content_id)
        request = StreamRequest.parse(content_type, content_id)
        if request is None:
            logger.info("[Stream] Malformed request %s/%s", content_type, content_id)
            return StreamResolution()

        meta = self._get_meta(request)
        if meta is None:
            return StreamResolution()

        title_filter = request.title_filter(meta)
        credentials = credentials or {}
        self.event_bus.emit(Events.STREAMS_STARTED, {
            "content_type": request.content_type,
            "imdb_id": request.imdb_id,
            "season": request.season,
            "episode": request.episode,
            "name": meta.name,
        })

        source_warnings: Dict[str, str] = {}
        futures = {}
        with self._lock:
            keys = [key for key in self._order if self._is_requested(key, enabled_sources)]
            for key in keys:
                source = self._sources[key]
                creds = credentials.get(key)
                if not source.has_credentials(creds):
                    source_warnings[key] = "Missing session credentials"
                    continue
                blocked_reason = self._source_block_reason(key)
                if blocked_reason:
                    source_warnings[key] = blocked_reason
                    continue
                future = self._executor.submit(self._safe_find, source, creds, request, meta, title_filter)
                futures[future] = key

        per_source: Dict[str, List[StreamCandidate]] = {}
        if futures:
            # No cancellation: stragglers finish on their own and their results are dropped.
            done, pending = wait(futures, timeout=self._aggregate_timeout_seconds)
            for future in done:
                key = futures[future]
                streams, warning, latency_ms = future.result()
                per_source[key] = streams
                if warning:
                    source_warnings[key] = warning
                self._record_source_outcome(key, ok=not warning, error_message=warning or "", latency_ms=latency_ms)
                self.event_bus.emit(Events.SOURCE_COMPLETED, {
                    "source": key,
                    "count": len(streams),
                    "warning": warning or "",
                })
            for future in pending:
                key = futures[future]
                message = f"{key} timed out after {int(self._aggregate_timeout_seconds)}s; results were skipped."
                source_warnings[key] = message
                self._record_source_outcome(key, ok=False, error_message=message, latency_ms=0.0)

        merged = self._deduplicate([per_source[key] for key in keys if key in per_source])
        logger.info("[Stream] Found %d streams (%s)", len(merged),
                    ", ".join(f"{len(per_source.get(k, []))} {k}" for k in keys))
        self.event_bus.emit(Events.STREAMS_COMPLETED, {
            "count": len(merged),
            "source_warnings": source_warnings,
            "source_health": self.get_source_health_snapshot(),
        })
        return StreamResolution(streams=merged, source_warnings=source_warnings)

    def _is_requested(self, key: str, enabled_sources: Optional[Dict[str, bool]]) -> bool:
        if enabled_sources is None:
            return bool(self._enabled.get(key))
        return bool(enabled_sources.get(key))

    def _get_meta(self, request: StreamRequest) -> Optional[MediaMeta]:
        if self.metadata is None:
            logger.error("[Stream] No metadata collaborator configured")
            return None
        try:
            return self.metadata.get_meta(request.content_type, request.imdb_id)
        except Exception as e:
            logger.error("[Stream] Metadata lookup failed for %s: %s", request.imdb_id, e)
            return None

    def _safe_find(self, source: BaseSource, credentials, request: StreamRequest, meta: MediaMeta,
                   title_filter) -> Tuple[List[StreamCandidate], Optional[str], float]:
        """Returns: streams, warning, latency_ms"""
        start = time.perf_counter()
        try:
            streams = source.find_streams(credentials, request, meta, title_filter)
            warning = source.call_error() or None
            return list(streams or []), warning, (time.perf_counter() - start) * 1000.0
        except Exception as e:
            logger.error("[Stream] %s error: %s", source.name, e)
            return [], str(e) or type(e).__name__, (time.perf_counter() - start) * 1000.0

    def _source_block_reason(self, source_key: str) -> str:
        h = self._health.get(source_key)
        if not h:
            return ""
        now = self._clock()
        if h.circuit_open and now < h.cooldown_until:
            h.skipped_due_circuit += 1
            remain = int(max(1, h.cooldown_until - now))
            return f"Circuit open after failures; retrying automatically in {remain}s."
        if h.circuit_open and now >= h.cooldown_until:
            # Half-open attempt allowed now.
            h.circuit_open = False
            h.consecutive_failures = 0
            h.cooldown_until = 0.0
        return ""

    def _record_source_outcome(self, source_key: str, ok: bool, error_message: str, latency_ms: float):
        with self._lock:
            h = self._health.setdefault(source_key, SourceHealth())
            h.attempts += 1
            h.last_attempt_at = self._clock()
            h.last_latency_ms = float(latency_ms or 0.0)
            if ok:
                h.successes += 1
                h.consecutive_failures = 0
                h.last_error = ""
                h.last_success_at = h.last_attempt_at
                h.circuit_open = False
                h.cooldown_until = 0.0
            else:
                h.failures += 1
                h.consecutive_failures += 1
                h.last_error = error_message
                if h.consecutive_failures >= self._circuit_failure_threshold:
                    h.circuit_open = True
                    h.cooldown_until = self._clock() + self._circuit_cooldown_seconds

    @staticmethod
    def _deduplicate(stream_lists: List[List[StreamCandidate]]) -> List[StreamCandidate]:
        """First-seen wins, walking sources in configured order"""
        seen = set()
        unique = []
        for streams in stream_lists:
            for stream in streams:
                if stream.info_hash in seen:
                    continue
                seen.add(stream.info_hash)
                unique.append(stream)
        return unique

    def shutdown(self):
        """Shutdown the executor"""
        self._executor.shutdown(wait=False)
