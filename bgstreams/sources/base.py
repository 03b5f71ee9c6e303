"""
Source SDK
Base adapter contract for Bulgarian tracker sources.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
import logging
import threading
import time

import requests

from ..core.title_matcher import find_episode_file_idx, is_season_pack, matches_filter
from ..core.ttl_cache import StreamCaches
from ..models.search_result import SearchResult, sort_results
from ..models.stream import (
    UNKNOWN_SEEDERS,
    ContainerInfo,
    MediaMeta,
    SessionCredentials,
    StreamCandidate,
    StreamRequest,
    TitleFilter,
)
from ..utils.media import build_text_queries, normalize_download_path, normalize_query_key
from .transport import TransportError

logger = logging.getLogger(__name__)

LOGIN_MARKER = "login.php"
LOGOUT_MARKER = "logout"


class SeasonPackPolicy:
    # Unresolved pack is surfaced labelled as a whole season.
    LENIENT = "lenient"
    # Unresolved pack is skipped.
    STRICT = "strict"


class SourceAuthError(Exception):
    """The site answered with a login, blocked or otherwise unauthenticated page"""


class BaseSource(ABC):
    """
    Stable adapter contract.

    Subclasses implement ``_search_site`` and ``_load_container``; the base
    class owns caching, filtering, the bounded candidate prefix, season-pack
    handling and seeder enrichment.
    """
    api_version = 1
    name = "UnnamedSource"
    key = ""
    requires_credentials = False
    season_pack_policy = SeasonPackPolicy.LENIENT
    default_max_candidates = 10
    # False when the listing carries no usable seeder counts.
    reports_seeders = True
    # Advisory spacing between uncached container fetches.
    throttle_container_fetches = True
    last_error = ""

    def __init__(self, caches: StreamCaches, settings=None, prober=None):
        self.caches = caches
        self.settings = settings
        self.prober = prober
        self.last_error = ""
        # Errors of the find_streams call running on the current thread.
        self._call_state = threading.local()
        self.max_candidates = self.default_max_candidates
        self.fetch_delay_seconds = 0.0
        self.search_timeout = 20.0
        self.container_timeout = 20.0
        self._throttle_lock = threading.Lock()
        self._last_fetch_at = 0.0
        self.reload_from_settings()

    def _setting(self, key: str, default):
        if self.settings is None:
            return default
        value = self.settings.get(key, default)
        return default if value is None else value

    def reload_from_settings(self) -> None:
        limits = self._setting("max_candidates_per_source", {}) or {}
        try:
            self.max_candidates = max(1, int(limits.get(self.key, self.default_max_candidates)))
        except (TypeError, ValueError, AttributeError):
            self.max_candidates = self.default_max_candidates
        if self.throttle_container_fetches:
            self.fetch_delay_seconds = max(0.0, float(self._setting("container_fetch_delay_seconds", 0.2)))
        self.search_timeout = float(self._setting("search_timeout_seconds", 20.0))
        self.container_timeout = float(self._setting("container_timeout_seconds", 20.0))

    # ------------------------------------------------------------------
    # Site-specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _search_site(self, credentials: Optional[SessionCredentials], query: str) -> List[SearchResult]:
        """Fetch and parse one result listing; raise SourceAuthError on login/blocked pages."""
        raise NotImplementedError

    @abstractmethod
    def _load_container(self, credentials: Optional[SessionCredentials], result: SearchResult) -> Optional[ContainerInfo]:
        """Fetch and parse the container a result points at; None when no hash resolves."""
        raise NotImplementedError

    def announce_endpoints(self, container: ContainerInfo) -> List[str]:
        return list(container.announce_urls)

    def container_cache_key(self, result: SearchResult) -> str:
        return f"{self.key}:{normalize_download_path(result.download_ref)}"

    def _cookie_header(self, credentials: Optional[SessionCredentials]) -> str:
        if credentials is None or not credentials.is_complete:
            raise SourceAuthError("Missing session credentials")
        return credentials.cookie_header

    @staticmethod
    def _is_not_authenticated(html: str) -> bool:
        return LOGIN_MARKER in html and LOGOUT_MARKER not in html

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def has_credentials(self, credentials: Optional[SessionCredentials]) -> bool:
        if not self.requires_credentials:
            return True
        return credentials is not None and credentials.is_complete

    def search(self, credentials: Optional[SessionCredentials], query: str) -> List[SearchResult]:
        """Cached, sorted result listing; auth and network failures yield [] and are not cached."""
        query = str(query or "").strip()
        if not query:
            return []
        cache_key = f"{self.key}:{normalize_query_key(query)}"
        cached = self.caches.search.get(cache_key)
        if cached is not None:
            logger.debug("[%s] Search cache hit for %r", self.name, query)
            return list(cached)

        try:
            results = self._search_site(credentials, query)
        except SourceAuthError as e:
            self._record_error(str(e))
            logger.warning("[%s] %s", self.name, e)
            return []
        except (requests.RequestException, TransportError, ValueError) as e:
            self._record_error(f"Search failed: {e}")
            logger.warning("[%s] Search failed for %r: %s", self.name, query, e)
            return []

        results = sort_results(results)
        logger.info("[%s] Found %d results for %r", self.name, len(results), query)
        if results:
            self.caches.search.set(cache_key, results)
        return results

    def _throttle(self):
        if self.fetch_delay_seconds <= 0:
            return
        with self._throttle_lock:
            wait_for = self._last_fetch_at + self.fetch_delay_seconds - time.monotonic()
            if wait_for > 0:
                time.sleep(wait_for)
            self._last_fetch_at = time.monotonic()

    def fetch_container(self, credentials: Optional[SessionCredentials], result: SearchResult) -> Optional[ContainerInfo]:
        """Cached container lookup; unresolved or failed fetches are not cached."""
        cache_key = self.container_cache_key(result)
        cached = self.caches.containers.get(cache_key)
        if cached is not None:
            logger.debug("[%s] Container cache hit for %s", self.name, cache_key)
            return cached

        self._throttle()
        try:
            info = self._load_container(credentials, result)
        except SourceAuthError as e:
            self._record_error(str(e))
            logger.warning("[%s] %s", self.name, e)
            return None
        except (requests.RequestException, TransportError, ValueError) as e:
            logger.warning("[%s] Container fetch failed for %s: %s", self.name, result.result_id, e)
            return None
        if info is None:
            logger.info("[%s] No content hash for %s", self.name, result.result_id)
            return None
        self.caches.containers.set(cache_key, info)
        return info

    def _stream_cache_key(self, query: str, content_type: str, title_filter: Optional[TitleFilter]) -> str:
        season = title_filter.season if title_filter and title_filter.season is not None else ""
        episode = title_filter.episode if title_filter and title_filter.episode is not None else ""
        return f"{self.key}:{normalize_query_key(query)}:{content_type}:{season}:{episode}"

    def _build_candidate(self, credentials, result: SearchResult, content_type: str,
                         title_filter: Optional[TitleFilter]) -> Optional[StreamCandidate]:
        container = self.fetch_container(credentials, result)
        if container is None:
            return None

        fields: Dict[str, Any] = dict(
            info_hash=container.info_hash,
            title=result.title,
            size=result.size,
            seeders=result.seeders if self.reports_seeders else UNKNOWN_SEEDERS,
            source=self.name,
            source_key=self.key,
            quality=result.quality,
            trackers=tuple(self.announce_endpoints(container)),
            bg_audio=result.bg_audio,
            release_title=result.title,
        )

        if (
            content_type == "series"
            and title_filter is not None
            and title_filter.season is not None
            and title_filter.episode is not None
            and is_season_pack(result.title)
        ):
            file_idx = find_episode_file_idx(container.files, title_filter.season, title_filter.episode)
            if file_idx is not None:
                fields["file_idx"] = file_idx
                fields["title"] = f"Ep. {title_filter.episode} (from pack)"
            elif self.season_pack_policy == SeasonPackPolicy.STRICT:
                logger.debug("[%s] Skipping unresolved season pack %r", self.name, result.title)
                return None
            else:
                fields["whole_season"] = True

        return StreamCandidate.try_create(**fields)

    def get_streams(self, credentials: Optional[SessionCredentials], query: str, content_type: str,
                    title_filter: Optional[TitleFilter] = None) -> List[StreamCandidate]:
        """search -> filter -> bounded container fetches -> candidates (cached per request shape)"""
        if not self.has_credentials(credentials):
            self._record_error("Missing session credentials")
            logger.info("[%s] Skipped: no session credentials", self.name)
            return []

        cache_key = self._stream_cache_key(query, content_type, title_filter)
        cached = self.caches.streams.get(cache_key)
        if cached is not None:
            logger.debug("[%s] Stream cache hit for %r", self.name, query)
            return list(cached)

        results = self.search(credentials, query)
        filtered = [r for r in results if matches_filter(r.title, title_filter)]
        logger.info("[%s] %d/%d results match %r (%s)", self.name, len(filtered), len(results),
                    title_filter.name if title_filter else query,
                    title_filter.year if title_filter and title_filter.year else "?")

        streams: List[StreamCandidate] = []
        for result in filtered[:self.max_candidates]:
            try:
                candidate = self._build_candidate(credentials, result, content_type, title_filter)
            except Exception as e:
                logger.error("[%s] Error for %s: %s", self.name, result.result_id, e)
                continue
            if candidate is not None:
                streams.append(candidate)

        if self.prober is not None and streams:
            logger.info("[%s] Scraping seeders for %d streams...", self.name, len(streams))
            streams = self.prober.enrich(streams)

        if streams:
            self.caches.streams.set(cache_key, streams)
        logger.info("[%s] Returning %d streams for %r", self.name, len(streams), query)
        return streams

    def build_queries(self, request: StreamRequest, meta: MediaMeta) -> List[str]:
        """Ordered queries; later ones are tried only when earlier ones yield nothing."""
        return build_text_queries(meta.name, meta.year if not request.is_series else None,
                                  request.season, request.episode)

    def find_streams(self, credentials: Optional[SessionCredentials], request: StreamRequest,
                     meta: MediaMeta, title_filter: Optional[TitleFilter] = None) -> List[StreamCandidate]:
        """Run the query plan until one query produces streams; failures are read back with call_error()"""
        self._call_state.error = ""
        if title_filter is None:
            title_filter = request.title_filter(meta)
        streams: List[StreamCandidate] = []
        for query in self.build_queries(request, meta):
            streams = self.get_streams(credentials, query, request.content_type, title_filter)
            if streams:
                break
        if not self.call_error():
            self.last_error = ""
        return streams

    def _record_error(self, message: str):
        self._call_state.error = message
        self.last_error = message

    def call_error(self) -> str:
        """Error recorded by the find_streams call on the current thread; empty when it succeeded"""
        return getattr(self._call_state, "error", "")

    def healthcheck(self) -> Dict[str, Any]:
        """Lightweight health payload for the /health route."""
        return {
            "name": self.name,
            "key": self.key,
            "ok": not bool(self.last_error),
            "error": self.last_error,
            "api_version": self.api_version,
            "season_pack_policy": self.season_pack_policy,
            "requires_credentials": self.requires_credentials,
        }


def dedupe_by_id(results: Sequence[SearchResult]) -> List[SearchResult]:
    seen = set()
    out = []
    for result in results:
        if result.result_id in seen:
            continue
        seen.add(result.result_id)
        out.append(result)
    return out
