"""
Zamunda.rip Search Source
Public JSON archive API with magnet links (no login)
"""
from typing import List, Optional

import requests

from ..core.container_parser import parse_magnet
from ..models.search_result import SearchResult
from ..models.stream import ContainerInfo
from .base import BaseSource, SeasonPackPolicy


class ZamundaRipSource(BaseSource):
    """Zamunda.rip archive (Zamunda + ArenaBG mirrors)"""

    name = "BGTorrents"
    key = "zamunda_rip"
    season_pack_policy = SeasonPackPolicy.LENIENT
    default_max_candidates = 10
    reports_seeders = False
    throttle_container_fetches = False

    API_URL = "https://zamunda.rip/api/torrents"

    VIDEO_CATEGORIES = frozenset({
        "Филми/HD", "Филми/SD", "Филми/DVD-R", "Филми/BG",
        "Документални", "Филми/Дублирани", "Blu-ray", "Филми/3D",
        "Сериали", "Сериали/HD", "Аниме/TV", "Аниме/HD",
        "Movies/HD", "Movies/SD", "Movies/DVD-R", "Movies/BG",
        "TV Shows", "TV Shows/HD", "Series", "Series/HD",
    })

    def __init__(self, caches, settings=None, prober=None, session: Optional[requests.Session] = None):
        super().__init__(caches, settings=settings, prober=prober)
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "Stremio-BGStreams-Addon/1.0",
        })

    def _search_site(self, credentials, query: str) -> List[SearchResult]:
        response = self.session.get(self.API_URL, params={"q": query}, timeout=self.search_timeout)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, list):
            raise ValueError(f"Unexpected response format: {type(data).__name__}")
        return self._parse_rows(data)

    def _parse_rows(self, rows) -> List[SearchResult]:
        results = []
        for item in rows:
            if not isinstance(item, dict):
                continue
            link = str(item.get("link") or "").strip()
            if not link:
                continue
            category = str(item.get("category") or "").strip()
            if category and category not in self.VIDEO_CATEGORIES:
                continue
            try:
                results.append(SearchResult.create(
                    result_id=str(item.get("external_id", "")),
                    title=str(item.get("title") or ""),
                    size=SearchResult.format_size(item.get("size") or ""),
                    seeders=0,
                    source=self.name,
                    download_ref=link,
                    category=category or None,
                    bg_audio=str(item.get("is_bgaudio", "")) in ("1", "True", "true"),
                ))
            except ValueError:
                continue
        return results

    def container_cache_key(self, result: SearchResult) -> str:
        return f"{self.key}:{result.download_ref}"

    def _load_container(self, credentials, result: SearchResult) -> Optional[ContainerInfo]:
        # The listing already carries the magnet; nothing to download.
        return parse_magnet(result.download_ref)
