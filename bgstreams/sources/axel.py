"""
AXELbg Search Source
Authenticated HTML scraping of axelbg.net with .torrent downloads
"""
from typing import List, Optional
from urllib.parse import quote
import logging
import re

from bs4 import BeautifulSoup

from ..core.container_parser import parse_container
from ..models.search_result import SearchResult
from ..models.stream import ContainerInfo, MediaMeta, StreamRequest
from ..utils.media import normalize_download_path
from .base import BaseSource, SeasonPackPolicy, SourceAuthError, dedupe_by_id
from .transport import BLOCKED_MARKER, BaseTransport

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"id=(\d+)")
_SIZE_RE = re.compile(r"^\d+[.,]\d+\s*[GMKT]B$", re.IGNORECASE)

DETAIL_SELECTOR = 'a[href*="details.php?id="]'
DOWNLOAD_SELECTOR = 'a[href*="download.php"]'

DEFAULT_PUBLIC_TRACKERS = (
    "udp://tracker.opentrackr.org:1337/announce",
    "udp://open.stealth.si:80/announce",
    "udp://exodus.desync.com:6969/announce",
)


def _has_result_links(element) -> bool:
    return element.select_one(DETAIL_SELECTOR) is not None and element.select_one(DOWNLOAD_SELECTOR) is not None


class AxelSource(BaseSource):
    """axelbg.net; geo-restricted, so every request goes through the injected transport"""

    name = "AXELbg"
    key = "axel"
    requires_credentials = True
    season_pack_policy = SeasonPackPolicy.LENIENT
    default_max_candidates = 8

    HOST = "axelbg.net"

    def __init__(self, caches, transport: BaseTransport, settings=None, prober=None):
        self.transport = transport
        self.public_trackers = list(DEFAULT_PUBLIC_TRACKERS)
        super().__init__(caches, settings=settings, prober=prober)

    def reload_from_settings(self) -> None:
        super().reload_from_settings()
        trackers = self._setting("fallback_trackers", None)
        if trackers:
            self.public_trackers = [str(t).strip() for t in trackers if str(t or "").strip()]

    def build_queries(self, request: StreamRequest, meta: MediaMeta) -> List[str]:
        # The site indexes IMDB ids, which is the most precise query available.
        return [request.imdb_id]

    @staticmethod
    def browse_path(query: str) -> str:
        return f"/browse.php?search={quote(query, safe='')}&cat=0&incldead=0&page=0&first=0&last=50"

    def _search_site(self, credentials, query: str) -> List[SearchResult]:
        response = self.transport.fetch(self.HOST, self.browse_path(query), self._cookie_header(credentials),
                                        timeout=self.search_timeout)
        html = response.text
        logger.debug("[AXEL] Search via %s: status=%s, %d chars", response.via, response.status, len(html))
        if BLOCKED_MARKER in html:
            raise SourceAuthError("SQL Error page (blocked egress)")
        if self._is_not_authenticated(html):
            raise SourceAuthError("Not logged in, session expired")
        return self.parse_results(html)

    def parse_results(self, html: str) -> List[SearchResult]:
        soup = BeautifulSoup(html, "html.parser")
        results = []
        for td in soup.find_all("td"):
            if not _has_result_links(td):
                continue
            # Layout tables nest cells; only the innermost cell holding both links is a result.
            if any(_has_result_links(inner) for inner in td.find_all("td")):
                continue
            detail_link = td.select_one(DETAIL_SELECTOR)
            download_link = td.select_one(DOWNLOAD_SELECTOR)
            id_match = _ID_RE.search(detail_link.get("href", ""))
            if not id_match:
                continue

            size, seeders = "", 0
            row = td.find_parent("tr")
            for cell in (row.find_all("td") if row is not None else []):
                text = cell.get_text(strip=True)
                if _SIZE_RE.match(text):
                    size = text
                seed_link = cell.select_one('a[href*="toseeders"]')
                if seed_link is not None:
                    try:
                        seeders = int(seed_link.get_text(strip=True))
                    except ValueError:
                        seeders = 0

            try:
                results.append(SearchResult.create(
                    result_id=id_match.group(1),
                    title=detail_link.get_text(strip=True),
                    size=SearchResult.format_size(size),
                    seeders=seeders,
                    source=self.name,
                    download_ref=download_link.get("href", ""),
                ))
            except ValueError:
                continue
        return dedupe_by_id(results)

    def _load_container(self, credentials, result: SearchResult) -> Optional[ContainerInfo]:
        path = normalize_download_path(result.download_ref)
        logger.debug("[AXEL] Downloading .torrent: %s", path[:80])
        response = self.transport.fetch(self.HOST, path, self._cookie_header(credentials), binary=True,
                                        timeout=self.container_timeout)
        info = parse_container(response.body)
        if info is None:
            logger.info("[AXEL] Failed to extract content hash from %s (%d bytes)", path[:80], len(response.body))
            return None
        logger.debug("[AXEL] hash=%s tracker=%s files=%d", info.info_hash, "yes" if info.announce else "no",
                     len(info.files))
        return info

    def announce_endpoints(self, container: ContainerInfo) -> List[str]:
        endpoints = list(container.announce_urls)
        for tracker in self.public_trackers:
            if tracker not in endpoints:
                endpoints.append(tracker)
        return endpoints
