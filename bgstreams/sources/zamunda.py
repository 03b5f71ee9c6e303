"""
Zamunda.ch Search Source
Authenticated HTML scraping through the relay; hashes come from magnet pages
"""
from typing import List, Optional
from urllib.parse import quote, unquote
import logging
import re

from bs4 import BeautifulSoup

from ..core.container_parser import parse_magnet
from ..models.search_result import SearchResult
from ..models.stream import ContainerInfo
from .base import BaseSource, SeasonPackPolicy, SourceAuthError
from .transport import BaseTransport

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"id=(\d+)")
_DOWNLOAD_NAME_RE = re.compile(r"/download\.php/\d+/(.+?)\.torrent", re.IGNORECASE)
_MAGNET_RE = re.compile(r"magnet:\?[^\"'<>\s]+")

SEIZURE_MARKER = "nsls.jpg"
SEIZURE_MAX_LENGTH = 500


class ZamundaSource(BaseSource):
    """
    zamunda.ch

    Magnet pages carry no file list, so a season pack can never be resolved
    to an episode here; such packs are skipped rather than surfaced.
    """

    name = "Zamunda"
    key = "zamunda"
    requires_credentials = True
    season_pack_policy = SeasonPackPolicy.STRICT
    default_max_candidates = 10

    HOST = "zamunda.ch"

    def __init__(self, caches, transport: BaseTransport, settings=None, prober=None):
        self.transport = transport
        super().__init__(caches, settings=settings, prober=prober)

    @staticmethod
    def search_path(query: str) -> str:
        return f"/bananas?search={quote(query, safe='')}&incldead=0&field=name&cat=0"

    @staticmethod
    def magnet_path(result_id: str) -> str:
        return f"/magnetlink/download_go.php?id={result_id}&m=x"

    def _check_page(self, html: str):
        if SEIZURE_MARKER in html and len(html) < SEIZURE_MAX_LENGTH:
            raise SourceAuthError("Seizure page, session invalid")
        if self._is_not_authenticated(html):
            raise SourceAuthError("Login page, session expired")

    def _search_site(self, credentials, query: str) -> List[SearchResult]:
        response = self.transport.fetch(self.HOST, self.search_path(query), self._cookie_header(credentials),
                                        timeout=self.search_timeout)
        html = response.text
        logger.debug("[Zamunda] Search response: status=%s, %d chars", response.status, len(html))
        self._check_page(html)
        return self.parse_results(html)

    def parse_results(self, html: str) -> List[SearchResult]:
        soup = BeautifulSoup(html, "html.parser")
        results = []
        for row in soup.select("tr[onmouseover]"):
            cells = row.find_all("td")
            if len(cells) < 8:
                continue
            title_link = cells[1].select_one('a[href*="banan?id="]')
            if title_link is None:
                continue
            id_match = _ID_RE.search(title_link.get("href", ""))
            if not id_match:
                continue

            bold = title_link.find("b")
            title = (bold.get_text(strip=True) if bold else "") or title_link.get_text(strip=True)
            download_link = cells[1].select_one('a[href*="download.php"]')
            if download_link is not None:
                name_match = _DOWNLOAD_NAME_RE.search(download_link.get("href", ""))
                if name_match:
                    title = unquote(name_match.group(1)).replace(".", " ")

            seeders_cell = row.select_one("td.tdseeders")
            try:
                seeders = int(seeders_cell.get_text(strip=True)) if seeders_cell else 0
            except ValueError:
                seeders = 0

            results.append(SearchResult.create(
                result_id=id_match.group(1),
                title=title,
                size=SearchResult.format_size(cells[5].get_text(" ", strip=True)),
                seeders=seeders,
                source=self.name,
                download_ref=self.magnet_path(id_match.group(1)),
            ))
        return results

    def _load_container(self, credentials, result: SearchResult) -> Optional[ContainerInfo]:
        response = self.transport.fetch(self.HOST, result.download_ref, self._cookie_header(credentials),
                                        timeout=self.container_timeout)
        html = response.text
        self._check_page(html)
        match = _MAGNET_RE.search(html)
        if match:
            magnet = match.group(0)
        else:
            link = BeautifulSoup(html, "html.parser").select_one('a[href^="magnet:"]')
            magnet = link.get("href", "") if link is not None else ""
        if not magnet:
            logger.info("[Zamunda] No magnet link for %s", result.result_id)
            return None
        return parse_magnet(magnet.replace("&amp;", "&"))
