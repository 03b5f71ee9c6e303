"""
Cinemeta Client
Resolves IMDB ids to a canonical (name, year) pair
"""
from typing import Optional
import logging

import requests

from ..models.stream import CONTENT_TYPES, MediaMeta

logger = logging.getLogger(__name__)


class CinemetaClient:
    """Public metadata lookup; every failure degrades to None"""

    BASE_URL = "https://v3-cinemeta.strem.io"

    def __init__(self, settings=None, base_url: Optional[str] = None):
        self.settings = settings
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    def _timeout(self) -> float:
        if self.settings is None:
            return 10.0
        try:
            return float(self.settings.get("metadata_timeout_seconds", 10.0) or 10.0)
        except (TypeError, ValueError):
            return 10.0

    @staticmethod
    def _parse_year(release_info) -> Optional[int]:
        head = str(release_info or "").strip().split("-")[0].strip()
        # "2008–2013" uses an en dash on series.
        head = head.split("–")[0].strip()
        try:
            return int(head[:4]) if len(head) >= 4 else None
        except ValueError:
            return None

    def get_meta(self, content_type: str, imdb_id: str, timeout: Optional[float] = None) -> Optional[MediaMeta]:
        if content_type not in CONTENT_TYPES or not str(imdb_id or "").strip():
            return None
        url = f"{self.base_url}/meta/{content_type}/{imdb_id}.json"
        try:
            response = requests.get(url, timeout=timeout if timeout is not None else self._timeout())
            response.raise_for_status()
            meta = (response.json() or {}).get("meta") or {}
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.error("[Cinemeta] Failed to get meta for %s: %s", imdb_id, e)
            return None

        name = str(meta.get("name") or "").strip() if isinstance(meta, dict) else ""
        if not name:
            logger.warning("[Cinemeta] No meta found for %s", imdb_id)
            return None
        year = self._parse_year(meta.get("releaseInfo") or meta.get("year"))
        logger.info("[Cinemeta] Found meta: %s (%s)", name, year)
        return MediaMeta(name=name, year=year)
