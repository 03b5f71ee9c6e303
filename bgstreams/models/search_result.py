"""
Search Result Model
One row from a tracker's result listing, with quality tagging and ranking
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional
import re


class Quality(str, Enum):
    """Coarse resolution/source tag derived from a release title"""
    UHD_4K = "4K"
    FHD_1080P = "1080p"
    HD_720P = "720p"
    SD_480P = "480p"
    BLURAY = "BluRay"
    WEB = "WEB"
    HDTV = "HDTV"
    DVDRIP = "DVDRip"
    UNKNOWN = "Unknown"

    @property
    def rank(self) -> int:
        """Higher is better"""
        return _QUALITY_RANKS.get(self, 0)


_QUALITY_RANKS = {
    Quality.UHD_4K: 6,
    Quality.FHD_1080P: 5,
    Quality.BLURAY: 4,
    Quality.HD_720P: 3,
    Quality.WEB: 3,
    Quality.HDTV: 2,
    Quality.DVDRIP: 1,
    Quality.SD_480P: 1,
    Quality.UNKNOWN: 0,
}

# Checked in order; the first hit wins.
_QUALITY_MARKERS = [
    (Quality.UHD_4K, ("2160p", "4k", "uhd")),
    (Quality.FHD_1080P, ("1080p",)),
    (Quality.HD_720P, ("720p",)),
    (Quality.SD_480P, ("480p",)),
    (Quality.DVDRIP, ("dvdrip",)),
    (Quality.HDTV, ("hdtv",)),
    (Quality.WEB, ("webrip", "web-dl")),
    (Quality.BLURAY, ("bdrip", "bluray", "blu-ray")),
]


@dataclass(frozen=True)
class SearchResult:
    """Tracker search result"""
    result_id: str
    title: str
    size: str
    seeders: int
    source: str
    # Container reference: a .torrent path/URL, a magnet link, or a magnet page path.
    download_ref: str
    quality: Quality = Quality.UNKNOWN
    category: Optional[str] = None
    bg_audio: bool = False

    def __post_init__(self):
        if not (self.download_ref or "").strip():
            raise ValueError(f"Search result {self.result_id!r} has no download reference")
        if self.seeders < 0:
            object.__setattr__(self, "seeders", 0)

    @classmethod
    def create(cls, **kwargs) -> "SearchResult":
        """Build a result, deriving the quality tag from the title when not supplied"""
        if "quality" not in kwargs:
            kwargs["quality"] = extract_quality(kwargs.get("title", ""))
        return cls(**kwargs)

    @property
    def sort_key(self):
        """Quality rank first, then seeders (both descending)"""
        return (-self.quality.rank, -self.seeders)

    @staticmethod
    def format_size(size_str: str) -> str:
        """Collapse whitespace in a human-readable size ("1.5   GB" -> "1.5 GB")"""
        if not size_str:
            return ""
        return re.sub(r"\s+", " ", str(size_str).strip())


def extract_quality(title: str) -> Quality:
    """Extract a quality tag from a release title"""
    lowered = (title or "").lower()
    for quality, markers in _QUALITY_MARKERS:
        if any(marker in lowered for marker in markers):
            return quality
    return Quality.UNKNOWN


def sort_results(results):
    """Sort by quality rank descending, then seeders descending (stable)"""
    return sorted(results, key=lambda r: r.sort_key)
