"""
Stream Models
Value types flowing between sources, the aggregator, and the addon boundary.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple
import re

from .search_result import Quality

INFO_HASH_RE = re.compile(r"^[0-9a-f]{40}$")
UNKNOWN_SEEDERS = -1
CONTENT_TYPES = ("movie", "series")


def normalize_info_hash(value: str) -> str:
    """Lowercase and validate a 40-hex content hash; raises ValueError when malformed."""
    text = str(value or "").strip().lower()
    if not INFO_HASH_RE.match(text):
        raise ValueError(f"Malformed content hash: {value!r}")
    return text


@dataclass(frozen=True)
class VideoFile:
    name: str
    index: int


@dataclass(frozen=True)
class ContainerInfo:
    """Parsed container (.torrent or magnet) identity."""
    info_hash: str
    announce: Optional[str] = None
    files: Tuple[VideoFile, ...] = ()
    # Extra announce endpoints carried alongside the container (magnet tr= params).
    trackers: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "info_hash", normalize_info_hash(self.info_hash))
        object.__setattr__(self, "files", tuple(self.files))
        object.__setattr__(self, "trackers", tuple(self.trackers))

    @property
    def announce_urls(self) -> Tuple[str, ...]:
        urls = []
        for url in ((self.announce,) if self.announce else ()) + self.trackers:
            if url and url not in urls:
                urls.append(url)
        return tuple(urls)


@dataclass(frozen=True)
class TitleFilter:
    """Expected name/year/season/episode used to disambiguate release titles."""
    name: str
    year: Optional[int] = None
    season: Optional[int] = None
    episode: Optional[int] = None

    def __post_init__(self):
        if not str(self.name or "").strip():
            raise ValueError("TitleFilter requires a non-empty name")


@dataclass(frozen=True)
class MediaMeta:
    name: str
    year: Optional[int] = None


@dataclass(frozen=True)
class SessionCredentials:
    """Opaque tracker session token pair (uid cookie + pass cookie)."""
    uid: str = ""
    password: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(str(self.uid or "").strip() and str(self.password or "").strip())

    @property
    def cookie_header(self) -> str:
        return f"uid={self.uid}; pass={self.password}"

    def __repr__(self) -> str:
        return f"SessionCredentials(uid={self.uid!r}, password=***)"


@dataclass(frozen=True)
class StreamRequest:
    """
    Parsed inbound stream request.

    Movies use the bare IMDB id (``tt0133093``); series encode
    ``<imdb>:<season>:<episode>`` (``tt0903747:2:5``).
    """
    content_type: str
    imdb_id: str
    season: Optional[int] = None
    episode: Optional[int] = None

    @classmethod
    def parse(cls, content_type: str, content_id: str) -> Optional["StreamRequest"]:
        content_type = str(content_type or "").strip().lower()
        content_id = str(content_id or "").strip()
        if content_type not in CONTENT_TYPES or not content_id:
            return None
        if content_type == "movie":
            if ":" in content_id:
                return None
            return cls(content_type=content_type, imdb_id=content_id)

        parts = content_id.split(":")
        if len(parts) != 3 or not parts[0]:
            return None
        try:
            season = int(parts[1])
            episode = int(parts[2])
        except ValueError:
            return None
        if season < 0 or episode < 1:
            return None
        return cls(content_type=content_type, imdb_id=parts[0], season=season, episode=episode)

    @property
    def is_series(self) -> bool:
        return self.content_type == "series"

    def title_filter(self, meta: MediaMeta) -> TitleFilter:
        return TitleFilter(name=meta.name, year=meta.year, season=self.season, episode=self.episode)


@dataclass(frozen=True)
class StreamCandidate:
    """A playable stream candidate; identity is the content hash."""
    info_hash: str
    title: str
    size: str = ""
    seeders: int = UNKNOWN_SEEDERS
    source: str = ""
    source_key: str = ""
    quality: Quality = Quality.UNKNOWN
    trackers: Tuple[str, ...] = ()
    file_idx: Optional[int] = None
    whole_season: bool = False
    bg_audio: bool = False
    release_title: str = ""

    def __post_init__(self):
        object.__setattr__(self, "info_hash", normalize_info_hash(self.info_hash))
        object.__setattr__(self, "trackers", tuple(self.trackers))
        if self.file_idx is not None and self.file_idx < 0:
            raise ValueError(f"Negative file index: {self.file_idx}")

    @classmethod
    def try_create(cls, **kwargs) -> Optional["StreamCandidate"]:
        """Build a candidate or return None when its content hash is malformed."""
        try:
            return cls(**kwargs)
        except ValueError:
            return None

    def with_seeders(self, seeders: int) -> "StreamCandidate":
        return replace(self, seeders=int(seeders))

    @property
    def seeders_known(self) -> bool:
        return self.seeders >= 0

    def to_stremio(self) -> Dict[str, Any]:
        """Render the external stream shape."""
        bg_label = " 🇧🇬" if self.bg_audio else ""
        seed_label = f"👤 {self.seeders}" if self.seeders_known else "👤 ?"
        pack_label = "📦 Whole season\n" if self.whole_season else ""
        lines = [
            f"{pack_label}{self.title[:70]}",
            seed_label,
        ]
        if self.size:
            lines.append(f"📁 {self.size}")
        lines.append(f"🌐 {self.source}")

        stream: Dict[str, Any] = {
            "infoHash": self.info_hash,
            "name": f"{self.source}{bg_label}\n{self.quality.value}",
            "title": "\n".join(lines),
            "sources": [f"tracker:{url}" for url in self.trackers],
            "behaviorHints": {"bingeGroup": f"{self.source_key or self.source.lower()}-{self.quality.value}"},
        }
        if self.file_idx is not None:
            stream["fileIdx"] = self.file_idx
        return stream


@dataclass
class StreamResolution:
    """Aggregated answer for one request plus per-source diagnostics."""
    streams: list = field(default_factory=list)
    source_warnings: Dict[str, str] = field(default_factory=dict)
