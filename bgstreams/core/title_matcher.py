"""
Title Matcher
Decides whether a noisy release title plausibly names the requested content.

Typical inputs:
- "The.Matrix.1999.1080p.BluRay.x264"   -> title part "the matrix"
- "Soul.Surfer.2011.720p"                -> title part "soul surfer"
- "Show.Name.S02.Complete.WEB-DL"        -> title part "show name" (season pack)
"""
from typing import List, Optional, Sequence, Set
import logging
import re

from ..models.stream import TitleFilter, VideoFile

logger = logging.getLogger(__name__)

EDITION_WORDS = frozenset({
    "extended", "unrated", "directors", "director", "cut", "remastered",
    "special", "edition", "complete", "theatrical", "imax", "dc",
    "recut", "final", "ultimate", "criterion", "restored", "redux",
    "anniversary", "collectors", "limited", "deluxe", "premium",
    "dubbed", "subbed", "dual", "multi", "bg", "bgaudio", "bgsub",
    "audio", "subs", "subtitle", "subtitles", "aka", "repack", "proper",
    "hybrid", "open", "matte", "bonus", "extras", "uncensored",
    "part", "vol", "volume", "season",
})

_NON_TITLE_CHARS = re.compile(r"[^\w\s\u0400-\u04FF]")
_WHITESPACE = re.compile(r"\s+")
_MARKER_RE = re.compile(
    r"\b(?:(?:19|20)\d{2}|2160p|1080[pi]|720p|480p|360p|4k|uhd|bluray|blu ray|bdrip|bdremux"
    r"|webrip|web[\s-]?dl|webdl|hdtv|pdtv|dvdrip|hdrip|hdcam|telesync|remux"
    r"|x264|x265|h\s?264|h\s?265|hevc|avc|aac|dts|ac3"
    r"|s\d{2}e\d{2}|s\d{2}|season\s+\d|сезон\s+\d|complete|multi)\b"
)
_YEAR_RE = re.compile(r"(?<![0-9A-Za-z])(19\d{2}|20\d{2})(?![0-9A-Za-z])")
_SEASON_TAG_RE = re.compile(r"\bs(\d{1,2})(?:e\d{1,3})*\b")
_SEASON_WORD_RE = re.compile(r"(?:\bseason|сезон)\s+(\d{1,2})\b")
_SEASON_ONLY_RE = re.compile(r"\bs\d{1,2}\b")
_SEASON_EPISODE_RE = re.compile(r"\bs\d{1,2}e\d{1,2}\b")
_PACK_WORD_RE = re.compile(r"(?:\bseason\s+\d|сезон\s+\d|\bcomplete\b)")


def normalize(text: str) -> str:
    """Lowercase, keep word chars/whitespace/Cyrillic, collapse whitespace."""
    lowered = str(text or "").lower()
    return _WHITESPACE.sub(" ", _NON_TITLE_CHARS.sub(" ", lowered)).strip()


def extract_title_part(title: str) -> str:
    """Normalized text before the first year/quality/codec/season marker."""
    norm = normalize(title)
    match = _MARKER_RE.search(norm)
    if match:
        return norm[:match.start()].strip()
    return norm


def extract_years(title: str) -> List[int]:
    return [int(y) for y in _YEAR_RE.findall(title or "")]


def extract_seasons(title: str) -> Set[int]:
    """Season numbers named explicitly by S<NN> tags or "season N" words."""
    norm = normalize(title)
    seasons = {int(s) for s in _SEASON_TAG_RE.findall(norm)}
    seasons.update(int(s) for s in _SEASON_WORD_RE.findall(norm))
    return seasons


def _is_allowed_extra_word(word: str, title_filter: TitleFilter) -> bool:
    if word in EDITION_WORDS:
        return True
    if title_filter.season is not None and (word == "season" or re.fullmatch(r"\d{1,2}", word)):
        return True
    return False


def _title_part_matches(title_part: str, name: str, title_filter: TitleFilter) -> bool:
    if title_part == name:
        return True
    if not name or not title_part.startswith(name + " "):
        return False
    extra = title_part[len(name):].split()
    return all(_is_allowed_extra_word(word, title_filter) for word in extra)


def _strip_article(text: str) -> str:
    return re.sub(r"^the\s+", "", text)


def title_matches(title: str, title_filter: TitleFilter) -> bool:
    """Name-only part of the match (no year/season checks)."""
    name = normalize(title_filter.name)
    title_part = extract_title_part(title)
    if _title_part_matches(title_part, name, title_filter):
        return True
    return _title_part_matches(_strip_article(title_part), _strip_article(name), title_filter)


def matches_filter(title: str, title_filter: Optional[TitleFilter]) -> bool:
    """
    True when the release title names the filtered content.

    An explicit year or season in the title must agree with the filter;
    titles without any year/season marker get the benefit of the doubt.
    """
    if title_filter is None:
        return True

    if not title_matches(title, title_filter):
        logger.debug("Filter skip (title): %r != %r", extract_title_part(title), normalize(title_filter.name))
        return False

    if title_filter.year:
        years = extract_years(title)
        if years and title_filter.year not in years:
            logger.debug("Filter skip (year): %r has %s, expected %s", title, years, title_filter.year)
            return False

    if title_filter.season is not None:
        seasons = extract_seasons(title)
        if seasons and title_filter.season not in seasons:
            logger.debug("Filter skip (season): %r has %s, expected %s", title, sorted(seasons), title_filter.season)
            return False

    return True


def is_season_pack(title: str) -> bool:
    """Season marker without an episode marker, or "season N"/"complete"."""
    norm = normalize(title)
    season_only = bool(_SEASON_ONLY_RE.search(norm)) and not _SEASON_EPISODE_RE.search(norm)
    return season_only or bool(_PACK_WORD_RE.search(norm))


def find_episode_file_idx(files: Optional[Sequence[VideoFile]], season: int, episode: int) -> Optional[int]:
    """
    Locate an episode inside a multi-file container.

    1. exact zero-padded SxxEyy
    2. looser markers: Eyy, NxYY, "episode N"
    3. position: the episode-th file in name order
    """
    if not files:
        return None

    s_pad = f"{season:02d}"
    e_pad = f"{episode:02d}"
    exact = f"s{s_pad}e{e_pad}"
    for video in files:
        if exact in video.name.lower():
            return video.index

    loose = [
        re.compile(rf"\be{e_pad}\b"),
        re.compile(rf"\b{season}x{e_pad}\b"),
        re.compile(rf"\bepisode\s*{episode}\b"),
    ]
    for video in files:
        lowered = video.name.lower()
        if any(pattern.search(lowered) for pattern in loose):
            return video.index

    ordered = sorted(files, key=lambda f: f.name.lower())
    if 1 <= episode <= len(ordered):
        return ordered[episode - 1].index
    return None
