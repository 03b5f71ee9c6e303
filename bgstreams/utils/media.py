"""
Media Utilities
Search-query shaping and download-reference normalization shared by sources
"""
import re
from typing import List, Optional
from urllib.parse import urlparse

_NON_QUERY_CHARS = re.compile(r"[^\w\s\u0400-\u04FF]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_search_query(text: str) -> str:
    """
    Make a tracker-friendly query

    Keeps word characters, whitespace and Cyrillic; everything else becomes
    a space and runs of whitespace collapse.

    Args:
        text: Raw query, usually "<name> <year>" or "<name> SxxEyy"

    Returns:
        Sanitized query ("Spider-Man: No Way Home" -> "Spider Man No Way Home")
    """
    return _WHITESPACE.sub(" ", _NON_QUERY_CHARS.sub(" ", str(text or ""))).strip()


def normalize_query_key(query: str) -> str:
    """Cache-key form of a query: lowercased, whitespace collapsed"""
    return _WHITESPACE.sub(" ", str(query or "").lower()).strip()


def format_episode(season: int, episode: int) -> str:
    """(1, 5) -> "S01E05" """
    return f"S{int(season):02d}E{int(episode):02d}"


def build_text_queries(name: str, year: Optional[int] = None,
                       season: Optional[int] = None, episode: Optional[int] = None) -> List[str]:
    """
    Ordered text queries to try until one yields streams

    Movies: "<name> <year>" then "<name>". Series: "<name> SxxEyy" then
    "<name> Season N".
    """
    queries: List[str] = []
    if season is not None and episode is not None:
        candidates = [f"{name} {format_episode(season, episode)}", f"{name} Season {int(season)}"]
    elif year:
        candidates = [f"{name} {year}", name]
    else:
        candidates = [name]
    for candidate in candidates:
        query = sanitize_search_query(candidate)
        if query and query not in queries:
            queries.append(query)
    return queries


def normalize_download_path(ref: str) -> str:
    """
    Reduce a container reference to a site-relative path

    "https://axelbg.net/download.php/1/x.torrent" and "download.php/1/x.torrent"
    both become "/download.php/1/x.torrent". Query strings are kept.
    """
    text = str(ref or "").strip()
    if not text:
        return ""
    if text.lower().startswith(("http://", "https://", "//")):
        parsed = urlparse(text if not text.startswith("//") else "https:" + text)
        text = parsed.path or "/"
        if parsed.query:
            text = f"{text}?{parsed.query}"
    if not text.startswith("/"):
        text = "/" + text
    return text
