"""
Container Parser
Extracts the content hash, announce URL and video file list from raw
.torrent bytes, and the same identity from magnet links.

The .torrent side deliberately avoids a full bencode decode: the info hash
is a SHA-1 over the exact byte span of the ``info`` dictionary, so the span
is located by a balanced scan and hashed verbatim. File names are found by
a pattern scan over a latin-1 view of the buffer (one char per byte keeps
offsets aligned with the raw bytes).
"""
from typing import List, Optional
from urllib.parse import parse_qs, urlparse
import base64
import hashlib
import re

from ..models.stream import ContainerInfo, VideoFile

INFO_MARKER = b"4:infod"
VIDEO_EXTENSIONS = ("mkv", "mp4", "avi", "wmv", "flv", "mov", "m4v", "ts", "webm")

_ANNOUNCE_RE = re.compile(r"8:announce(\d+):")
_VIDEO_FILE_RE = re.compile(
    r"[\w.\-\s\x80-\xff]{3,150}\.(?:" + "|".join(VIDEO_EXTENSIONS) + r")",
    re.IGNORECASE,
)
_BTIH_RE = re.compile(r"urn:btih:([A-Za-z0-9]+)", re.IGNORECASE)

_DICT, _LIST, _INT, _END, _COLON = 0x64, 0x6C, 0x69, 0x65, 0x3A


def _info_span(buf: bytes) -> Optional[bytes]:
    """Return the bytes of the info dictionary (``d`` .. matching ``e``), or None."""
    idx = buf.find(INFO_MARKER)
    if idx == -1:
        return None

    start = idx + len(INFO_MARKER) - 1  # position of the opening 'd'
    depth = 0
    pos = start
    size = len(buf)
    while pos < size:
        ch = buf[pos]
        if ch == _DICT or ch == _LIST:
            depth += 1
            pos += 1
        elif ch == _END:
            depth -= 1
            if depth == 0:
                return buf[start:pos + 1]
            pos += 1
        elif ch == _INT:
            end = buf.find(b"e", pos + 1)
            if end == -1:
                return None
            pos = end + 1
        elif 0x30 <= ch <= 0x39:
            colon = buf.find(b":", pos)
            if colon == -1:
                return None
            length_text = buf[pos:colon]
            if not length_text.isdigit():
                return None
            pos = colon + 1 + int(length_text)
            if pos > size:
                return None
        else:
            return None
    return None


def extract_content_hash(buf: bytes) -> Optional[str]:
    """SHA-1 (lowercase hex) over the info dictionary span; None when absent or malformed."""
    if not buf:
        return None
    span = _info_span(bytes(buf))
    if span is None:
        return None
    return hashlib.sha1(span).hexdigest()


def extract_announce(buf: bytes) -> Optional[str]:
    """Return the top-level announce URL verbatim, or None."""
    if not buf:
        return None
    text = bytes(buf).decode("latin-1")
    match = _ANNOUNCE_RE.search(text)
    if not match:
        return None
    length = int(match.group(1))
    start = match.end()
    if start + length > len(text):
        return None
    return text[start:start + length]


def _readable(name: str) -> str:
    # Names are matched over a latin-1 view; re-read the raw bytes as UTF-8 when they are.
    try:
        return name.encode("latin-1").decode("utf-8")
    except UnicodeError:
        return name


def extract_video_files(buf: bytes) -> List[VideoFile]:
    """Heuristic scan for video file names, de-duplicated case-insensitively, in discovery order."""
    if not buf:
        return []
    text = bytes(buf).decode("latin-1")
    files: List[VideoFile] = []
    seen = set()
    for match in _VIDEO_FILE_RE.finditer(text):
        name = _readable(match.group(0).strip())
        key = name.lower()
        if not name or key in seen:
            continue
        seen.add(key)
        files.append(VideoFile(name=name, index=len(files)))
    return files


def parse_container(buf: bytes) -> Optional[ContainerInfo]:
    """Parse raw .torrent bytes into a ContainerInfo; None when no hash resolves."""
    info_hash = extract_content_hash(buf)
    if not info_hash:
        return None
    return ContainerInfo(
        info_hash=info_hash,
        announce=extract_announce(buf),
        files=tuple(extract_video_files(buf)),
    )


def extract_magnet_hash(magnet: str) -> Optional[str]:
    """Return the btih hash of a magnet link as lowercase hex (base32 hashes are converted)."""
    match = _BTIH_RE.search(magnet or "")
    if not match:
        return None
    value = match.group(1)
    if len(value) == 40 and re.fullmatch(r"[0-9A-Fa-f]{40}", value):
        return value.lower()
    if len(value) == 32:
        try:
            return base64.b32decode(value.upper()).hex()
        except ValueError:
            return None
    return None


def parse_magnet(magnet: str) -> Optional[ContainerInfo]:
    """Build a ContainerInfo from a magnet link (hash + tr= trackers, no file list)."""
    info_hash = extract_magnet_hash(magnet)
    if not info_hash:
        return None
    query = urlparse(magnet).query
    trackers = []
    for tracker in parse_qs(query).get("tr", []):
        tracker = tracker.strip()
        if tracker and tracker not in trackers:
            trackers.append(tracker)
    return ContainerInfo(info_hash=info_hash, trackers=tuple(trackers))
