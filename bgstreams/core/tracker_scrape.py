"""
Tracker Scrape
Best-effort live seeder counts via the UDP tracker protocol (connect + scrape)
"""
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse
import logging
import os
import socket
import struct
import time

from ..models.stream import UNKNOWN_SEEDERS, StreamCandidate, normalize_info_hash

logger = logging.getLogger(__name__)

PROTOCOL_ID = 0x41727101980
ACTION_CONNECT = 0
ACTION_SCRAPE = 2
ACTION_ERROR = 3


@dataclass(frozen=True)
class ScrapeStats:
    seeders: int
    completed: int
    leechers: int


def _tracker_address(tracker_url: str) -> Optional[Tuple[str, int]]:
    parsed = urlparse(str(tracker_url or "").strip())
    if parsed.scheme != "udp" or not parsed.hostname:
        return None
    try:
        port = parsed.port or 80
    except ValueError:
        return None
    return parsed.hostname, port


def _receive(sock: socket.socket, deadline: float, action: int, transaction_id: bytes, min_size: int) -> Optional[bytes]:
    """Read datagrams until one answers our transaction with the wanted action"""
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        sock.settimeout(remaining)
        data, _ = sock.recvfrom(2048)
        if len(data) < 8 or data[4:8] != transaction_id:
            continue
        got_action = struct.unpack(">I", data[:4])[0]
        if got_action == ACTION_ERROR:
            logger.debug("Tracker error response: %r", data[8:].decode("utf-8", "replace"))
            return None
        if got_action == action and len(data) >= min_size:
            return data


def scrape_udp(tracker_url: str, info_hash: str, timeout: float = 3.0) -> Optional[ScrapeStats]:
    """
    Query one UDP tracker for swarm statistics.

    Returns None on any failure (bad URL, DNS, timeout, error reply);
    the whole exchange is bounded by ``timeout`` seconds.
    """
    address = _tracker_address(tracker_url)
    if address is None:
        return None
    try:
        hash_bytes = bytes.fromhex(normalize_info_hash(info_hash))
    except ValueError:
        return None

    deadline = time.monotonic() + max(0.01, float(timeout))
    transaction_id = os.urandom(4)
    try:
        family, sock_type, proto, _, sockaddr = socket.getaddrinfo(
            address[0], address[1], 0, socket.SOCK_DGRAM
        )[0]
        with socket.socket(family, sock_type, proto) as sock:
            sock.sendto(struct.pack(">QI", PROTOCOL_ID, ACTION_CONNECT) + transaction_id, sockaddr)
            reply = _receive(sock, deadline, ACTION_CONNECT, transaction_id, 16)
            if reply is None:
                return None
            connection_id = reply[8:16]

            request = connection_id + struct.pack(">I", ACTION_SCRAPE) + transaction_id + hash_bytes
            sock.sendto(request, sockaddr)
            reply = _receive(sock, deadline, ACTION_SCRAPE, transaction_id, 20)
            if reply is None:
                return None
            seeders, completed, leechers = struct.unpack(">III", reply[8:20])
            return ScrapeStats(seeders=seeders, completed=completed, leechers=leechers)
    except OSError as e:
        logger.debug("UDP scrape failed for %s: %s", tracker_url, e)
        return None


class SeederProber:
    """Attaches live seeder counts to candidates by scraping their UDP trackers in parallel"""

    def __init__(self, max_trackers: int = 3, timeout: float = 3.0,
                 scrape: Callable[[str, str, float], Optional[ScrapeStats]] = scrape_udp):
        self.max_trackers = max(1, int(max_trackers))
        self.timeout = float(timeout)
        self._scrape = scrape

    def udp_trackers(self, trackers: Sequence[str]) -> List[str]:
        out: List[str] = []
        for tracker in trackers or ():
            tracker = str(tracker or "").strip()
            if tracker.lower().startswith("udp://") and tracker not in out:
                out.append(tracker)
            if len(out) >= self.max_trackers:
                break
        return out

    def _safe_scrape(self, tracker: str, info_hash: str) -> Optional[ScrapeStats]:
        try:
            return self._scrape(tracker, info_hash, self.timeout)
        except Exception as e:
            logger.debug("Scrape of %s raised: %s", tracker, e)
            return None

    def _probe_many(self, jobs: List[Tuple[str, str]]) -> Dict[Tuple[str, str], Optional[ScrapeStats]]:
        if not jobs:
            return {}
        # One worker per tracker query; the barrier only guards against stuck DNS lookups.
        executor = ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="bgstreams-scrape")
        try:
            futures = {executor.submit(self._safe_scrape, tracker, info_hash): (tracker, info_hash)
                       for tracker, info_hash in jobs}
            done, _ = wait(futures, timeout=self.timeout + 2.0)
        finally:
            executor.shutdown(wait=False)
        return {futures[f]: f.result() for f in done}

    @staticmethod
    def _best(stats: Sequence[Optional[ScrapeStats]]) -> Tuple[int, int]:
        seeders, leechers = UNKNOWN_SEEDERS, UNKNOWN_SEEDERS
        for item in stats:
            if item is not None and item.seeders > seeders:
                seeders, leechers = item.seeders, item.leechers
        return seeders, leechers

    def get_seeders(self, trackers: Sequence[str], info_hash: str) -> Tuple[int, int]:
        """(seeders, leechers) as the best answer across trackers; (-1, -1) when none answered"""
        jobs = [(tracker, info_hash) for tracker in self.udp_trackers(trackers)]
        if not jobs:
            return UNKNOWN_SEEDERS, UNKNOWN_SEEDERS
        results = self._probe_many(jobs)
        return self._best([results.get(job) for job in jobs])

    def enrich(self, candidates: Sequence[StreamCandidate]) -> List[StreamCandidate]:
        """Return candidates with unknown seeder counts replaced by probed values"""
        jobs: List[Tuple[str, str]] = []
        for candidate in candidates:
            if candidate.seeders_known:
                continue
            for tracker in self.udp_trackers(candidate.trackers):
                job = (tracker, candidate.info_hash)
                if job not in jobs:
                    jobs.append(job)
        if not jobs:
            return list(candidates)

        results = self._probe_many(jobs)
        enriched = []
        for candidate in candidates:
            if candidate.seeders_known:
                enriched.append(candidate)
                continue
            stats = [results.get((tracker, candidate.info_hash)) for tracker in self.udp_trackers(candidate.trackers)]
            seeders, _ = self._best(stats)
            enriched.append(candidate.with_seeders(seeders) if seeders >= 0 else candidate)
        return enriched
