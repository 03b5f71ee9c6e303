import socket
import struct
import threading
import time
import unittest

from bgstreams.core.tracker_scrape import ScrapeStats, SeederProber, scrape_udp
from bgstreams.models.stream import StreamCandidate

HASH_A = "a" * 40
HASH_B = "b" * 40


class FakeUdpTracker:
    """Minimal UDP tracker answering connect and scrape requests"""

    def __init__(self, seeders=7, leechers=3, answer=True):
        self.seeders = seeders
        self.leechers = leechers
        self.answer = answer
        self.scraped_hashes = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.2)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def url(self):
        return f"udp://127.0.0.1:{self.sock.getsockname()[1]}/announce"

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, *exc):
        self._stop.set()
        self._thread.join(2)
        self.sock.close()

    def _serve(self):
        while not self._stop.is_set():
            try:
                data, addr = self.sock.recvfrom(2048)
            except socket.timeout:
                continue
            except OSError:
                return
            if not self.answer:
                continue
            action = struct.unpack(">I", data[8:12])[0]
            tid = data[12:16]
            if action == 0 and len(data) == 16:
                self.sock.sendto(struct.pack(">I", 0) + tid + b"\x01" * 8, addr)
            elif action == 2 and len(data) >= 36:
                self.scraped_hashes.append(data[16:36].hex())
                body = struct.pack(">III", self.seeders, 11, self.leechers)
                self.sock.sendto(struct.pack(">I", 2) + tid + body, addr)


def candidate(info_hash, trackers, seeders=-1):
    return StreamCandidate(info_hash=info_hash, title="Movie 2020", source="BGTorrents",
                           trackers=tuple(trackers), seeders=seeders)


class TestScrapeUdp(unittest.TestCase):
    def test_scrape_round_trip(self):
        with FakeUdpTracker(seeders=42, leechers=5) as tracker:
            stats = scrape_udp(tracker.url, HASH_A.upper(), timeout=2)
            self.assertEqual(stats, ScrapeStats(seeders=42, completed=11, leechers=5))
            self.assertEqual(tracker.scraped_hashes, [HASH_A])

    def test_silent_tracker_times_out(self):
        with FakeUdpTracker(answer=False) as tracker:
            self.assertIsNone(scrape_udp(tracker.url, HASH_A, timeout=0.3))

    def test_non_udp_and_bad_hash(self):
        self.assertIsNone(scrape_udp("http://tracker.example/announce", HASH_A))
        self.assertIsNone(scrape_udp("udp://127.0.0.1:6969/announce", "nothex"))


class TestSeederProber(unittest.TestCase):
    def test_best_answer_across_trackers(self):
        with FakeUdpTracker(seeders=3) as low, FakeUdpTracker(seeders=9, leechers=2) as high:
            prober = SeederProber(timeout=2)
            self.assertEqual(prober.get_seeders([low.url, high.url], HASH_A), (9, 2))

    def test_no_udp_trackers_is_unknown(self):
        prober = SeederProber(scrape=lambda *a: self.fail("should not scrape"))
        self.assertEqual(prober.get_seeders(["http://t.example/announce"], HASH_A), (-1, -1))

    def test_tracker_limit(self):
        prober = SeederProber(max_trackers=2)
        trackers = ["udp://a:1", "udp://b:1", "udp://a:1", "udp://c:1"]
        self.assertEqual(prober.udp_trackers(trackers), ["udp://a:1", "udp://b:1"])

    def test_enrich_only_unknown_candidates(self):
        calls = []

        def fake_scrape(tracker, info_hash, timeout):
            calls.append((tracker, info_hash))
            if tracker == "udp://dead:1":
                raise OSError("unreachable")
            return ScrapeStats(seeders=12, completed=0, leechers=1)

        prober = SeederProber(scrape=fake_scrape)
        known = candidate(HASH_A, ["udp://t:1"], seeders=4)
        unknown = candidate(HASH_B, ["udp://dead:1", "udp://t:1"])
        silent = candidate("c" * 40, ["udp://dead:1"])
        result = prober.enrich([known, unknown, silent])

        self.assertEqual([c.seeders for c in result], [4, 12, -1])
        self.assertNotIn(("udp://t:1", HASH_A), calls)

    def test_slow_trackers_all_answer_within_their_timeout(self):
        def slow_scrape(tracker, info_hash, timeout):
            time.sleep(timeout * 0.8)
            return ScrapeStats(seeders=7, completed=0, leechers=0)

        prober = SeederProber(timeout=3.0, scrape=slow_scrape)
        candidates = [
            candidate(f"{n:040x}", [f"udp://t{k}.example:1/announce" for k in range(3)])
            for n in range(10)
        ]
        started = time.monotonic()
        result = prober.enrich(candidates)
        self.assertEqual([c.seeders for c in result], [7] * 10)
        self.assertLess(time.monotonic() - started, 3.0 + 2.0)


if __name__ == "__main__":
    unittest.main()
