import hashlib
import unittest

from bgstreams.core.ttl_cache import StreamCaches
from bgstreams.models.stream import MediaMeta, SessionCredentials, StreamRequest, TitleFilter
from bgstreams.sources.axel import DEFAULT_PUBLIC_TRACKERS, AxelSource
from bgstreams.sources.transport import BaseTransport, TransportError, TransportResponse

CREDS = SessionCredentials(uid="12345", password="0123456789abcdef0123456789abcdef")
ANNOUNCE = "http://tracker.axelbg.net/announce.php?passkey=abc"


def bencode(value) -> bytes:
    if isinstance(value, int):
        return b"i%de" % value
    if isinstance(value, str):
        value = value.encode("utf-8")
    if isinstance(value, bytes):
        return str(len(value)).encode() + b":" + value
    if isinstance(value, list):
        return b"l" + b"".join(bencode(v) for v in value) + b"e"
    return b"d" + b"".join(bencode(k) + bencode(value[k]) for k in sorted(value)) + b"e"


def torrent_bytes(files):
    info = {
        "name": "release",
        "piece length": 262144,
        "pieces": b"\xaa" * 200,
        "files": [{"length": 1000, "path": [f]} for f in files],
    }
    return bencode({"announce": ANNOUNCE, "info": info}), hashlib.sha1(bencode(info)).hexdigest()


def result_row(result_id, title, size="8,20 GB", seeders=15):
    return f"""
      <tr>
        <td class="lista">
          <a href="details.php?id={result_id}&hit=1">{title}</a>
          <a href="download.php/{result_id}/{title}.torrent"><img src="dl.png"></a>
        </td>
        <td>{size}</td>
        <td><a href="peers.php?id={result_id}&toseeders=1">{seeders}</a></td>
      </tr>"""


def browse_page(*rows):
    return f"""<html><body><a href="logout.php">logout</a>
    <table><tr><td>
      <table>{''.join(rows)}</table>
    </td></tr></table></body></html>"""


class FakeTransport(BaseTransport):
    name = "fake"

    def __init__(self, pages=None, files=None):
        super().__init__(timeout=1)
        self.pages = pages or {}
        self.files = files or {}
        self.calls = []
        self.timeouts = []

    def fetch(self, host, path, cookie_header="", binary=False, timeout=None):
        self.calls.append((host, path, cookie_header, binary))
        self.timeouts.append(timeout)
        if binary:
            body = self.files.get(path)
            if body is None:
                raise TransportError(f"no file for {path}")
            return TransportResponse(200, body, self.name)
        for marker, html in self.pages.items():
            if marker in path:
                return TransportResponse(200, html.encode("utf-8"), self.name)
        return TransportResponse(404, b"", self.name)


class TestAxelParsing(unittest.TestCase):
    def test_innermost_cells_become_results(self):
        source = AxelSource(StreamCaches.create(), FakeTransport())
        html = browse_page(result_row("101", "The.Matrix.1999.1080p.BluRay"),
                           result_row("102", "The.Matrix.1999.720p", size="4.1 GB", seeders=3),
                           result_row("101", "The.Matrix.1999.1080p.BluRay"))
        results = source.parse_results(html)

        self.assertEqual([r.result_id for r in results], ["101", "102"])
        self.assertEqual(results[0].title, "The.Matrix.1999.1080p.BluRay")
        self.assertEqual(results[0].size, "8,20 GB")
        self.assertEqual(results[0].seeders, 15)
        self.assertEqual(results[1].seeders, 3)
        self.assertTrue(results[0].download_ref.startswith("download.php/101/"))

    def test_browse_path_encodes_query(self):
        self.assertIn("search=tt0133093&", AxelSource.browse_path("tt0133093"))
        self.assertIn("search=a%20b", AxelSource.browse_path("a b"))

    def test_queries_use_imdb_id(self):
        source = AxelSource(StreamCaches.create(), FakeTransport())
        request = StreamRequest.parse("movie", "tt0133093")
        self.assertEqual(source.build_queries(request, MediaMeta("The Matrix", 1999)), ["tt0133093"])


class TestAxelStreams(unittest.TestCase):
    def setUp(self):
        self.caches = StreamCaches.create()
        self.settings = {"container_fetch_delay_seconds": 0}

    def test_movie_streams_carry_embedded_and_public_trackers(self):
        body, info_hash = torrent_bytes(["The.Matrix.1999.1080p.mkv"])
        transport = FakeTransport(
            pages={"browse.php": browse_page(result_row("101", "The.Matrix.1999.1080p.BluRay"))},
            files={"/download.php/101/The.Matrix.1999.1080p.BluRay.torrent": body},
        )
        source = AxelSource(self.caches, transport, settings=self.settings)
        streams = source.get_streams(CREDS, "tt0133093", "movie", TitleFilter("The Matrix", 1999))

        self.assertEqual(len(streams), 1)
        stream = streams[0]
        self.assertEqual(stream.info_hash, info_hash)
        self.assertEqual(stream.seeders, 15)
        self.assertEqual(stream.trackers, (ANNOUNCE,) + DEFAULT_PUBLIC_TRACKERS)
        self.assertEqual(transport.calls[0][2], CREDS.cookie_header)
        self.assertTrue(transport.calls[1][3])

    def test_season_pack_resolves_episode(self):
        files = [f"Show.Name.S02E0{n}.mkv" for n in range(1, 7)]
        body, info_hash = torrent_bytes(files)
        transport = FakeTransport(
            pages={"browse.php": browse_page(result_row("7", "Show.Name.S02.1080p.WEB-DL"))},
            files={"/download.php/7/Show.Name.S02.1080p.WEB-DL.torrent": body},
        )
        source = AxelSource(self.caches, transport, settings=self.settings)
        streams = source.get_streams(CREDS, "tt1234567", "series", TitleFilter("Show Name", season=2, episode=5))

        self.assertEqual(len(streams), 1)
        self.assertEqual(streams[0].file_idx, 4)
        self.assertEqual(streams[0].title, "Ep. 5 (from pack)")

    def test_unresolved_container_is_skipped_and_not_cached(self):
        transport = FakeTransport(
            pages={"browse.php": browse_page(result_row("101", "The.Matrix.1999.1080p"))},
            files={"/download.php/101/The.Matrix.1999.1080p.torrent": b"<html>" + b"x" * 200},
        )
        source = AxelSource(self.caches, transport, settings=self.settings)
        self.assertEqual(source.get_streams(CREDS, "tt0133093", "movie", TitleFilter("The Matrix", 1999)), [])
        self.assertEqual(len(self.caches.containers), 0)
        self.assertEqual(len(self.caches.streams), 0)

    def test_blocked_page_yields_nothing_and_is_not_cached(self):
        transport = FakeTransport(pages={"browse.php": "<html>SQL Error near line 1</html>"})
        source = AxelSource(self.caches, transport, settings=self.settings)
        self.assertEqual(source.search(CREDS, "tt0133093"), [])
        self.assertIn("SQL Error", source.last_error)
        source.search(CREDS, "tt0133093")
        self.assertEqual(len(transport.calls), 2)

    def test_login_page_marks_session_expired(self):
        transport = FakeTransport(pages={"browse.php": '<form action="takelogin.php"><a href="login.php">x</a></form>'})
        source = AxelSource(self.caches, transport, settings=self.settings)
        self.assertEqual(source.search(CREDS, "tt0133093"), [])
        self.assertIn("session expired", source.last_error)

    def test_missing_credentials_skip_without_network(self):
        transport = FakeTransport()
        source = AxelSource(self.caches, transport, settings=self.settings)
        self.assertEqual(source.get_streams(None, "tt0133093", "movie"), [])
        self.assertEqual(source.get_streams(SessionCredentials("1", ""), "tt0133093", "movie"), [])
        self.assertEqual(transport.calls, [])

    def test_configured_timeouts_reach_the_transport(self):
        body, _ = torrent_bytes(["The.Matrix.1999.1080p.mkv"])
        transport = FakeTransport(
            pages={"browse.php": browse_page(result_row("101", "The.Matrix.1999.1080p.BluRay"))},
            files={"/download.php/101/The.Matrix.1999.1080p.BluRay.torrent": body},
        )
        settings = dict(self.settings, search_timeout_seconds=7, container_timeout_seconds=9)
        source = AxelSource(self.caches, transport, settings=settings)
        source.get_streams(CREDS, "tt0133093", "movie", TitleFilter("The Matrix", 1999))
        self.assertEqual(transport.timeouts, [7.0, 9.0])

    def test_stream_cache_is_shared_across_sessions(self):
        body, _ = torrent_bytes(["The.Matrix.1999.1080p.mkv"])
        transport = FakeTransport(
            pages={"browse.php": browse_page(result_row("101", "The.Matrix.1999.1080p.BluRay"))},
            files={"/download.php/101/The.Matrix.1999.1080p.BluRay.torrent": body},
        )
        source = AxelSource(self.caches, transport, settings=self.settings)
        first = source.get_streams(CREDS, "tt0133093", "movie", TitleFilter("The Matrix", 1999))
        other = SessionCredentials(uid="999", password="ffffffffffffffffffffffffffffffff")
        second = source.get_streams(other, "tt0133093", "movie", TitleFilter("The Matrix", 1999))
        self.assertEqual(second, first)
        self.assertEqual(len(transport.calls), 2)

    def test_fallback_trackers_setting(self):
        settings = {"fallback_trackers": ["udp://only.example:1/announce"]}
        source = AxelSource(self.caches, FakeTransport(), settings=settings)
        self.assertEqual(source.public_trackers, ["udp://only.example:1/announce"])


if __name__ == "__main__":
    unittest.main()
