import hashlib
import unittest

from bgstreams.core.container_parser import (
    extract_announce,
    extract_content_hash,
    extract_magnet_hash,
    extract_video_files,
    parse_container,
    parse_magnet,
)


def bencode(value) -> bytes:
    if isinstance(value, int):
        return b"i%de" % value
    if isinstance(value, str):
        value = value.encode("utf-8")
    if isinstance(value, bytes):
        return str(len(value)).encode() + b":" + value
    if isinstance(value, list):
        return b"l" + b"".join(bencode(v) for v in value) + b"e"
    if isinstance(value, dict):
        out = b"d"
        for key in sorted(value):
            out += bencode(key) + bencode(value[key])
        return out + b"e"
    raise TypeError(type(value))


def make_torrent(announce="udp://tracker.example.org:1337/announce", files=None, name="Show S02"):
    files = files if files is not None else ["Show S02E01.mkv", "Show S02E02.mkv", "notes.txt"]
    info = {
        "name": name,
        "piece length": 262144,
        "pieces": b"\x00\x01\x02" * 20,
        "files": [{"length": 100 + i, "path": [f]} for i, f in enumerate(files)],
    }
    meta = {"info": info, "comment": "test"}
    if announce is not None:
        meta["announce"] = announce
    return bencode(meta), bencode(info)


class TestContentHash(unittest.TestCase):
    def test_hash_is_sha1_of_info_span(self):
        torrent, info = make_torrent()
        self.assertEqual(extract_content_hash(torrent), hashlib.sha1(info).hexdigest())

    def test_hash_ignores_bytes_outside_info(self):
        first, _ = make_torrent(announce="udp://a.example:80/announce")
        second, _ = make_torrent(announce="udp://b.example:6969/announce")
        self.assertEqual(extract_content_hash(first), extract_content_hash(second))
        self.assertEqual(extract_content_hash(first), extract_content_hash(first))

    def test_missing_marker_or_truncation_yields_none(self):
        torrent, _ = make_torrent()
        self.assertIsNone(extract_content_hash(b"d8:announce3:abce"))
        self.assertIsNone(extract_content_hash(torrent[:-12]))
        self.assertIsNone(extract_content_hash(b""))

    def test_nested_lists_and_integers_are_skipped(self):
        info = bencode({"a": [[1, 2], {"x": [b"e", b"d"]}], "name": "x"})
        torrent = b"d4:info" + info + b"e"
        self.assertEqual(extract_content_hash(torrent), hashlib.sha1(info).hexdigest())


class TestAnnounceAndFiles(unittest.TestCase):
    def test_announce_is_returned_verbatim(self):
        torrent, _ = make_torrent(announce="http://bt.example.bg/announce.php?passkey=abc")
        self.assertEqual(extract_announce(torrent), "http://bt.example.bg/announce.php?passkey=abc")

    def test_announce_absent(self):
        torrent, _ = make_torrent(announce=None)
        self.assertIsNone(extract_announce(torrent))

    def test_video_files_in_discovery_order(self):
        torrent, _ = make_torrent()
        files = extract_video_files(torrent)
        self.assertEqual([f.name for f in files], ["Show S02E01.mkv", "Show S02E02.mkv"])
        self.assertEqual([f.index for f in files], [0, 1])

    def test_video_files_dedupe_case_insensitively(self):
        torrent, _ = make_torrent(files=["Movie.2020.mkv", "MOVIE.2020.MKV"])
        self.assertEqual(len(extract_video_files(torrent)), 1)

    def test_cyrillic_names_survive(self):
        torrent, _ = make_torrent(files=["Сериал S01E01.mkv"])
        names = [f.name for f in extract_video_files(torrent)]
        self.assertEqual(names, ["Сериал S01E01.mkv"])

    def test_parse_container(self):
        torrent, info = make_torrent()
        parsed = parse_container(torrent)
        self.assertEqual(parsed.info_hash, hashlib.sha1(info).hexdigest())
        self.assertEqual(parsed.announce, "udp://tracker.example.org:1337/announce")
        self.assertEqual(len(parsed.files), 2)
        self.assertIsNone(parse_container(b"<html>login</html>"))


class TestMagnet(unittest.TestCase):
    HEX = "0123456789abcdef0123456789abcdef01234567"

    def test_hex_hash_lowercased(self):
        self.assertEqual(extract_magnet_hash(f"magnet:?xt=urn:btih:{self.HEX.upper()}"), self.HEX)

    def test_base32_hash_converted(self):
        import base64
        b32 = base64.b32encode(bytes.fromhex(self.HEX)).decode()
        self.assertEqual(extract_magnet_hash(f"magnet:?xt=urn:btih:{b32}"), self.HEX)

    def test_parse_magnet_trackers(self):
        magnet = (
            f"magnet:?xt=urn:btih:{self.HEX}&dn=Show"
            "&tr=udp%3A%2F%2Ftracker.one%3A1337%2Fannounce"
            "&tr=udp%3A%2F%2Ftracker.two%3A80%2Fannounce"
        )
        info = parse_magnet(magnet)
        self.assertEqual(info.info_hash, self.HEX)
        self.assertEqual(info.trackers, ("udp://tracker.one:1337/announce", "udp://tracker.two:80/announce"))
        self.assertEqual(info.files, ())

    def test_bad_magnet(self):
        self.assertIsNone(parse_magnet("magnet:?xt=urn:btih:nothex"))
        self.assertIsNone(parse_magnet(""))


if __name__ == "__main__":
    unittest.main()
