import json
import os
import tempfile
import unittest

from bgstreams.core.event_bus import EventBus, Events
from bgstreams.core.settings_manager import SettingsManager, parse_providers


class TestParseProviders(unittest.TestCase):
    def test_aliases(self):
        self.assertEqual(parse_providers("rip, AXEL"), {"zamunda_rip": True, "axel": True, "zamunda": False})
        self.assertEqual(parse_providers(["zamunda_ch"]), {"zamunda_rip": False, "axel": False, "zamunda": True})

    def test_unknown_or_missing(self):
        self.assertIsNone(parse_providers("nope,"))
        self.assertIsNone(parse_providers(None))


class TestSettingsManager(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def make(self, environ=None, event_bus=None):
        return SettingsManager(data_dir=self.tmp.name, environ=environ or {}, event_bus=event_bus)

    def test_defaults(self):
        settings = self.make()
        self.assertEqual(settings.get("enabled_sources"), {"zamunda_rip": True, "axel": False, "zamunda": False})
        self.assertEqual(settings.get("search_cache_ttl_seconds"), 3600.0)
        self.assertEqual(settings.get("missing", "fallback"), "fallback")

    def test_set_persists_and_reloads(self):
        settings = self.make()
        settings.set("aggregate_timeout_seconds", 12.5)
        with open(os.path.join(self.tmp.name, "settings.json"), encoding="utf-8") as f:
            self.assertEqual(json.load(f)["aggregate_timeout_seconds"], 12.5)
        self.assertEqual(self.make().get("aggregate_timeout_seconds"), 12.5)

    def test_nested_maps_merge_with_defaults(self):
        with open(os.path.join(self.tmp.name, "settings.json"), "w", encoding="utf-8") as f:
            json.dump({"enabled_sources": {"axel": True}}, f)
        settings = self.make()
        self.assertEqual(settings.get("enabled_sources"), {"zamunda_rip": True, "axel": True, "zamunda": False})

    def test_corrupt_file_falls_back_to_defaults(self):
        with open(os.path.join(self.tmp.name, "settings.json"), "w", encoding="utf-8") as f:
            f.write("{not json")
        self.assertEqual(self.make().get("port"), 7000)

    def test_environment_overrides_win_and_are_not_persisted(self):
        env = {
            "AXEL_UID": "42",
            "AXEL_PASS": "0123456789abcdef0123456789abcdef",
            "WORKER_URL": "https://relay.example",
            "PORT": "8080",
            "PROVIDERS": "rip,zamunda",
        }
        settings = self.make(environ=env)
        self.assertEqual(settings.get("axel_uid"), "42")
        self.assertEqual(settings.get("relay_url"), "https://relay.example")
        self.assertEqual(settings.get("port"), 8080)
        self.assertEqual(settings.get("enabled_sources"), {"zamunda_rip": True, "axel": False, "zamunda": True})

        settings.set("port", 9000)
        self.assertEqual(settings.get("port"), 8080)
        with open(os.path.join(self.tmp.name, "settings.json"), encoding="utf-8") as f:
            stored = json.load(f)
        self.assertEqual(stored["axel_uid"], "")
        self.assertEqual(stored["port"], 9000)

    def test_bad_port_ignored(self):
        self.assertEqual(self.make(environ={"PORT": "eighty"}).get("port"), 7000)

    def test_get_returns_copies(self):
        settings = self.make()
        settings.get("enabled_sources")["axel"] = True
        self.assertFalse(settings.get("enabled_sources")["axel"])

    def test_changes_emit_event(self):
        bus = EventBus()
        seen = []
        bus.subscribe(Events.SETTINGS_CHANGED, seen.append)
        settings = self.make(event_bus=bus)
        settings.update({"source_order": ["axel"], "port": 1})
        self.assertEqual(seen, [{"keys": ["port", "source_order"]}])

    def test_source_order_appends_missing_sources(self):
        settings = self.make()
        settings.set("source_order", ["zamunda", "bogus", "zamunda"])
        self.assertEqual(settings.get_source_order(), ["zamunda", "bogus", "zamunda_rip", "axel"])

    def test_reset(self):
        settings = self.make()
        settings.set("port", 1)
        settings.reset()
        self.assertEqual(settings.get("port"), 7000)


if __name__ == "__main__":
    unittest.main()
