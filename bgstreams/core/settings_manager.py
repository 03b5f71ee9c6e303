"""
Settings Manager
Handles persistent addon settings with environment overrides
"""
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Optional
import threading

from .event_bus import Events

logger = logging.getLogger(__name__)

# Short provider names accepted in PROVIDERS and the per-request addon config.
PROVIDER_ALIASES = {
    "rip": "zamunda_rip",
    "zamunda_rip": "zamunda_rip",
    "zamundarip": "zamunda_rip",
    "axel": "axel",
    "axelbg": "axel",
    "zamunda": "zamunda",
    "zamunda_ch": "zamunda",
}

SOURCE_KEYS = ("zamunda_rip", "axel", "zamunda")

DEFAULT_RELAY_URL = "https://zamunda-proxy.ilian-vezirski.workers.dev"
DEFAULT_PROXY_LIST_URL = (
    "https://raw.githubusercontent.com/proxifly/free-proxy-list/main/proxies/countries/BG/data.json"
)


def parse_providers(value: Any) -> Optional[Dict[str, bool]]:
    """Map "rip,axel" (or a list) onto enabled flags for every known source; None when nothing is recognised"""
    if value is None:
        return None
    if isinstance(value, str):
        names: Iterable[str] = value.split(",")
    else:
        names = value
    enabled = {key: False for key in SOURCE_KEYS}
    found = False
    for raw in names:
        key = PROVIDER_ALIASES.get(str(raw or "").strip().lower())
        if key:
            enabled[key] = True
            found = True
    return enabled if found else None


class SettingsManager:
    """Manages addon settings with persistence"""

    DEFAULT_SETTINGS = {
        # Sources
        "enabled_sources": {
            "zamunda_rip": True,
            "axel": False,
            "zamunda": False,
        },
        "source_order": ["zamunda_rip", "axel", "zamunda"],
        "max_candidates_per_source": {
            "zamunda_rip": 10,
            "axel": 8,
            "zamunda": 10,
        },
        "container_fetch_delay_seconds": 0.2,

        # Caches
        "search_cache_ttl_seconds": 3600.0,
        "container_cache_ttl_seconds": 86400.0,
        "stream_cache_ttl_seconds": 7200.0,
        "cache_sweep_interval_seconds": 1800.0,

        # Timeouts
        "search_timeout_seconds": 20.0,
        "container_timeout_seconds": 20.0,
        "metadata_timeout_seconds": 10.0,
        "udp_scrape_timeout_seconds": 3.0,
        "udp_scrape_max_trackers": 3,
        "aggregate_timeout_seconds": 45.0,

        # Reliability
        "source_circuit_failure_threshold": 4,
        "source_circuit_cooldown_seconds": 90.0,

        # Egress
        "relay_url": DEFAULT_RELAY_URL,
        "proxy_list_url": DEFAULT_PROXY_LIST_URL,
        "proxy_list_ttl_seconds": 300.0,
        "direct_fetch": False,
        "fallback_trackers": [
            "udp://tracker.opentrackr.org:1337/announce",
            "udp://open.stealth.si:80/announce",
            "udp://exodus.desync.com:6969/announce",
        ],

        # Credentials (session tokens, never raw passwords)
        "axel_uid": "",
        "axel_pass": "",
        "zamunda_uid": "",
        "zamunda_pass": "",

        # Server
        "host": "0.0.0.0",
        "port": 7000,
        "public_url": "",
    }

    ENV_OVERRIDES = {
        "AXEL_UID": "axel_uid",
        "AXEL_PASS": "axel_pass",
        "ZAMUNDA_UID": "zamunda_uid",
        "ZAMUNDA_PASS": "zamunda_pass",
        "WORKER_URL": "relay_url",
        "BGSTREAMS_PUBLIC_URL": "public_url",
        "HOST": "host",
        "PORT": "port",
    }

    def __init__(self, data_dir: Optional[str] = None, environ=None, event_bus=None):
        env = os.environ if environ is None else environ
        data_dir = str(data_dir or env.get("BGSTREAMS_DATA_DIR", "") or "").strip()
        self.settings_dir = Path(data_dir).expanduser() if data_dir else (Path.home() / ".bgstreams")
        self.settings_file = self.settings_dir / "settings.json"
        self.event_bus = event_bus

        self._lock = threading.RLock()
        self._settings: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = self._read_env_overrides(env)
        self._load()

    def _read_env_overrides(self, env) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for env_name, key in self.ENV_OVERRIDES.items():
            value = str(env.get(env_name, "") or "").strip()
            if not value:
                continue
            if key == "port":
                try:
                    overrides[key] = int(value)
                except ValueError:
                    logger.warning("Ignoring non-numeric PORT=%r", value)
                continue
            overrides[key] = value
        providers = parse_providers(env.get("PROVIDERS"))
        if providers:
            overrides["enabled_sources"] = providers
        return overrides

    def _load(self):
        """Load settings from file"""
        with self._lock:
            self._settings = copy.deepcopy(self.DEFAULT_SETTINGS)
            if not self.settings_file.exists():
                return
            try:
                with open(self.settings_file, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
            except (OSError, ValueError) as e:
                logger.error("Error loading settings from %s: %s", self.settings_file, e)
                return
            if not isinstance(loaded, dict):
                return
            self._settings.update(loaded)
            # Deep-merge nested per-source maps so new sources get default values.
            for key in ("enabled_sources", "max_candidates_per_source"):
                nested = loaded.get(key)
                if isinstance(nested, dict):
                    self._settings[key] = {**self.DEFAULT_SETTINGS[key], **nested}

    def _save(self):
        """Save settings to file"""
        with self._lock:
            try:
                self.settings_dir.mkdir(parents=True, exist_ok=True)
                with open(self.settings_file, "w", encoding="utf-8") as f:
                    json.dump(self._settings, f, indent=2)
            except OSError as e:
                logger.error("Error saving settings to %s: %s", self.settings_file, e)

    def _emit_changed(self, keys):
        if self.event_bus is not None:
            self.event_bus.emit(Events.SETTINGS_CHANGED, {"keys": sorted(keys)})

    def get(self, key: str, default=None) -> Any:
        """Get a setting value (environment overrides win)"""
        with self._lock:
            if key in self._overrides:
                return copy.deepcopy(self._overrides[key])
            return copy.deepcopy(self._settings.get(key, default))

    def set(self, key: str, value: Any):
        """Set a setting value and save"""
        with self._lock:
            self._settings[str(key)] = value
            self._save()
        self._emit_changed([str(key)])

    def update(self, settings_dict: Dict[str, Any]):
        """Update multiple settings at once"""
        settings_dict = dict(settings_dict or {})
        with self._lock:
            self._settings.update(settings_dict)
            self._save()
        self._emit_changed(settings_dict.keys())

    def get_all(self) -> Dict[str, Any]:
        """Get all settings with environment overrides applied"""
        with self._lock:
            merged = copy.deepcopy(self._settings)
            merged.update(copy.deepcopy(self._overrides))
            return merged

    def reset(self):
        """Reset to default settings"""
        with self._lock:
            self._settings = copy.deepcopy(self.DEFAULT_SETTINGS)
            self._save()
        self._emit_changed(self.DEFAULT_SETTINGS.keys())

    def get_source_order(self):
        """Configured source order, followed by any known source it omits"""
        order = []
        for key in list(self.get("source_order", []) or []) + list(SOURCE_KEYS):
            key = str(key or "").strip()
            if key and key not in order:
                order.append(key)
        return order
