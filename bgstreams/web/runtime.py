"""Runtime bootstrap for the BGStreams addon API."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from ..core.event_bus import EventBus, Events
from ..core.settings_manager import DEFAULT_RELAY_URL, SettingsManager
from ..core.stream_aggregator import StreamAggregator
from ..core.tracker_scrape import SeederProber
from ..core.ttl_cache import CacheSweeper, StreamCaches
from ..services.axel_login import AxelLoginClient
from ..services.cinemeta_client import CinemetaClient
from ..services.proxy_pool import ProxyPool
from ..sources.axel import AxelSource
from ..sources.transport import DirectTransport, FallbackTransport, ProxyPoolTransport, RelayTransport
from ..sources.zamunda import ZamundaSource
from ..sources.zamunda_rip import ZamundaRipSource

logger = logging.getLogger(__name__)


@dataclass
class BGStreamsRuntime:
    """Shared service graph used by web endpoints."""

    settings: SettingsManager
    event_bus: EventBus
    caches: StreamCaches
    sweeper: CacheSweeper
    proxy_pool: ProxyPool
    prober: SeederProber
    aggregator: StreamAggregator
    metadata: CinemetaClient
    login_client: AxelLoginClient

    def apply_source_settings(self, _event=None):
        """Push enable flags, order and per-source limits from settings into the aggregator."""
        enabled_sources = self.settings.get("enabled_sources", {}) or {}
        for key in self.aggregator.get_source_keys():
            self.aggregator.enable_source(key, bool(enabled_sources.get(key, False)))
            source = self.aggregator.get_source(key)
            if source is not None:
                source.reload_from_settings()
        self.aggregator.set_order(self.settings.get_source_order())

    def shutdown(self):
        self.sweeper.stop()
        self.aggregator.shutdown()


def build_runtime(settings: Optional[SettingsManager] = None, metadata=None,
                  start_sweeper: bool = True) -> BGStreamsRuntime:
    """Create and wire core services."""

    event_bus = EventBus()
    if settings is None:
        settings = SettingsManager(event_bus=event_bus)
    elif settings.event_bus is None:
        settings.event_bus = event_bus

    caches = StreamCaches.from_settings(settings)
    sweeper = CacheSweeper(caches.all(), float(settings.get("cache_sweep_interval_seconds", 1800.0) or 1800.0))
    proxy_pool = ProxyPool.from_settings(settings)
    prober = SeederProber(
        max_trackers=int(settings.get("udp_scrape_max_trackers", 3) or 3),
        timeout=float(settings.get("udp_scrape_timeout_seconds", 3.0) or 3.0),
    )
    metadata = metadata or CinemetaClient(settings)
    aggregator = StreamAggregator.from_settings(settings, event_bus, metadata=metadata)

    container_timeout = float(settings.get("container_timeout_seconds", 20.0) or 20.0)
    relay = RelayTransport(str(settings.get("relay_url", DEFAULT_RELAY_URL) or DEFAULT_RELAY_URL),
                           timeout=container_timeout)
    direct = [DirectTransport(timeout=container_timeout)] if settings.get("direct_fetch", False) else []
    axel_transport = FallbackTransport(direct + [ProxyPoolTransport(proxy_pool), relay])
    zamunda_transport = FallbackTransport(direct + [relay]) if direct else relay

    aggregator.register(ZamundaRipSource(caches, settings=settings, prober=prober))
    aggregator.register(AxelSource(caches, axel_transport, settings=settings))
    aggregator.register(ZamundaSource(caches, zamunda_transport, settings=settings))

    runtime = BGStreamsRuntime(
        settings=settings,
        event_bus=event_bus,
        caches=caches,
        sweeper=sweeper,
        proxy_pool=proxy_pool,
        prober=prober,
        aggregator=aggregator,
        metadata=metadata,
        login_client=AxelLoginClient(),
    )
    runtime.apply_source_settings()
    event_bus.subscribe(Events.SETTINGS_CHANGED, runtime.apply_source_settings)
    if start_sweeper:
        sweeper.start()
    logger.info("Runtime ready; sources: %s", ", ".join(aggregator.get_enabled_sources()) or "none")
    return runtime
