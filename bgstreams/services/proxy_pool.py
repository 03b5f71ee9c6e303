"""
Proxy Pool
Country-filtered public SOCKS proxy list, refreshed only when stale
"""
from dataclasses import dataclass
from typing import Callable, List, Optional
import logging
import threading
import time

import requests

from ..core.settings_manager import DEFAULT_PROXY_LIST_URL

logger = logging.getLogger(__name__)

SOCKS_PROTOCOLS = ("socks5", "socks4")


@dataclass(frozen=True)
class Proxy:
    protocol: str
    ip: str
    port: int

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.ip}:{self.port}"

    @classmethod
    def from_row(cls, row) -> Optional["Proxy"]:
        if not isinstance(row, dict):
            return None
        protocol = str(row.get("protocol", "") or "").strip().lower()
        ip = str(row.get("ip", "") or "").strip()
        try:
            port = int(row.get("port"))
        except (TypeError, ValueError):
            return None
        if protocol not in SOCKS_PROTOCOLS or not ip or not (0 < port < 65536):
            return None
        return cls(protocol=protocol, ip=ip, port=port)


class ProxyPool:
    """
    Holds the last fetched proxy list.

    ``refresh_if_stale()`` refetches when the list is empty or older than the
    TTL; a failed refresh keeps serving the previous (stale) list.
    """

    def __init__(self, list_url: str = DEFAULT_PROXY_LIST_URL, ttl_seconds: float = 300.0,
                 timeout: float = 10.0, clock: Callable[[], float] = time.time):
        self.list_url = list_url
        self.ttl_seconds = float(ttl_seconds)
        self.timeout = float(timeout)
        self._clock = clock
        self._proxies: List[Proxy] = []
        self._fetched_at: Optional[float] = None
        self._lock = threading.RLock()
        self.last_error = ""

    @classmethod
    def from_settings(cls, settings) -> "ProxyPool":
        return cls(
            list_url=str(settings.get("proxy_list_url", DEFAULT_PROXY_LIST_URL) or DEFAULT_PROXY_LIST_URL),
            ttl_seconds=float(settings.get("proxy_list_ttl_seconds", 300.0) or 300.0),
        )

    @property
    def is_stale(self) -> bool:
        with self._lock:
            if not self._proxies or self._fetched_at is None:
                return True
            return self._clock() - self._fetched_at >= self.ttl_seconds

    def refresh_if_stale(self) -> List[Proxy]:
        """Return the current proxy list, fetching a fresh one first when stale"""
        with self._lock:
            if not self.is_stale:
                return list(self._proxies)
            try:
                logger.info("[Proxy] Fetching fresh proxy list...")
                response = requests.get(self.list_url, timeout=self.timeout)
                response.raise_for_status()
                rows = response.json()
            except (requests.RequestException, ValueError) as e:
                self.last_error = f"Proxy list fetch failed: {e}"
                logger.warning("[Proxy] Failed to fetch proxy list: %s", e)
                return list(self._proxies)

            proxies = []
            for row in rows if isinstance(rows, list) else []:
                proxy = Proxy.from_row(row)
                if proxy is not None and proxy not in proxies:
                    proxies.append(proxy)
            self._proxies = proxies
            self._fetched_at = self._clock()
            self.last_error = ""
            logger.info("[Proxy] Got %d SOCKS proxies", len(proxies))
            return list(self._proxies)

    def proxies(self) -> List[Proxy]:
        return self.refresh_if_stale()

    def __len__(self) -> int:
        with self._lock:
            return len(self._proxies)
