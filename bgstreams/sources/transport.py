"""
Source Transports
Pluggable egress strategies used by source adapters to reach tracker sites.

Adapters only describe *what* to fetch (host, path, session cookie); the
transport decides *how*: straight from this host, through the HTTP relay, or
through a pool of in-country SOCKS proxies.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence
from urllib.parse import quote
import logging

import requests

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
BLOCKED_MARKER = "SQL Error"
MIN_BINARY_BYTES = 100


class TransportError(Exception):
    """Raised when a transport cannot produce any response"""


@dataclass(frozen=True)
class TransportResponse:
    status: int
    body: bytes
    via: str = ""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def is_usable_response(response: Optional[TransportResponse], binary: bool = False) -> bool:
    """Status 200 and, for pages, no blocked marker; binary bodies must be non-trivial"""
    if response is None or response.status != 200:
        return False
    if binary:
        return len(response.body) > MIN_BINARY_BYTES
    return BLOCKED_MARKER not in response.text


def _browser_headers(host: str, cookie_header: str) -> dict:
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "bg,en-US;q=0.7,en;q=0.3",
        "Referer": f"https://{host}/",
    }
    if cookie_header:
        headers["Cookie"] = cookie_header
    return headers


class BaseTransport(ABC):
    """Fetches ``https://<host><path>`` on behalf of an adapter"""
    name = "transport"

    def __init__(self, timeout: float = 20.0):
        self.timeout = float(timeout)

    @abstractmethod
    def fetch(self, host: str, path: str, cookie_header: str = "", binary: bool = False,
              timeout: Optional[float] = None) -> TransportResponse:
        """``timeout`` overrides the transport default for this fetch"""
        raise NotImplementedError

    def _timeout(self, timeout: Optional[float]) -> float:
        return self.timeout if timeout is None else float(timeout)


class DirectTransport(BaseTransport):
    """Plain HTTPS from this host"""
    name = "direct"

    def __init__(self, timeout: float = 20.0, session: Optional[requests.Session] = None):
        super().__init__(timeout)
        self.session = session or requests.Session()

    def fetch(self, host, path, cookie_header="", binary=False, timeout=None):
        try:
            response = self.session.get(
                f"https://{host}{path}",
                headers=_browser_headers(host, cookie_header),
                timeout=self._timeout(timeout),
            )
        except requests.RequestException as e:
            raise TransportError(f"Direct fetch of {host} failed: {e}") from e
        return TransportResponse(status=response.status_code, body=response.content, via=self.name)


class RelayTransport(BaseTransport):
    """
    HTTP pass-through relay (edge worker).

    Request shape: ``<relay>/?target=<host>&path=<enc>&cookies=<enc>[&binary=1]``.
    The relay splits on the literal ``&cookies=`` marker, so parameter order matters.
    """
    name = "relay"

    def __init__(self, relay_url: str, timeout: float = 20.0):
        super().__init__(timeout)
        self.relay_url = str(relay_url or "").rstrip("/")

    def build_url(self, host: str, path: str, cookie_header: str = "", binary: bool = False) -> str:
        parts = []
        if host:
            parts.append(f"target={quote(host, safe='')}")
        parts.append(f"path={quote(path, safe='')}")
        parts.append(f"cookies={quote(cookie_header or '', safe='')}")
        if binary:
            parts.append("binary=1")
        return f"{self.relay_url}/?" + "&".join(parts)

    def fetch(self, host, path, cookie_header="", binary=False, timeout=None):
        if not self.relay_url:
            raise TransportError("No relay URL configured")
        try:
            response = requests.get(
                self.build_url(host, path, cookie_header, binary),
                headers={"Accept": "*/*" if binary else "text/html"},
                timeout=self._timeout(timeout),
            )
        except requests.RequestException as e:
            raise TransportError(f"Relay fetch of {host}{path[:60]} failed: {e}") from e
        colo = response.headers.get("x-worker-colo", "unknown") if response.headers else "unknown"
        logger.debug("[Relay] %s%s status=%s colo=%s bytes=%d", host, path[:60], response.status_code, colo,
                     len(response.content or b""))
        return TransportResponse(status=response.status_code, body=response.content or b"", via=self.name)


class ProxyPoolTransport(BaseTransport):
    """Tries each proxy of a ProxyPool in order until one returns a usable response"""
    name = "proxy"

    def __init__(self, pool, timeout: float = 15.0, max_proxies: int = 10):
        super().__init__(timeout)
        self.pool = pool
        self.max_proxies = max(1, int(max_proxies))

    def fetch(self, host, path, cookie_header="", binary=False, timeout=None):
        proxies = self.pool.refresh_if_stale()[:self.max_proxies]
        if not proxies:
            raise TransportError("No proxies available")

        last_problem = ""
        for proxy in proxies:
            try:
                response = requests.get(
                    f"https://{host}{path}",
                    headers=_browser_headers(host, cookie_header),
                    proxies={"http": proxy.url, "https": proxy.url},
                    timeout=self._timeout(timeout),
                )
            except requests.RequestException as e:
                last_problem = f"{proxy.ip}:{proxy.port} error: {e}"
                logger.debug("[Proxy] %s", last_problem)
                continue
            result = TransportResponse(status=response.status_code, body=response.content or b"",
                                       via=f"{self.name}:{proxy.ip}")
            if is_usable_response(result, binary):
                logger.info("[Proxy] Success via %s:%s", proxy.ip, proxy.port)
                return result
            last_problem = f"{proxy.ip}:{proxy.port} status={response.status_code}"
            logger.debug("[Proxy] Unusable response from %s", last_problem)
        raise TransportError(f"All {len(proxies)} proxies failed (last: {last_problem})")


class FallbackTransport(BaseTransport):
    """
    Chain of transports tried in order.

    The first usable response wins; otherwise the last response actually
    received is returned so the adapter can still classify it (login page,
    blocked page, ...). Raises only when no transport answered at all.
    """
    name = "fallback"

    def __init__(self, transports: Sequence[BaseTransport]):
        super().__init__(max((t.timeout for t in transports), default=20.0))
        self.transports: List[BaseTransport] = list(transports)

    def fetch(self, host, path, cookie_header="", binary=False, timeout=None):
        last_response: Optional[TransportResponse] = None
        errors = []
        for transport in self.transports:
            try:
                response = transport.fetch(host, path, cookie_header, binary, timeout)
            except TransportError as e:
                errors.append(str(e))
                logger.warning("[%s] %s failed, trying next transport: %s", host, transport.name, e)
                continue
            if is_usable_response(response, binary):
                return response
            last_response = response
            logger.warning("[%s] %s returned an unusable response (status=%s)", host, transport.name, response.status)
        if last_response is not None:
            return last_response
        raise TransportError("; ".join(errors) or "No transports configured")
