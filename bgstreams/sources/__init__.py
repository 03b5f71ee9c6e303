from .base import BaseSource, SeasonPackPolicy, SourceAuthError
from .transport import (
    BaseTransport,
    DirectTransport,
    FallbackTransport,
    ProxyPoolTransport,
    RelayTransport,
    TransportError,
    TransportResponse,
)

__all__ = [
    "BaseSource",
    "SeasonPackPolicy",
    "SourceAuthError",
    "BaseTransport",
    "DirectTransport",
    "FallbackTransport",
    "ProxyPoolTransport",
    "RelayTransport",
    "TransportError",
    "TransportResponse",
]
