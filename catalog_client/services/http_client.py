import httpx
from typing import Optional, Dict, Any
import logging

from catalog_client.config import settings

logger = logging.getLogger(__name__)

# Enable HTTP/2 only when the optional 'h2' package is installed
try:
    import h2  # type: ignore  # noqa: F401
    _HTTP2_AVAILABLE = True
except ImportError:
    _HTTP2_AVAILABLE = False
    logger.debug("HTTP/2 disabled: 'h2' package is not installed.")


class CatalogHTTPClient:
    """Pooled async HTTP client bound to the catalog API base URL"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.api_url).rstrip("/")

        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0
        )

        # Every call is capped so a stalled server cannot leave the UI loading forever
        total = timeout if timeout is not None else settings.http_timeout
        timeout_config = httpx.Timeout(
            timeout=total,
            connect=connect_timeout if connect_timeout is not None else settings.connect_timeout,
        )

        client_kwargs: Dict[str, Any] = {
            "base_url": self.base_url,
            "limits": limits,
            "timeout": timeout_config,
            "follow_redirects": True,
            "headers": {"Accept": "application/json"},
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        else:
            client_kwargs["http2"] = _HTTP2_AVAILABLE

        self._client = httpx.AsyncClient(**client_kwargs)

    async def request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> httpx.Response:
        """Send a request relative to the base URL, adding a bearer token when given"""
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return await self._client.request(method, path, headers=headers, **kwargs)

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def close(self):
        """Close the underlying connection pool"""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Process-wide client instance
_global_client: Optional[CatalogHTTPClient] = None


async def get_http_client() -> CatalogHTTPClient:
    """Return the shared HTTP client, creating it on first use"""
    global _global_client
    if _global_client is None or _global_client.is_closed:
        _global_client = CatalogHTTPClient()
    return _global_client


async def cleanup_http_client():
    """Close and forget the shared HTTP client"""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
