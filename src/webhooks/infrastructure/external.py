"""
Webhook External Integrations
==============================

Outbound HTTP transport for webhook deliveries, built on httpx.
"""

from typing import Mapping, Optional

import httpx

from src.core import TransientDeliveryException
from src.shared.infrastructure.logging import get_logger
from src.webhooks.application import IWebhookTransport
from src.webhooks.domain import TransportResponse

logger = get_logger(__name__)


class HttpxWebhookTransport(IWebhookTransport):
    """
    httpx-based transport.

    Every status code is returned to the caller, which decides success.
    Timeouts and network failures become TransientDeliveryException.
    Redirects are not followed.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._http_client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(follow_redirects=False)
        return self._http_client

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes,
        timeout_seconds: float
    ) -> TransportResponse:
        client = await self._get_client()

        try:
            response = await client.request(
                method,
                url,
                headers=dict(headers),
                content=body,
                timeout=timeout_seconds
            )
        except httpx.TimeoutException as e:
            raise TransientDeliveryException(
                f"Request timed out after {timeout_seconds:g}s",
                details={"url": url, "error": str(e)}
            ) from e
        except httpx.HTTPError as e:
            raise TransientDeliveryException(
                f"Request failed: {e.__class__.__name__}: {e}",
                details={"url": url}
            ) from e

        return TransportResponse(
            status_code=response.status_code,
            reason=response.reason_phrase,
            text=response.text,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
