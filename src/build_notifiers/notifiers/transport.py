"""Delivery channel transports.

Webhook URLs usually embed credentials, so they never appear in log lines or
error messages raised from here.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx

from build_notifiers.errors import DeliveryError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class WebhookTransport(Protocol):
    """Protocol for posting a JSON payload to an endpoint."""

    async def post(self, url: str, payload: Mapping[str, Any]) -> None:
        """Post payload to url.

        Raises:
            DeliveryError: If the endpoint could not be reached or rejected
                the payload.
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...


class HttpxWebhookTransport:
    """Webhook transport using a shared httpx.AsyncClient."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            timeout: HTTP request timeout in seconds.
            headers: Extra headers sent with every request.
            client: Client to use instead of creating one.
        """
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def post(self, url: str, payload: Mapping[str, Any]) -> None:
        client = self._get_client()
        try:
            response = await client.post(url, json=dict(payload), headers=self.headers)
        except httpx.TimeoutException as e:
            raise DeliveryError(f"webhook request timed out: {type(e).__name__}") from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"webhook request failed: {type(e).__name__}") from e

        if not response.is_success:
            raise DeliveryError(
                f"webhook returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        logger.debug("Webhook accepted payload (HTTP %d)", response.status_code)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class DryRunTransport:
    """Transport that logs payloads instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def post(self, url: str, payload: Mapping[str, Any]) -> None:
        self.sent.append(dict(payload))
        logger.info("[dry-run] Would send notification: %s", json.dumps(dict(payload)))

    async def close(self) -> None:
        pass
