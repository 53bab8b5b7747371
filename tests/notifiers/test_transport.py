"""Tests for webhook transports."""

import json

import httpx
import pytest

from build_notifiers.errors import DeliveryError
from build_notifiers.notifiers.transport import DryRunTransport, HttpxWebhookTransport

SECRET_URL = "https://hooks.slack.test/services/T000/B000/SECRET"


def _transport(handler: httpx.MockTransport) -> HttpxWebhookTransport:
    return HttpxWebhookTransport(client=httpx.AsyncClient(transport=handler))


class TestHttpxWebhookTransport:
    """Tests for HttpxWebhookTransport."""

    @pytest.mark.asyncio
    async def test_post_json(self) -> None:
        """Test the payload is posted as JSON."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        transport = _transport(httpx.MockTransport(handler))
        await transport.post(SECRET_URL, {"text": "hello"})
        await transport.close()

        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert json.loads(requests[0].content) == {"text": "hello"}

    @pytest.mark.asyncio
    async def test_error_status(self) -> None:
        """Test non-2xx responses raise DeliveryError with the status."""
        transport = _transport(httpx.MockTransport(lambda _r: httpx.Response(503)))

        with pytest.raises(DeliveryError) as exc_info:
            await transport.post(SECRET_URL, {})

        assert exc_info.value.status_code == 503
        assert "SECRET" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        """Test network failures raise DeliveryError without the URL."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = _transport(httpx.MockTransport(handler))

        with pytest.raises(DeliveryError, match="ConnectError") as exc_info:
            await transport.post(SECRET_URL, {})
        assert "SECRET" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """Test request timeouts raise DeliveryError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        transport = _transport(httpx.MockTransport(handler))

        with pytest.raises(DeliveryError, match="timed out"):
            await transport.post(SECRET_URL, {})

    @pytest.mark.asyncio
    async def test_close_without_client(self) -> None:
        """Test closing an unused transport is a no-op."""
        await HttpxWebhookTransport().close()


class TestDryRunTransport:
    """Tests for DryRunTransport."""

    @pytest.mark.asyncio
    async def test_records_payloads(self) -> None:
        """Test payloads are recorded instead of sent."""
        transport = DryRunTransport()
        await transport.post(SECRET_URL, {"text": "hello"})
        await transport.close()

        assert transport.sent == [{"text": "hello"}]
