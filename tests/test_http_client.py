import asyncio

import httpx
import pytest
from pydantic import ValidationError

from courierhub.core.config import Settings
from courierhub.core.http_client import (
    ResilientHTTPClient,
    RetryConfig,
    is_retryable_status,
)


def sequence(*statuses):
    """Handler answering with the given statuses in order, then the last one forever."""
    remaining = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(status, json={"status": status})

    return handler


class TestRetryOnStatus:
    """Status-driven retry behaviour."""

    @pytest.mark.asyncio
    async def test_500_500_200_makes_three_attempts(self, make_http_client):
        client, recorder = make_http_client(sequence(500, 500, 200))

        resp = await client.post("https://vendor.test/rates", json={})
        await client.close()

        assert resp.status_code == 200
        assert recorder.call_count == 3

    @pytest.mark.asyncio
    async def test_404_is_returned_without_retry(self, make_http_client):
        client, recorder = make_http_client(sequence(404, 200))

        resp = await client.get("https://vendor.test/track")
        await client.close()

        assert resp.status_code == 404
        assert recorder.call_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [408, 429, 502, 503])
    async def test_transient_statuses_are_retried(self, make_http_client, status):
        client, recorder = make_http_client(sequence(status, 200))

        resp = await client.get("https://vendor.test/x")
        await client.close()

        assert resp.status_code == 200
        assert recorder.call_count == 2

    @pytest.mark.asyncio
    async def test_persistent_5xx_returns_last_response(self, make_http_client):
        """Exhausted retries hand back the failing response; success is never fabricated."""
        client, recorder = make_http_client(sequence(503))

        resp = await client.get("https://vendor.test/x")
        await client.close()

        assert resp.status_code == 503
        assert recorder.call_count == 3

    @pytest.mark.asyncio
    async def test_per_call_retry_override(self, make_http_client):
        client, recorder = make_http_client(sequence(500))

        resp = await client.request(
            "GET", "https://vendor.test/x", retry_config=RetryConfig(max_retries=0, backoff_ms=0, jitter_ms=0)
        )
        await client.close()

        assert resp.status_code == 500
        assert recorder.call_count == 1

    def test_retryable_status_classification(self):
        assert is_retryable_status(500)
        assert is_retryable_status(599)
        assert is_retryable_status(429)
        assert is_retryable_status(408)
        assert not is_retryable_status(400)
        assert not is_retryable_status(404)
        assert not is_retryable_status(200)


class TestRetryOnTransportErrors:
    """Timeouts and connection failures."""

    @pytest.mark.asyncio
    async def test_connect_error_then_success(self, make_http_client):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(200, json={"ok": True})

        client, recorder = make_http_client(handler)
        resp = await client.get("https://vendor.test/x")
        await client.close()

        assert resp.status_code == 200
        assert recorder.call_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_transport_errors_reraise_last(self, make_http_client):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client, recorder = make_http_client(handler)
        with pytest.raises(httpx.ReadTimeout):
            await client.get("https://vendor.test/x")
        await client.close()

        assert recorder.call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_transport_error_raises_immediately(self, make_http_client):
        def handler(request):
            raise httpx.DecodingError("garbled", request=request)

        client, recorder = make_http_client(handler)
        with pytest.raises(httpx.DecodingError):
            await client.get("https://vendor.test/x")
        await client.close()

        assert recorder.call_count == 1

    @pytest.mark.asyncio
    async def test_deadline_applies_per_attempt(self, make_http_client):
        """A hung first attempt is aborted at its own deadline; the retry gets a fresh one."""
        calls = []

        async def handler(request):
            calls.append(request)
            if len(calls) == 1:
                await asyncio.sleep(5)
            return httpx.Response(200, json={"ok": True})

        client, recorder = make_http_client(
            handler, retry_config=RetryConfig(timeout_ms=50, max_retries=1, backoff_ms=0, jitter_ms=0)
        )
        resp = await client.get("https://vendor.test/x")
        await client.close()

        assert resp.status_code == 200
        assert recorder.call_count == 2


class TestBackoff:
    """Delay formula: backoff_ms * 2^k + jitter."""

    def test_backoff_is_monotonic_and_bounded(self):
        cfg = RetryConfig(backoff_ms=500, jitter_ms=100)
        client = ResilientHTTPClient(retry_config=cfg, rng=lambda: 0.999)

        delays = [client.calculate_backoff(k) for k in range(6)]

        assert delays == sorted(delays)
        for k, delay in enumerate(delays):
            assert 500 * 2 ** k / 1000 <= delay <= (500 * 2 ** k + 100) / 1000

    def test_zero_jitter_is_exact(self):
        client = ResilientHTTPClient(retry_config=RetryConfig(backoff_ms=250, jitter_ms=0))

        assert client.calculate_backoff(0) == 0.25
        assert client.calculate_backoff(2) == 1.0

    @pytest.mark.asyncio
    async def test_sleeps_between_attempts(self, make_http_client, sleeps):
        client, _ = make_http_client(
            sequence(500, 500, 200),
            retry_config=RetryConfig(backoff_ms=100, jitter_ms=0, max_retries=2),
        )
        await client.get("https://vendor.test/x")
        await client.close()

        assert sleeps == [0.1, 0.2]


class TestRetryConfig:
    def test_from_settings(self):
        settings = Settings(
            SHIPPING_HTTP_TIMEOUT_MS=3000,
            SHIPPING_HTTP_MAX_RETRIES=4,
            SHIPPING_HTTP_BACKOFF_MS=50,
            SHIPPING_HTTP_JITTER_MS=10,
        )

        cfg = RetryConfig.from_settings(settings)

        assert cfg == RetryConfig(timeout_ms=3000, max_retries=4, backoff_ms=50, jitter_ms=10)

    def test_negative_settings_rejected(self):
        with pytest.raises(ValidationError):
            Settings(SHIPPING_HTTP_MAX_RETRIES=-1)
