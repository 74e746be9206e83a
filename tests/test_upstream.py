"""
Tests for upstream Coze / DeepSeek clients.

Upstream HTTP is faked with httpx.MockTransport.
"""

import asyncio
import json

import httpx
import pytest

from errors import ConfigError, UpstreamError, UpstreamTimeoutError
from upstream import CozeClient, DeepSeekClient, UpstreamClient


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestUpstreamHeaders:
    """Test outbound request construction."""

    def test_deepseek_headers(self, test_config):
        headers = DeepSeekClient(test_config).get_headers()

        assert headers["Authorization"] == "Bearer test-deepseek-key"
        assert headers["Content-Type"] == "application/json"
        assert headers["User-Agent"] == test_config.user_agent

    def test_coze_uses_its_own_key_and_url(self, config_factory):
        client = CozeClient(config_factory(coze_api_key="coze-key"))

        assert client.get_headers()["Authorization"] == "Bearer coze-key"
        assert client.url == "https://coze.test/v1/chat"


class TestUpstreamCall:
    """Test UpstreamClient.call outcomes."""

    @pytest.mark.asyncio
    async def test_success_returns_unconsumed_response(self, test_config):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        async with _client(handler) as http:
            resp = await DeepSeekClient(test_config).call(http, {"model": "deepseek-chat", "messages": []})
            assert resp.status_code == 200
            assert json.loads(await resp.aread()) == {"ok": True}
            await resp.aclose()

        assert len(seen) == 1
        assert str(seen[0].url) == test_config.deepseek_api_url
        assert seen[0].method == "POST"
        assert seen[0].headers["authorization"] == "Bearer test-deepseek-key"
        assert json.loads(seen[0].content) == {"model": "deepseek-chat", "messages": []}

    @pytest.mark.asyncio
    async def test_missing_key_fails_before_network(self, test_config):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={})

        async with _client(handler) as http:
            with pytest.raises(ConfigError):
                await CozeClient(test_config).call(http, {"bot_id": "b1"})

        assert calls == []

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_status_and_body(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, text="rate limited")

        async with _client(handler) as http:
            with pytest.raises(UpstreamError) as exc_info:
                await DeepSeekClient(test_config).call(http, {})

        err = exc_info.value
        assert err.status == 429
        assert err.body == "rate limited"
        assert str(err) == "DeepSeek API error: 429 - rate limited"

    @pytest.mark.asyncio
    async def test_timeout(self, config_factory):
        config = config_factory(request_timeout_ms=50)

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1.0)
            return httpx.Response(200, json={})

        async with _client(handler) as http:
            with pytest.raises(UpstreamTimeoutError) as exc_info:
                await DeepSeekClient(config).call(http, {})

        assert exc_info.value.status is None
        assert "timeout" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_is_upstream_error(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as http:
            with pytest.raises(UpstreamError) as exc_info:
                await DeepSeekClient(test_config).call(http, {})

        assert exc_info.value.status is None
        assert "ConnectError" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_read_error_body_closes_response(self):
        resp = httpx.Response(500, text="boom")

        body = await UpstreamClient.read_error_body(resp)

        assert body == "boom"
        assert resp.is_closed


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
