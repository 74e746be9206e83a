"""Upstream Coze / DeepSeek API communication."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict

import httpx

from config import AppConfig
from errors import ConfigError, UpstreamError, UpstreamTimeoutError
from logger import LOGGER_NAME

log = logging.getLogger(LOGGER_NAME)


class UpstreamClient:
    """One chat provider reached with a bearer key over a single POST."""

    provider = "upstream"

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def api_key(self) -> str:
        raise NotImplementedError

    @property
    def url(self) -> str:
        raise NotImplementedError

    def get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
        }

    async def call(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> httpx.Response:
        """
        POST ``payload`` and return the response with its body still unread.

        The timeout covers everything up to the response headers. Non-2xx
        answers are drained, closed and raised as UpstreamError.
        """
        if not self.api_key:
            raise ConfigError(f"{self.provider} API key not configured")

        timeout_s = self._config.request_timeout_s
        req = client.build_request("POST", self.url, headers=self.get_headers(), json=payload)

        t0 = time.time()
        try:
            resp = await asyncio.wait_for(client.send(req, stream=True), timeout=timeout_s)
        except asyncio.TimeoutError:
            log.warning("%s request timed out after %.1fs", self.provider, timeout_s)
            raise UpstreamTimeoutError(self.provider, timeout_s)
        except httpx.TimeoutException:
            log.warning("%s request timed out (transport) after %.1fs", self.provider, timeout_s)
            raise UpstreamTimeoutError(self.provider, timeout_s)
        except httpx.HTTPError as e:
            log.warning("%s request failed: %s: %s", self.provider, type(e).__name__, e)
            raise UpstreamError(self.provider, None, f"{type(e).__name__}: {e}") from e

        dt = (time.time() - t0) * 1000
        log.info("Upstream %s status=%s ms=%.1f", self.provider, resp.status_code, dt)

        if not resp.is_success:
            body = await self.read_error_body(resp)
            log.warning(
                "Upstream %s error status=%s content-type=%s body=%s",
                self.provider,
                resp.status_code,
                resp.headers.get("content-type", ""),
                body[:500],
            )
            raise UpstreamError(self.provider, resp.status_code, body)

        return resp

    @staticmethod
    async def read_error_body(resp: httpx.Response) -> str:
        """Read the whole error body, then close the response."""
        try:
            raw = await resp.aread()
        except httpx.HTTPError as e:
            return f"<unreadable error body: {type(e).__name__}>"
        finally:
            await resp.aclose()
        return raw.decode("utf-8", errors="replace")


class CozeClient(UpstreamClient):
    """Coze chat API; receives the caller's Coze payload unmodified."""

    provider = "Coze"

    @property
    def api_key(self) -> str:
        return self._config.coze_api_key

    @property
    def url(self) -> str:
        return self._config.coze_api_url


class DeepSeekClient(UpstreamClient):
    """DeepSeek chat completions API."""

    provider = "DeepSeek"

    @property
    def api_key(self) -> str:
        return self._config.deepseek_api_key

    @property
    def url(self) -> str:
        return self._config.deepseek_api_url
