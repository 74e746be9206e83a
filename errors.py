"""Relay error types.

Each error carries the HTTP status the relay answers with and the short
``error`` title rendered next to ``details`` in the JSON error body.
"""

from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    status_code = 500
    title = "Proxy Error"


class ValidationError(RelayError):
    """Malformed or unrecognized inbound payload."""

    status_code = 400
    title = "Invalid payload format"

    def __init__(self, details: str, title: Optional[str] = None) -> None:
        super().__init__(details)
        if title:
            self.title = title


class PayloadTooLarge(ValidationError):
    status_code = 413
    title = "Request entity too large"


class ConfigError(RelayError):
    """A required API key or setting is missing."""

    status_code = 500
    title = "Configuration error"


class UpstreamError(RelayError):
    """Non-2xx answer or transport failure from a provider.

    ``status`` is None when no HTTP response was received at all.
    """

    def __init__(self, provider: str, status: Optional[int], body: str) -> None:
        self.provider = provider
        self.status = status
        self.body = body
        if status is None:
            msg = f"{provider} API request failed: {body}"
        else:
            msg = f"{provider} API error: {status} - {body}"
        super().__init__(msg)


class UpstreamTimeoutError(UpstreamError):
    def __init__(self, provider: str, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(provider, None, f"request timeout after {timeout_s:.1f}s")


class StreamInterrupted(RelayError):
    """Upstream stream broke after bytes were already sent to the caller."""

    def __init__(self, provider: str, cause: BaseException) -> None:
        self.provider = provider
        self.cause = cause
        super().__init__(f"{provider} stream interrupted: {type(cause).__name__}: {cause}")
