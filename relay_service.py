"""
Coze / DeepSeek relay service.

Accepts chat requests in either the Coze format (bot_id / user_id /
additional_messages) or the DeepSeek chat format (model + messages) on
POST /api/relay and forwards them upstream:

  Coze format     -> Coze (when USE_COZE and a key are set), falling back to
                     DeepSeek with a converted request; DeepSeek streams are
                     re-expressed as Coze events.
  DeepSeek format -> DeepSeek only, relayed unmodified.
"""

from __future__ import annotations

import contextlib
import json
import logging
import uuid
from enum import Enum
from typing import Any, AsyncGenerator, Dict, Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from config import AppConfig, load_config
from errors import ConfigError, PayloadTooLarge, RelayError, StreamInterrupted, ValidationError
from logger import LOGGER_NAME, bind_request_id, setup_logging
from models import ChatRequest, CozeRequest, classify_payload
from sse_handler import STREAM_HEADERS, SSEStreamer, finalize_json_response, split_sse_lines
from upstream import CozeClient, DeepSeekClient, UpstreamClient
from utils import dump_config, load_env_files

__version__ = "1.0.0"

RELAY_PATH = "/api/relay"

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

UNKNOWN_FORMAT_DETAILS = (
    "Payload must be in Coze format (bot_id, user_id, additional_messages) "
    "or DeepSeek format (model, messages)"
)

log = logging.getLogger(LOGGER_NAME)


class RelayState(str, Enum):
    ROUTING = "routing"
    DISPATCHING = "dispatching"
    RESPONDING = "responding"
    DONE = "done"
    ERROR = "error"


class OutputMode(str, Enum):
    """How the winning upstream response is re-emitted to the caller."""

    COZE_NATIVE = "coze-native"
    COZE_EVENTS = "coze-events"  # DeepSeek answer re-expressed in Coze vocabulary
    DEEPSEEK_NATIVE = "deepseek-native"


def _log_state(state: RelayState, note: str = "") -> None:
    log.debug("state=%s %s", state.value, note)


class RelayOrchestrator:
    """Route one request: classify, pick the provider, dispatch, respond."""

    def __init__(
        self,
        config: AppConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self.coze = CozeClient(config)
        self.deepseek = DeepSeekClient(config)
        self.streamer = SSEStreamer()

    def new_http_client(self) -> httpx.AsyncClient:
        # Per-call deadline is enforced by UpstreamClient.call; no read timeout so long streams survive.
        connect_timeout = min(30.0, self._config.request_timeout_s)
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=connect_timeout, write=connect_timeout, pool=connect_timeout, read=None
            ),
            transport=self._transport,
        )

    async def handle(self, body: Any) -> Response:
        _log_state(RelayState.ROUTING)
        if not self._config.deepseek_api_key:
            raise ConfigError("DEEPSEEK_API_KEY is required")

        payload = classify_payload(body)
        if isinstance(payload, CozeRequest):
            log.info("Detected Coze format payload stream=%s", payload.stream)
            return await self._handle_coze(payload)
        if isinstance(payload, ChatRequest):
            log.info(
                "Detected DeepSeek format payload model=%s stream=%s",
                payload.model,
                payload.stream,
            )
            return await self._handle_chat(payload)

        _log_state(RelayState.ERROR, "unknown payload format")
        raise ValidationError(UNKNOWN_FORMAT_DETAILS)

    async def _handle_coze(self, payload: CozeRequest) -> Response:
        """Coze first when enabled; any Coze failure falls through to DeepSeek once."""
        client = self.new_http_client()
        try:
            if self._config.coze_enabled:
                _log_state(RelayState.DISPATCHING, "provider=Coze")
                try:
                    resp = await self.coze.call(client, payload.raw)
                except Exception as e:
                    log.warning("Coze API call failed, falling back to DeepSeek: %s", e)
                else:
                    log.info("Coze API call successful")
                    return await self._respond(
                        client, self.coze, resp, payload.stream, OutputMode.COZE_NATIVE
                    )
            else:
                log.info("Coze API not enabled or not configured, using DeepSeek directly")

            chat = payload.to_chat_request(self._config.system_prompt_path)
            log.info("Routing to DeepSeek API (converted from Coze format)")
            _log_state(RelayState.DISPATCHING, "provider=DeepSeek converted=true")
            resp = await self.deepseek.call(client, chat.to_payload())
            return await self._respond(
                client, self.deepseek, resp, payload.stream, OutputMode.COZE_EVENTS
            )
        except Exception:
            with contextlib.suppress(Exception):
                await client.aclose()
            raise

    async def _handle_chat(self, payload: ChatRequest) -> Response:
        """DeepSeek-format requests go to DeepSeek only and are never converted."""
        if not payload.messages:
            raise ValidationError("'messages' array cannot be empty", title="Invalid request body")

        client = self.new_http_client()
        try:
            _log_state(RelayState.DISPATCHING, "provider=DeepSeek converted=false")
            resp = await self.deepseek.call(client, payload.to_upstream_payload())
            return await self._respond(
                client, self.deepseek, resp, payload.stream, OutputMode.DEEPSEEK_NATIVE
            )
        except Exception:
            with contextlib.suppress(Exception):
                await client.aclose()
            raise

    async def _respond(
        self,
        client: httpx.AsyncClient,
        upstream: UpstreamClient,
        resp: httpx.Response,
        stream: bool,
        mode: OutputMode,
    ) -> Response:
        _log_state(RelayState.RESPONDING, f"mode={mode.value} stream={stream}")
        if not stream:
            try:
                return await finalize_json_response(resp)
            finally:
                await client.aclose()
                _log_state(RelayState.DONE)

        if mode is OutputMode.COZE_EVENTS:
            lines = split_sse_lines(resp.aiter_text())
            events = self.streamer.deepseek_to_coze(lines, upstream.provider)
        else:
            events = self.streamer.passthrough(resp.aiter_bytes(), upstream.provider)

        return StreamingResponse(
            self._guarded_stream(events, client, resp),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )

    @staticmethod
    async def _guarded_stream(
        events: AsyncGenerator[bytes, None],
        client: httpx.AsyncClient,
        resp: httpx.Response,
    ) -> AsyncGenerator[bytes, None]:
        """
        Drive the relay generator and always release the upstream connection.

        A broken upstream ends the caller's stream cleanly; bytes already sent stay sent.
        """
        try:
            async for b in events:
                yield b
            _log_state(RelayState.DONE)
        except StreamInterrupted as e:
            _log_state(RelayState.ERROR, "stream interrupted")
            log.error("Stream relay ended early: %s", e)
        finally:
            with contextlib.suppress(Exception):
                await events.aclose()
            with contextlib.suppress(Exception):
                await resp.aclose()
            with contextlib.suppress(Exception):
                await client.aclose()


async def read_json_body(request: Request, max_size: int) -> Dict[str, Any]:
    """Enforce the body size limit and parse the body as a JSON object."""
    cl = request.headers.get("content-length")
    if cl:
        try:
            n = int(cl)
        except ValueError:
            raise ValidationError(f"Invalid Content-Length header: {cl!r}", title="Invalid request body")
        if n < 0:
            raise ValidationError("Invalid Content-Length: must be non-negative", title="Invalid request body")
        if n > max_size:
            raise PayloadTooLarge(f"Request size exceeds maximum of {max_size} bytes")

    raw = await request.body()
    if len(raw) > max_size:
        raise PayloadTooLarge(f"Request size exceeds maximum of {max_size} bytes")

    try:
        body = json.loads(raw)
    except ValueError:
        raise ValidationError("Request body must be a valid JSON object", title="Invalid request body")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a valid JSON object", title="Invalid request body")
    return body


def _request_id(request: Request) -> str:
    return (
        (request.headers.get("x-request-id") or "").strip()
        or (request.headers.get("x-correlation-id") or "").strip()
        or uuid.uuid4().hex
    )


def create_app(
    config: AppConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the relay application around an already-loaded config."""
    orchestrator = RelayOrchestrator(config, transport=transport)

    app = FastAPI(title="coze-relay", version=__version__)
    app.state.config = config
    app.state.orchestrator = orchestrator

    @app.middleware("http")
    async def cors_middleware(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        if exc.status_code >= 500:
            log.error("Relay error status=%s %s: %s", exc.status_code, exc.title, exc)
        else:
            log.warning("Rejected request status=%s %s: %s", exc.status_code, exc.title, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.title, "details": str(exc)},
        )

    @app.get("/health")
    async def health() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    @app.post(RELAY_PATH)
    async def relay(request: Request) -> Response:
        """Relay one chat request to Coze or DeepSeek."""
        # Left bound for the rest of this request task so streamed chunks are tagged too.
        bind_request_id(_request_id(request))
        body = await read_json_body(request, config.max_request_size)

        client_ip = request.client.host if request.client else "unknown"
        log.info("Incoming relay from=%s", client_ip)
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Incoming payload: %s", json.dumps(body, ensure_ascii=False)[:4000])

        try:
            return await orchestrator.handle(body)
        except RelayError:
            raise
        except Exception as e:
            log.exception("Proxy error")
            raise RelayError(str(e)) from e

    @app.api_route(RELAY_PATH, methods=["GET", "PUT", "DELETE", "PATCH"])
    async def relay_method_not_allowed() -> JSONResponse:
        return JSONResponse(status_code=405, content={"error": "Method Not Allowed"})

    return app


# Load environment, configuration and logging once per process
load_env_files()
config = load_config()
config.validate(require_api_key=False)
setup_logging(config.log_path, config.log_level, config.log_format)
dump_config(config)

app = create_app(config)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)
