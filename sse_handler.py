"""Server-Sent Events (SSE) relaying and Coze event translation."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional

import httpx
from fastapi.responses import JSONResponse

from errors import StreamInterrupted
from logger import LOGGER_NAME

log = logging.getLogger(LOGGER_NAME)

SSEEventLines = List[str]

STREAM_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

COZE_DELTA_EVENT = "conversation.message.delta"
COZE_COMPLETED_EVENT = "conversation.message.completed"


def sse_event_to_bytes(lines: SSEEventLines) -> bytes:
    """Serialize SSE event lines (without the terminating blank line) to bytes."""
    return ("\n".join(lines) + "\n\n").encode("utf-8")


async def split_sse_lines(chunks: AsyncIterator[str]) -> AsyncGenerator[str, None]:
    """
    Re-split decoded upstream text into lines on "\\n" only.

    A line cut across chunks is held back until its newline arrives. A trailing
    "\\r" is dropped; every other character (U+2028, NEL, form feed...) stays
    inside the line because it may be part of a JSON string.
    """
    carry = ""
    async for chunk in chunks:
        carry += chunk
        *complete, carry = carry.split("\n")
        for line in complete:
            yield line[:-1] if line.endswith("\r") else line
    if carry:
        yield carry[:-1] if carry.endswith("\r") else carry


def sse_data_payload(line: str) -> Optional[str]:
    """
    Return the payload of a ``data:`` line, stripped; None for any other line.

    Accepts "data:x" and "data: x" alike.
    """
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()


def is_done_data_line(line: str) -> bool:
    """
    Accept: "data:[DONE]" / "data: [DONE]" / "data:    [DONE]" (tolerate whitespace)
    """
    return sse_data_payload(line) == "[DONE]"


def extract_delta_text(obj: Any) -> str:
    """Text increment at choices[0].delta.content, or "" when absent."""
    if not isinstance(obj, dict):
        return ""
    choices = obj.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


def coze_event(event: str, content: str) -> bytes:
    """One Coze-style SSE event block carrying an answer fragment."""
    data = json.dumps({"type": "answer", "content": content}, ensure_ascii=False)
    return sse_event_to_bytes([f"event: {event}", f"data: {data}"])


class SSEStreamer:
    """Re-emit an upstream body to the caller, either verbatim or as Coze events."""

    @staticmethod
    async def passthrough(
        chunks: AsyncIterator[bytes],
        provider: str,
    ) -> AsyncGenerator[bytes, None]:
        """Forward each upstream chunk as soon as it arrives."""
        try:
            async for chunk in chunks:
                if chunk:
                    yield chunk
        except httpx.HTTPError as e:
            raise StreamInterrupted(provider, e) from e

    @staticmethod
    async def deepseek_to_coze(
        lines: AsyncIterator[str],
        provider: str = "DeepSeek",
    ) -> AsyncGenerator[bytes, None]:
        """
        Translate a DeepSeek chat.completion.chunk stream into Coze events.

        Every non-empty ``choices[0].delta.content`` becomes one delta event with
        just that increment. ``data: [DONE]`` (or upstream EOF) produces a single
        completed event carrying the accumulated text. Records that are not
        valid JSON are skipped.

        ``lines`` are single SSE lines without terminators, as produced by
        ``split_sse_lines``.
        """
        full_content = ""
        try:
            async for line in lines:
                if is_done_data_line(line):
                    yield coze_event(COZE_COMPLETED_EVENT, full_content)
                    return

                payload = sse_data_payload(line)
                if payload is None:
                    continue

                try:
                    obj = json.loads(payload)
                except ValueError:
                    log.debug("Skipping malformed %s stream record: %r", provider, payload[:200])
                    continue

                text = extract_delta_text(obj)
                if text:
                    full_content += text
                    yield coze_event(COZE_DELTA_EVENT, text)
        except httpx.HTTPError as e:
            raise StreamInterrupted(provider, e) from e

        # Upstream ended without [DONE]
        yield coze_event(COZE_COMPLETED_EVENT, full_content)


async def finalize_json_response(resp: httpx.Response) -> JSONResponse:
    """
    Buffer the upstream JSON body and answer with the upstream status code.

    A body that is not JSON yields a local 500 instead.
    """
    try:
        raw = await resp.aread()
    finally:
        await resp.aclose()

    try:
        data = json.loads(raw)
    except ValueError as e:
        log.error("Error parsing API response status=%s: %s", resp.status_code, e)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to parse API response", "details": str(e)},
        )
    return JSONResponse(status_code=resp.status_code, content=data)
