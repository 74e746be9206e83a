"""Inbound payload classification and Coze -> DeepSeek conversion."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from logger import LOGGER_NAME
from prompts import build_system_prompt

log = logging.getLogger(LOGGER_NAME)

DEFAULT_MODEL = "deepseek-chat"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 500
DEFAULT_STAGE = "Opening"
CONTEXT_PREFIX = "[Context] "

COZE_MARKER_FIELDS = ("bot_id", "user_id", "additional_messages")


def _is_set(value: Any) -> bool:
    """Presence test for optional payload fields: null, "" and 0 count as absent."""
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value != ""
    if isinstance(value, (int, float)):
        return value != 0
    return True


@dataclass(frozen=True)
class NormalizedChatRequest:
    """Chat request in DeepSeek (OpenAI-style) shape."""

    model: str
    messages: Tuple[Tuple[str, str], ...]
    stream: bool = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the DeepSeek API; unset sampling fields are omitted."""
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": role, "content": content} for role, content in self.messages],
            "stream": self.stream,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload


@dataclass(frozen=True)
class CozeRequest:
    """Coze-format payload (bot/user/additional_messages)."""

    raw: Mapping[str, Any] = field(repr=False)
    bot_id: Any = None
    user_id: Any = None
    additional_messages: Any = None
    custom_variables: Any = None
    stream: bool = False

    def conversation_text(self) -> str:
        msgs = self.additional_messages
        if not isinstance(msgs, list) or not msgs:
            return ""
        first = msgs[0]
        if not isinstance(first, dict):
            return ""
        content = first.get("content")
        return content if isinstance(content, str) else ""

    def stage_and_context(self) -> Tuple[str, str]:
        variables = self.custom_variables if isinstance(self.custom_variables, dict) else {}
        stage = variables.get("stage")
        context = variables.get("context")
        return (
            stage if isinstance(stage, str) and stage else DEFAULT_STAGE,
            context if isinstance(context, str) else "",
        )

    def to_chat_request(self, prompt_path: str) -> NormalizedChatRequest:
        """
        Convert to a DeepSeek chat request.

        Message order is always: system prompt, optional "[Context] ..." user
        message, then the conversation text as the last user message.
        """
        stage, context = self.stage_and_context()
        messages: List[Tuple[str, str]] = [("system", build_system_prompt(stage, prompt_path))]
        if context:
            messages.append(("user", CONTEXT_PREFIX + context))
        messages.append(("user", self.conversation_text()))

        return NormalizedChatRequest(
            model=DEFAULT_MODEL,
            messages=tuple(messages),
            stream=self.stream,
            temperature=DEFAULT_TEMPERATURE,
            max_tokens=DEFAULT_MAX_TOKENS,
        )


@dataclass(frozen=True)
class ChatRequest:
    """Chat-format payload (model + messages), DeepSeek's native shape."""

    raw: Mapping[str, Any] = field(repr=False)
    model: str = DEFAULT_MODEL
    messages: Tuple[Any, ...] = ()
    stream: bool = False
    temperature: Any = None
    max_tokens: Any = None

    def to_upstream_payload(self) -> Dict[str, Any]:
        """Caller's payload with defaults applied; sampling fields passed through as given."""
        payload: Dict[str, Any] = {
            "model": self.model or DEFAULT_MODEL,
            "messages": list(self.messages),
            "stream": self.stream,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload


@dataclass(frozen=True)
class UnknownRequest:
    raw: Any = field(repr=False, default=None)


ClassifiedPayload = Union[CozeRequest, ChatRequest, UnknownRequest]


def is_coze_format(payload: Any) -> bool:
    return isinstance(payload, dict) and any(_is_set(payload.get(k)) for k in COZE_MARKER_FIELDS)


def is_chat_format(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and _is_set(payload.get("model"))
        and isinstance(payload.get("messages"), list)
    )


def classify_payload(payload: Any) -> ClassifiedPayload:
    """
    Classify an inbound JSON body.

    The Coze check runs first: a body carrying Coze markers is a CozeRequest even
    if it also has ``model``/``messages``.
    """
    if is_coze_format(payload):
        return CozeRequest(
            raw=payload,
            bot_id=payload.get("bot_id"),
            user_id=payload.get("user_id"),
            additional_messages=payload.get("additional_messages"),
            custom_variables=payload.get("custom_variables"),
            stream=payload.get("stream") is True,
        )
    if is_chat_format(payload):
        return ChatRequest(
            raw=payload,
            model=str(payload.get("model")),
            messages=tuple(payload["messages"]),
            stream=payload.get("stream") is True,
            temperature=payload.get("temperature"),
            max_tokens=payload.get("max_tokens"),
        )
    return UnknownRequest(raw=payload)
