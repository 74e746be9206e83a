"""
Tests for payload classification and Coze -> DeepSeek conversion.

Tests cover:
- Format detection order and presence rules
- Message layout produced by the converter
- Defaults for stage, context, sampling fields
- System prompt template loading
"""

import json

import pytest

from models import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    ChatRequest,
    CozeRequest,
    NormalizedChatRequest,
    UnknownRequest,
    classify_payload,
)
from prompts import FALLBACK_TEMPLATE, build_system_prompt, load_prompt_template

FALLBACK_PATH = "/nonexistent/relay_prompt.txt"


# ============================================================================
# Format Detection Tests
# ============================================================================

class TestClassifyPayload:
    """Test inbound payload classification."""

    @pytest.mark.parametrize("marker", ["bot_id", "user_id", "additional_messages"])
    def test_any_coze_marker_is_coze(self, marker):
        value = [{"content": "hi"}] if marker == "additional_messages" else "x1"
        assert isinstance(classify_payload({marker: value}), CozeRequest)

    def test_coze_wins_over_chat_fields(self):
        """A payload satisfying both formats is treated as Coze."""
        body = {
            "bot_id": "b1",
            "model": "deepseek-chat",
            "messages": [{"role": "user", "content": "hi"}],
        }
        assert isinstance(classify_payload(body), CozeRequest)

    def test_chat_format(self):
        body = {"model": "deepseek-chat", "messages": [{"role": "user", "content": "hi"}]}
        result = classify_payload(body)
        assert isinstance(result, ChatRequest)
        assert result.model == "deepseek-chat"
        assert result.stream is False

    def test_chat_requires_list_messages(self):
        assert isinstance(classify_payload({"model": "m", "messages": "hi"}), UnknownRequest)
        assert isinstance(classify_payload({"messages": []}), UnknownRequest)

    def test_empty_or_null_markers_are_absent(self):
        assert isinstance(classify_payload({"bot_id": "", "user_id": None}), UnknownRequest)

    def test_empty_additional_messages_list_counts_as_present(self):
        assert isinstance(classify_payload({"additional_messages": []}), CozeRequest)

    def test_unknown_payloads(self):
        assert isinstance(classify_payload({}), UnknownRequest)
        assert isinstance(classify_payload([1, 2]), UnknownRequest)
        assert isinstance(classify_payload(None), UnknownRequest)

    def test_stream_flag_must_be_true(self):
        assert classify_payload({"bot_id": "b", "stream": True}).stream is True
        assert classify_payload({"bot_id": "b", "stream": "yes"}).stream is False

    def test_classification_does_not_mutate_input(self):
        body = {"bot_id": "b1", "additional_messages": [{"content": "hi"}]}
        snapshot = json.dumps(body, sort_keys=True)
        classify_payload(body).to_chat_request(FALLBACK_PATH)
        assert json.dumps(body, sort_keys=True) == snapshot


# ============================================================================
# Conversion Tests
# ============================================================================

class TestCozeConversion:
    """Test CozeRequest.to_chat_request."""

    def _convert(self, body, prompt_path=FALLBACK_PATH) -> NormalizedChatRequest:
        payload = classify_payload(body)
        assert isinstance(payload, CozeRequest)
        return payload.to_chat_request(prompt_path)

    def test_basic_conversion(self):
        result = self._convert({"bot_id": "b1", "additional_messages": [{"content": "hi"}]})

        assert result.model == DEFAULT_MODEL
        assert result.temperature == DEFAULT_TEMPERATURE
        assert result.max_tokens == DEFAULT_MAX_TOKENS
        assert result.stream is False
        assert [role for role, _ in result.messages] == ["system", "user"]
        assert result.messages[-1] == ("user", "hi")

    def test_default_stage_in_system_prompt(self):
        result = self._convert({"bot_id": "b1", "additional_messages": [{"content": "hi"}]})
        assert "Opening" in result.messages[0][1]

    def test_stage_and_context(self):
        body = {
            "user_id": "u1",
            "additional_messages": [{"content": "Me: hello\nAnna: hi"}],
            "custom_variables": {"stage": "Closing", "context": "Budget is 2k"},
            "stream": True,
        }
        result = self._convert(body)

        assert len(result.messages) == 3
        assert result.messages[0][0] == "system"
        assert "Closing" in result.messages[0][1]
        assert result.messages[1] == ("user", "[Context] Budget is 2k")
        assert result.messages[2] == ("user", "Me: hello\nAnna: hi")
        assert result.stream is True

    def test_only_first_additional_message_used(self):
        body = {"bot_id": "b", "additional_messages": [{"content": "first"}, {"content": "second"}]}
        assert self._convert(body).messages[-1] == ("user", "first")

    def test_missing_messages_gives_empty_text(self):
        result = self._convert({"bot_id": "b1"})
        assert result.messages[-1] == ("user", "")
        assert result.messages[0][0] == "system"

    def test_conversion_is_deterministic(self):
        body = {
            "bot_id": "b1",
            "additional_messages": [{"content": "hi"}],
            "custom_variables": {"stage": "Follow-up", "context": "ctx"},
        }
        first = json.dumps(self._convert(body).to_payload())
        second = json.dumps(self._convert(body).to_payload())
        assert first == second

    def test_to_payload_shape(self):
        payload = self._convert({"bot_id": "b1", "additional_messages": [{"content": "hi"}]}).to_payload()
        assert payload["model"] == "deepseek-chat"
        assert payload["temperature"] == 0.7
        assert payload["max_tokens"] == 500
        assert payload["stream"] is False
        assert payload["messages"][-1] == {"role": "user", "content": "hi"}


class TestChatRequestPayload:
    """Test defaults applied to DeepSeek-format payloads."""

    def test_sampling_fields_passthrough(self):
        body = {
            "model": "deepseek-reasoner",
            "messages": [{"role": "user", "content": "hi"}],
            "temperature": 0.2,
            "max_tokens": 42,
            "stream": True,
        }
        payload = classify_payload(body).to_upstream_payload()
        assert payload == {
            "model": "deepseek-reasoner",
            "messages": [{"role": "user", "content": "hi"}],
            "stream": True,
            "temperature": 0.2,
            "max_tokens": 42,
        }

    def test_unset_sampling_fields_dropped(self):
        body = {"model": "deepseek-chat", "messages": [{"role": "user", "content": "hi"}]}
        payload = classify_payload(body).to_upstream_payload()
        assert "temperature" not in payload
        assert "max_tokens" not in payload
        assert payload["stream"] is False


# ============================================================================
# Prompt Template Tests
# ============================================================================

class TestPrompts:
    """Test system prompt template loading."""

    def test_missing_template_uses_fallback(self):
        assert load_prompt_template(FALLBACK_PATH) == FALLBACK_TEMPLATE
        assert "Negotiation" in build_system_prompt("Negotiation", FALLBACK_PATH)

    def test_template_file_substitution(self, tmp_path):
        template = tmp_path / "prompt.txt"
        template.write_text('Stage: {stage}. Reply as JSON like {"a": 1}.\n', encoding="utf-8")

        text = build_system_prompt("Closing", str(template))
        assert text == 'Stage: Closing. Reply as JSON like {"a": 1}.'

    def test_shipped_template_mentions_stage(self, project_root_path):
        path = str(project_root_path / "relay_prompt.txt")
        text = build_system_prompt("Opening", path)
        assert "The current sales stage is: Opening." in text
        assert "{stage}" not in text


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
