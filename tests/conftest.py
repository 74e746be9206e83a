"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Environment defaults applied before the service module is imported
- A factory for explicit AppConfig instances
"""

import os
import sys
from dataclasses import replace
from pathlib import Path

import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# relay_service loads config at import time, so these must be set during collection.
os.environ.setdefault("DEEPSEEK_API_KEY", "test-deepseek-key")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_PATH", "/tmp/coze_relay_test.log")
os.environ.setdefault("LOG_COLOR", "false")

from config import DEFAULT_PROMPT_PATH, AppConfig  # noqa: E402

COZE_URL = "https://coze.test/v1/chat"
DEEPSEEK_URL = "https://deepseek.test/v1/chat/completions"


@pytest.fixture(scope="session")
def project_root_path():
    """Get project root path."""
    return project_root


@pytest.fixture
def config_factory():
    """Build an AppConfig for tests; keyword overrides replace single fields."""
    base = AppConfig(
        coze_api_key="",
        coze_api_url=COZE_URL,
        use_coze=False,
        deepseek_api_key="test-deepseek-key",
        deepseek_api_url=DEEPSEEK_URL,
        request_timeout_ms=2_000,
        max_request_size=10_485_760,
        system_prompt_path=DEFAULT_PROMPT_PATH,
        port=3000,
        log_level="DEBUG",
        log_path="/tmp/coze_relay_test.log",
        log_format="text",
        user_agent="coze-relay-test",
    )

    def _make(**overrides) -> AppConfig:
        return replace(base, **overrides)

    return _make


@pytest.fixture
def test_config(config_factory):
    return config_factory()
