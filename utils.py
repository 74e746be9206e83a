"""Startup helpers for the relay service."""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from config import AppConfig
from logger import LOGGER_NAME, mask_secret

log = logging.getLogger(LOGGER_NAME)


def load_env_files() -> None:
    """Load .env files from program and current directory."""
    this_dir = Path(__file__).resolve().parent
    p1 = this_dir / ".env"
    p2 = Path.cwd() / ".env"

    loaded_any = False
    if p1.exists():
        loaded_any = load_dotenv(dotenv_path=str(p1), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p1))
    else:
        log.info("No .env in program directory: %s", str(p1))

    if p2.exists() and p2 != p1:
        loaded_any = load_dotenv(dotenv_path=str(p2), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p2))
    elif p2 != p1:
        log.info("No .env in current directory: %s", str(p2))

    if not loaded_any:
        log.info(".env not loaded (not found or no variables applied).")


def dump_config(config: AppConfig) -> None:
    """Log effective configuration at startup."""
    log.info("=== Relay startup config ===")
    log.info(
        "DEEPSEEK_API_KEY_set=%s value=%s len=%s",
        bool(config.deepseek_api_key),
        mask_secret(config.deepseek_api_key),
        len(config.deepseek_api_key or ""),
    )
    log.info("DEEPSEEK_API_URL=%s", config.deepseek_api_url)
    log.info(
        "COZE_API_KEY_set=%s value=%s len=%s",
        bool(config.coze_api_key),
        mask_secret(config.coze_api_key),
        len(config.coze_api_key or ""),
    )
    log.info("COZE_API_URL=%s", config.coze_api_url)
    log.info("USE_COZE=%s", config.use_coze)
    if config.use_coze and not config.coze_api_key:
        log.warning("USE_COZE=true but COZE_API_KEY is empty; Coze fallback is disabled.")
    if not config.deepseek_api_key:
        log.warning("DEEPSEEK_API_KEY is empty; every relay request will fail with a configuration error.")
    log.info("REQUEST_TIMEOUT=%sms", config.request_timeout_ms)
    log.info("MAX_REQUEST_SIZE=%s", config.max_request_size)
    log.info("SYSTEM_PROMPT_PATH=%s", config.system_prompt_path)
    log.info("LOG_LEVEL=%s", config.log_level)
    log.info("LOG_PATH=%s", config.log_path)
    log.info("LOG_FORMAT=%s", config.log_format)
    log.info("USER_AGENT=%s", config.user_agent)
    log.info("WorkingDir=%s", str(Path.cwd()))
    log.info("ProgramDir=%s", str(Path(__file__).resolve().parent))
    log.info("============================")
