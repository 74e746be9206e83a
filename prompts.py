"""System prompt template used when a Coze payload is relayed to DeepSeek."""

from __future__ import annotations

import functools
import logging
from pathlib import Path

from logger import LOGGER_NAME

log = logging.getLogger(LOGGER_NAME)

STAGE_PLACEHOLDER = "{stage}"

# Used only when the template file is missing or empty.
FALLBACK_TEMPLATE = (
    "You are an expert sales coach. The current sales stage is: {stage}.\n\n"
    "Suggest 3 reply options for this stage. Respond ONLY in valid JSON as an array of "
    "objects with keys: suggestion, reason (an object with en and zh)."
)


@functools.lru_cache(maxsize=8)
def load_prompt_template(path: str) -> str:
    """Load the prompt template from ``path`` (cached per path)."""
    prompt_file = Path(path)
    if not prompt_file.exists():
        log.warning("System prompt template not found at %s; using built-in fallback", prompt_file)
        return FALLBACK_TEMPLATE

    try:
        with prompt_file.open("r", encoding="utf-8") as f:
            content = f.read().strip()
    except OSError as e:
        log.warning("Failed to read system prompt template %s (%s); using built-in fallback", prompt_file, e)
        return FALLBACK_TEMPLATE

    if not content:
        log.warning("System prompt template %s is empty; using built-in fallback", prompt_file)
        return FALLBACK_TEMPLATE

    log.info("System prompt template loaded from %s len=%d", prompt_file, len(content))
    return content


def build_system_prompt(stage: str, template_path: str) -> str:
    # Plain replace: the template may legitimately contain other braces.
    return load_prompt_template(template_path).replace(STAGE_PLACEHOLDER, stage)
