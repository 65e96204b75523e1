"""
Prompt Management Module

Loads the categorization prompt from a text file next to this module, so the
wording can change without touching code. Placeholders use {NAME} markers and
are substituted literally (the template contains JSON braces, so str.format is
not used).
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Iterable
from pathlib import Path

from tabq.config import ADDRESS_TRUNCATION
from tabq.observability.confidence import FREQUENT_DOMAINS
from tabq.observability.logging import get_logger
from tabq.storage.models import ClassificationUnit
from tabq.utils.urls import truncate_address

logger = get_logger(__name__)

PROMPTS_DIR = Path(__file__).parent

# Set TABQ_CATEGORIZE_PROMPT to try an alternate prompt file
CATEGORIZE_PROMPT_NAME = os.getenv("TABQ_CATEGORIZE_PROMPT", "categorize_tabs")

MAX_TITLE_LENGTH = 200

_INJECTION_PATTERNS = [
    (
        r"(?i)(ignore|disregard|forget).*(previous|prior|above).*(instruction|directive|command|prompt)",
        "[REDACTED]",
    ),
    (r"(?i)system\s*:", ""),
    (r"(?i)assistant\s*:", ""),
    (r"(?i)you\s+are\s+now", "[REDACTED]"),
    (r"(?i)new\s+instructions?:", "[REDACTED]"),
]


def sanitize_user_input(text: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    """
    Strip prompt-injection markers from page-controlled text (tab titles).

    Side Effects:
        None (pure function)
    """
    if not text:
        return ""

    for pattern, replacement in _INJECTION_PATTERNS:
        if re.search(pattern, text):
            logger.warning(
                "Potential prompt injection detected and sanitized: pattern=%s, original_length=%d",
                pattern[:50],
                len(text),
            )
            text = re.sub(pattern, replacement, text)

    return text[:max_length]


class PromptLoader:
    """Load and cache prompt templates from files"""

    def __init__(self) -> None:
        self._cache: dict[str, str] = {}

    def load_prompt(self, prompt_name: str) -> str:
        if prompt_name not in self._cache:
            prompt_path = PROMPTS_DIR / f"{prompt_name}.txt"

            if not prompt_path.exists():
                raise FileNotFoundError(f"Prompt file not found: {prompt_path}")

            with open(prompt_path, encoding="utf-8") as f:
                self._cache[prompt_name] = f.read()

        return self._cache[prompt_name]


_loader = PromptLoader()


def minimal_payload(units: Iterable[ClassificationUnit]) -> list[dict[str, str]]:
    """The only tab fields a provider sees: surrogate id, title, truncated url."""
    return [
        {
            "id": unit.unit_id,
            "title": sanitize_user_input(unit.title),
            "url": truncate_address(unit.address, ADDRESS_TRUNCATION),
        }
        for unit in units
    ]


def build_categorization_prompt(
    units: Iterable[ClassificationUnit], custom_prompt: str | None = None
) -> str:
    """
    Render the categorization prompt for a batch of units.

    A custom prompt is used when given; it should carry the {FREQUENT_DOMAINS}
    and {TABS_DATA} placeholders.
    """
    template = custom_prompt or _loader.load_prompt(CATEGORIZE_PROMPT_NAME)
    tabs_data = json.dumps(minimal_payload(units), indent=2, ensure_ascii=False)
    return template.replace("{FREQUENT_DOMAINS}", ", ".join(FREQUENT_DOMAINS)).replace(
        "{TABS_DATA}", tabs_data
    )
