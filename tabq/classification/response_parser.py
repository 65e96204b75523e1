"""
Tolerant extraction of a category map from a provider reply.

Providers are told to answer with a bare JSON object, but replies arrive
wrapped in prose, fenced in markdown, or with stray commas. The parser tries
progressively looser readings and only gives up with ProviderReplyUnparseable.
"""

from __future__ import annotations

import json
import re
from collections.abc import Collection
from typing import Any

from tabq.errors import ProviderReplyUnparseable
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter
from tabq.storage.models import ASSIGNABLE_CATEGORIES, Category

logger = get_logger(__name__)

_FENCE_OPEN = re.compile(r"^\s*```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")


def _strip_fences(text: str) -> str:
    return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text)).strip()


def _repair(text: str) -> str:
    """Fix missing commas between lines and drop trailing commas."""
    repaired = re.sub(r"(\d+|\"[^\"]*\")\s*\n\s*\"", r'\1,\n"', text)
    return re.sub(r",\s*([\}\]])", r"\1", repaired)


def _candidates(text: str) -> list[tuple[str, str]]:
    """Readings of the reply to try, loosest last."""
    trimmed = text.strip()
    attempts = [("whole", trimmed)]

    start = trimmed.find("{")
    end = trimmed.rfind("}")
    substring = trimmed[start : end + 1] if start != -1 and end > start else trimmed
    if start != -1 and end > start:
        attempts.append(("braces", substring))

    attempts.append(("fences", _strip_fences(substring)))
    attempts.append(("repaired", _repair(_strip_fences(substring))))
    return attempts


def _load_object(text: str) -> dict[str, Any]:
    for strategy, candidate in _candidates(text):
        if not candidate:
            continue
        try:
            loaded = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(loaded, dict):
            if strategy != "whole":
                counter(f"parser.recovered.{strategy}")
                logger.info("Provider reply recovered via %s strategy", strategy)
            return loaded
        # Parsed, but not an object: no looser reading will fix this
        break

    counter("parser.unparseable")
    preview = text[:80] + ("..." if len(text) > 80 else "")
    raise ProviderReplyUnparseable(f"no JSON object in provider reply: {preview!r}", raw_text=text)


def parse(raw_text: str | None, valid_ids: Collection[str] | None = None) -> dict[str, Category]:
    """
    Parse a provider reply into {unit_id: Category}.

    Keys not in valid_ids (when given) and values outside 1..3 are dropped.
    Units absent from the reply are simply absent from the result.

    Raises:
        ProviderReplyUnparseable: If no JSON object can be recovered

    Examples:
        >>> parse('prefix {"12": 1} suffix')
        {'12': <Category.CAN_CLOSE: 1>}
    """
    if not raw_text or not raw_text.strip():
        counter("parser.unparseable")
        raise ProviderReplyUnparseable("empty provider reply", raw_text=raw_text or "")

    loaded = _load_object(raw_text)
    allowed = {str(unit_id) for unit_id in valid_ids} if valid_ids is not None else None

    categories: dict[str, Category] = {}
    dropped = 0
    for key, value in loaded.items():
        unit_id = str(key).strip()
        category = Category.coerce(value)
        if category not in ASSIGNABLE_CATEGORIES or (allowed is not None and unit_id not in allowed):
            dropped += 1
            continue
        categories[unit_id] = category

    if dropped:
        counter("parser.entries_dropped", dropped)
        logger.debug("Dropped %d invalid entries from provider reply", dropped)
    return categories
