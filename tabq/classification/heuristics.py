"""
Last-resort pattern classifier.

Used only when the remote stage fails or is disabled. Always returns a
category, so no unit leaves the pipeline unresolved.
"""

from __future__ import annotations

from collections.abc import Iterable

from tabq.classification.types import StageVerdict
from tabq.observability.confidence import FREQUENT_DOMAINS, HEURISTIC_CONFIDENCE
from tabq.observability.telemetry import counter
from tabq.storage.models import Category, ClassificationUnit, Provenance
from tabq.utils.urls import extract_domain, path_segments

MAIL_DOMAINS = ("mail.google.com", "gmail.com", "outlook.live.com", "mail.yahoo.com")

CLOSABLE_URL_MARKERS = ("chrome://", "chrome-extension://", "/login", "/signin", "/auth")
CLOSABLE_TITLE_MARKERS = ("404", "error", "not found")

IMPORTANT_URL_MARKERS = (
    "claude.ai/chat/",
    "chatgpt.com/",
    "chat.openai.com/",
    "grok.com/chat/",
    "/docs/",
    "/documentation/",
    "/api/",
)


def _is_frequent_homepage(address: str, domain: str) -> bool:
    """Frequent sites count as closable only on their homepage or inbox."""
    if domain in MAIL_DOMAINS:
        return True
    if domain not in FREQUENT_DOMAINS or "/status/" in address:
        return False
    return not path_segments(address)


def guess_category(address: str, title: str = "") -> Category:
    """
    Pattern-based best guess for one address.

    Examples:
        >>> guess_category("about:blank")
        <Category.CAN_CLOSE: 1>

        >>> guess_category("https://github.com/psf/requests")
        <Category.IMPORTANT: 3>

        >>> guess_category("https://example.com/some/post")
        <Category.SAVE_LATER: 2>
    """
    url = address.lower()
    title_lower = (title or "").lower()
    domain = extract_domain(address)

    if (
        url == "about:blank"
        or any(marker in url for marker in CLOSABLE_URL_MARKERS)
        or any(marker in title_lower for marker in CLOSABLE_TITLE_MARKERS)
        or _is_frequent_homepage(url, domain)
    ):
        return Category.CAN_CLOSE

    if (
        any(marker in url for marker in IMPORTANT_URL_MARKERS)
        or (domain == "github.com" and bool(path_segments(address)))
        or "documentation" in title_lower
    ):
        return Category.IMPORTANT

    return Category.SAVE_LATER


def classify(units: Iterable[ClassificationUnit]) -> dict[str, StageVerdict]:
    """
    Heuristic verdict for every unit given.

    Side Effects:
        - Increments heuristics.classified telemetry counter
    """
    verdicts = {
        unit.unit_id: StageVerdict(
            category=guess_category(unit.address, unit.title),
            provenance=Provenance.HEURISTIC,
            confidence=HEURISTIC_CONFIDENCE,
        )
        for unit in units
    }
    if verdicts:
        counter("heuristics.classified", len(verdicts))
    return verdicts
