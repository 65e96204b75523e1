"""Static rule matching: the first stage of the classification pipeline"""

from __future__ import annotations

import re
from collections.abc import Iterable

from tabq.classification.types import StageVerdict
from tabq.observability.confidence import RULE_CONFIDENCE
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter
from tabq.storage.models import Category, ClassificationUnit, Provenance, Rule
from tabq.utils.urls import extract_domain

logger = get_logger(__name__)


def _homepage(domain: str) -> Rule:
    pattern = r"^https?://(www\.)?" + re.escape(domain) + r"/?$"
    return Rule(kind="regex", value=pattern, field="url", category=Category.CAN_CLOSE)


# Seeded into the rules table on first start
DEFAULT_RULES: list[Rule] = [
    # Important: work in progress and specific content
    Rule(kind="url_contains", value="/checkout", category=Category.IMPORTANT),
    Rule(kind="url_contains", value="/payment", category=Category.IMPORTANT),
    Rule(kind="title_contains", value="Unsaved", category=Category.IMPORTANT),
    Rule(kind="title_contains", value="Draft", category=Category.IMPORTANT),
    Rule(kind="url_contains", value="youtube.com/watch", category=Category.IMPORTANT),
    Rule(kind="url_contains", value="x.com/status/", category=Category.IMPORTANT),
    Rule(kind="url_contains", value="twitter.com/status/", category=Category.IMPORTANT),
    Rule(kind="url_contains", value="reddit.com/r/", category=Category.IMPORTANT),
    Rule(kind="url_contains", value="/article", category=Category.IMPORTANT),
    Rule(kind="url_contains", value="/news/", category=Category.IMPORTANT),
    # Save later: chat conversations
    Rule(kind="url_contains", value="claude.ai/chat/", category=Category.SAVE_LATER),
    Rule(kind="url_contains", value="chatgpt.com/c/", category=Category.SAVE_LATER),
    Rule(kind="url_contains", value="gemini.google.com/app/", category=Category.SAVE_LATER),
    Rule(kind="url_contains", value="poe.com/chat/", category=Category.SAVE_LATER),
    # Can close: blank pages, searches and homepages
    Rule(kind="title_contains", value="New Tab", category=Category.CAN_CLOSE),
    Rule(kind="title_contains", value="Google Search", category=Category.CAN_CLOSE),
    Rule(
        kind="regex",
        value=r"^https?://(mail\.)?google\.com/(mail/?)?$",
        field="url",
        category=Category.CAN_CLOSE,
    ),
    *[
        _homepage(domain)
        for domain in (
            "google.com",
            "youtube.com",
            "facebook.com",
            "amazon.com",
            "wikipedia.org",
            "twitter.com",
            "x.com",
            "instagram.com",
            "linkedin.com",
            "reddit.com",
            "outlook.com",
            "yahoo.com",
            "bankofamerica.com",
            "chase.com",
            "wellsfargo.com",
            "cnn.com",
            "bbc.com",
            "nytimes.com",
            "washingtonpost.com",
        )
    ],
]


class RulesEngine:
    """
    Evaluates an ordered rule list against classification units.

    Rules are checked in declaration order and the first enabled match wins.
    Regexes are compiled once per engine; invalid patterns are skipped.
    """

    def __init__(self, rules: Iterable[Rule]) -> None:
        self.rules = [rule for rule in rules if rule.enabled]
        self._compiled: dict[int, re.Pattern[str] | None] = {}
        for position, rule in enumerate(self.rules):
            if rule.kind == "regex":
                self._compiled[position] = self._compile(rule)

    def _compile(self, rule: Rule) -> re.Pattern[str] | None:
        try:
            return re.compile(rule.value)
        except re.error as e:
            logger.warning("Skipping invalid regex rule %r: %s", rule.value, e)
            counter("rules.invalid_regex")
            return None

    def _matches(self, position: int, rule: Rule, unit: ClassificationUnit) -> bool:
        if rule.kind == "domain":
            domain = unit.domain or extract_domain(unit.address)
            return domain.lower() == rule.value.strip().lower()
        if rule.kind == "url_contains":
            return rule.value.lower() in unit.address.lower()
        if rule.kind == "title_contains":
            return bool(unit.title) and rule.value.lower() in unit.title.lower()
        if rule.kind == "regex":
            pattern = self._compiled.get(position)
            if pattern is None:
                return False
            target = unit.title if rule.field == "title" else unit.address
            return bool(pattern.search(target or ""))
        return False

    def match(self, unit: ClassificationUnit) -> Rule | None:
        """Return the first enabled rule matching the unit, if any."""
        for position, rule in enumerate(self.rules):
            if self._matches(position, rule, unit):
                return rule
        return None

    def classify(self, units: Iterable[ClassificationUnit]) -> dict[str, StageVerdict]:
        """
        Rule stage verdicts keyed by unit_id. Never raises.

        Side Effects:
            - Increments rules.matched telemetry counter
        """
        verdicts: dict[str, StageVerdict] = {}
        for unit in units:
            rule = self.match(unit)
            if rule is not None:
                verdicts[unit.unit_id] = StageVerdict(
                    category=rule.category,
                    provenance=Provenance.RULE,
                    confidence=RULE_CONFIDENCE,
                )
        if verdicts:
            counter("rules.matched", len(verdicts))
        return verdicts
