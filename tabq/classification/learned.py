"""
Local learned model: multinomial naive Bayes over address and title tokens.

Trained from persisted records that carry a category, and updated
incrementally when the user corrects a tab. Corrections count with extra
weight. The model reports itself unavailable until it has seen enough
examples, and the pipeline then skips the stage.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable

import numpy as np
from sklearn.feature_extraction.text import HashingVectorizer
from sklearn.naive_bayes import MultinomialNB

from tabq.classification.types import StageVerdict
from tabq.config import LEARNED_CORRECTION_WEIGHT, LEARNED_MIN_EXAMPLES
from tabq.observability.confidence import LEARNED_HIGH_CONFIDENCE, LEARNED_MIN_CONFIDENCE
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter
from tabq.storage.models import (
    ASSIGNABLE_CATEGORIES,
    Category,
    ClassificationUnit,
    Provenance,
    UrlRecord,
)
from tabq.utils.urls import extract_domain, get_root_domain, is_valid_url, path_segments

logger = get_logger(__name__)

_WORD = re.compile(r"[a-z0-9]{2,}")

HASH_FEATURES = 2**18
_CLASSES = np.array([int(c) for c in ASSIGNABLE_CATEGORIES])


def tokenize(address: str, title: str = "") -> list[str]:
    """
    Feature tokens for one tab.

    Addresses that do not parse as URLs contribute title tokens only.

    Examples:
        >>> tokenize("https://docs.python.org/3/library", "asyncio docs")
        ['d:docs.python.org', 'r:python.org', 'p:3', 'p:library', 't:asyncio', 't:docs']
    """
    tokens: list[str] = []
    if is_valid_url(address):
        domain = extract_domain(address)
        tokens = [f"d:{domain}", f"r:{get_root_domain(domain)}"]
        tokens.extend(f"p:{segment}" for segment in path_segments(address)[:6])
    tokens.extend(f"t:{word}" for word in _WORD.findall((title or "").lower()))
    return tokens


def _tab_tokens(doc: tuple[str, str]) -> list[str]:
    return tokenize(*doc)


class LearnedModel:
    """
    MultinomialNB over hashed tab tokens, trained with partial_fit.

    Confidence is the predict_proba posterior of the winning category.
    """

    def __init__(
        self,
        min_examples: int = LEARNED_MIN_EXAMPLES,
        correction_weight: int = LEARNED_CORRECTION_WEIGHT,
        min_confidence: float = LEARNED_MIN_CONFIDENCE,
    ) -> None:
        self.min_examples = min_examples
        self.correction_weight = correction_weight
        self.min_confidence = min_confidence
        self._vectorizer = HashingVectorizer(
            analyzer=_tab_tokens,
            n_features=HASH_FEATURES,
            alternate_sign=False,
            norm=None,
        )
        self._lock = threading.Lock()
        self._reset()

    def _reset(self) -> None:
        self._model = MultinomialNB(alpha=1.0)
        self.examples = 0

    @property
    def class_counts(self) -> dict[Category, float]:
        """Weighted example count per category seen so far."""
        counts = getattr(self._model, "class_count_", None)
        if counts is None:
            return {}
        return {
            Category(int(label)): float(count)
            for label, count in zip(self._model.classes_, counts)
            if count > 0
        }

    @property
    def is_available(self) -> bool:
        return self.examples >= self.min_examples and len(self.class_counts) >= 2

    def _fit(self, docs: list[tuple[str, str]], labels: list[int], weights: list[float]) -> None:
        features = self._vectorizer.transform(docs)
        with self._lock:
            self._model.partial_fit(
                features, np.array(labels), classes=_CLASSES, sample_weight=np.array(weights)
            )
            self.examples += len(docs)

    def learn(self, address: str, title: str, category: Category, weight: int = 1) -> None:
        """
        Add one labelled example.

        Side Effects:
            - Updates the naive Bayes feature counts in place
        """
        if category not in ASSIGNABLE_CATEGORIES:
            return
        self._fit([(address, title or "")], [int(category)], [weight])

    def learn_correction(self, address: str, title: str, category: Category) -> None:
        self.learn(address, title, category, weight=self.correction_weight)
        counter("learned.corrections")

    def train(self, records: Iterable[UrlRecord]) -> int:
        """
        Rebuild the model from persisted records.

        Returns:
            Number of examples used
        """
        docs: list[tuple[str, str]] = []
        labels: list[int] = []
        weights: list[float] = []
        for record in records:
            if record.category not in ASSIGNABLE_CATEGORIES:
                continue
            docs.append((record.address, record.title or ""))
            labels.append(int(record.category))
            weights.append(
                self.correction_weight if record.provenance == Provenance.USER_CORRECTION else 1
            )

        with self._lock:
            self._reset()
        if docs:
            self._fit(docs, labels, weights)
        logger.info("Learned model trained on %d records (available=%s)", len(docs), self.is_available)
        return len(docs)

    def _posteriors(self, docs: list[tuple[str, str]]) -> list[tuple[Category, float]]:
        features = self._vectorizer.transform(docs)
        with self._lock:
            probabilities = self._model.predict_proba(features)
            classes = self._model.classes_
        best = probabilities.argmax(axis=1)
        return [
            (Category(int(classes[index])), float(row[index]))
            for row, index in zip(probabilities, best)
        ]

    def predict(self, address: str, title: str = "") -> tuple[Category, float] | None:
        """Most likely category and its posterior, or None when unavailable."""
        if not self.is_available:
            return None
        return self._posteriors([(address, title or "")])[0]

    def classify(self, units: Iterable[ClassificationUnit]) -> dict[str, StageVerdict]:
        """
        Verdicts for units whose posterior clears the minimum confidence.

        Side Effects:
            - Increments learned.* telemetry counters
        """
        verdicts: dict[str, StageVerdict] = {}
        if not self.is_available:
            counter("learned.unavailable")
            return verdicts

        units = list(units)
        if not units:
            return verdicts

        below = high = 0
        predictions = self._posteriors([(unit.address, unit.title or "") for unit in units])
        for unit, (category, confidence) in zip(units, predictions):
            if confidence < self.min_confidence:
                below += 1
                continue
            if confidence >= LEARNED_HIGH_CONFIDENCE:
                high += 1
            verdicts[unit.unit_id] = StageVerdict(
                category=category, provenance=Provenance.LEARNED, confidence=confidence
            )

        counter("learned.classified", len(verdicts))
        if below:
            counter("learned.below_threshold", below)
        if high:
            counter("learned.high_confidence", high)
        return verdicts
