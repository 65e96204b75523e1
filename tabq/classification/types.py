"""
Shared result types for the classification pipeline.

Kept in a leaf module so the deduplicator, stages and pipeline can import them
without pulling each other in.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from tabq.storage.models import Category, ClassificationUnit, InstanceId, Provenance

# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------


@dataclass
class DedupeResult:
    """Units to classify, plus already-saved units kept for display only."""

    units: list[ClassificationUnit]
    address_to_instances: dict[str, list[InstanceId]]
    excluded_units: list[ClassificationUnit]


# ---------------------------------------------------------------------------
# Stage verdicts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageVerdict:
    category: Category
    provenance: Provenance
    confidence: float | None = None


@dataclass
class ClassificationResult:
    """Per-unit verdicts from one classify() call, keyed by unit_id."""

    verdicts: dict[str, StageVerdict] = field(default_factory=dict)
    unresolved: list[str] = field(default_factory=list)
    stages_run: list[str] = field(default_factory=list)
    remote_error: str | None = None

    def category_of(self, unit_id: str) -> Category:
        verdict = self.verdicts.get(unit_id)
        return verdict.category if verdict else Category.UNCATEGORIZED


@dataclass
class CategorizedTabs:
    """Display data after a full categorize_tabs() run."""

    categorized: dict[Category, list[ClassificationUnit]]
    duplicate_index: dict[str, list[InstanceId]]
    result: ClassificationResult
    covered_addresses: set[str]
