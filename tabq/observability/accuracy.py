"""
Per-source accuracy bookkeeping.

Every verdict installed into canonical state is remembered (address -> source
and tier) until the user corrects that address or a newer verdict replaces it.
A correction to a different tier counts as a miss for the source that placed
the address; a correction to the same tier counts as a confirmation.

Backed by telemetry counters:
    accuracy.<source>.predicted
    accuracy.<source>.overridden
    accuracy.<source>.confirmed
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any

from tabq.config import VERDICT_LEDGER_MAX
from tabq.observability.telemetry import counter, get_counter
from tabq.storage.models import Category, Provenance

SCORED_SOURCES = (
    Provenance.RULE,
    Provenance.LEARNED,
    Provenance.REMOTE,
    Provenance.HEURISTIC,
)


class VerdictLedger:
    """Bounded address -> (source, category) map; oldest entries evicted first."""

    def __init__(self, max_entries: int = VERDICT_LEDGER_MAX) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, tuple[Provenance, Category]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, address: str) -> tuple[Provenance, Category] | None:
        return self._entries.get(address)

    def record(self, address: str, source: Provenance | None, category: Category) -> None:
        """
        Remember the verdict that placed an address.

        Side Effects:
            - Increments accuracy.<source>.predicted
        """
        if source not in SCORED_SOURCES:
            return
        self._entries.pop(address, None)
        self._entries[address] = (source, category)
        counter(f"accuracy.{source.value}.predicted")
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def record_correction(self, address: str, target: Category) -> Provenance | None:
        """
        Score the remembered verdict against the user's pick and forget it.

        Returns:
            The overridden source, or None if nothing was overridden
        """
        entry = self._entries.pop(address, None)
        if entry is None:
            return None
        source, category = entry
        if category == target:
            counter(f"accuracy.{source.value}.confirmed")
            return None
        counter(f"accuracy.{source.value}.overridden")
        return source

    def clear(self) -> None:
        self._entries.clear()


def accuracy_by_source() -> dict[str, dict[str, Any]]:
    """
    Predicted/overridden totals and accuracy per source.

    accuracy is None until the source has placed at least one address.
    """
    report: dict[str, dict[str, Any]] = {}
    for source in SCORED_SOURCES:
        predicted = get_counter(f"accuracy.{source.value}.predicted")
        overridden = get_counter(f"accuracy.{source.value}.overridden")
        report[source.value] = {
            "predicted": predicted,
            "overridden": overridden,
            "accuracy": round(1 - overridden / predicted, 4) if predicted else None,
        }
    return report
