"""
Canonical State Store: Category -> ordered list of units.

Single-writer and in-memory. The store is owned by one engine and handed to
the pipeline flow and the reconciler. It is never a module global. An address
lives in at most one tier, and an instance id belongs to at most one unit.
Every mutation updates the duplicate index only for the addresses it touches.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter
from tabq.storage.models import Category, ClassificationUnit, InstanceId, Provenance, TabInstance

logger = get_logger(__name__)

LIVE_ID_PREFIX = "live_"


@dataclass
class StateSnapshot:
    """Deep copy of the store, safe to hand to readers."""

    categorized: dict[Category, list[ClassificationUnit]]
    duplicate_index: dict[str, list[InstanceId]] = field(default_factory=dict)


@dataclass
class Removal:
    """Outcome of removing one instance id."""

    category: Category
    unit: ClassificationUnit
    unit_removed: bool


class CanonicalStateStore:
    def __init__(self) -> None:
        self._lists: dict[Category, list[ClassificationUnit]] = {c: [] for c in Category}
        self._units: dict[str, ClassificationUnit] = {}
        self._category_of: dict[str, Category] = {}
        self._instance_address: dict[InstanceId, str] = {}
        self._duplicate_index: dict[str, list[InstanceId]] = {}
        self._next_live_id = 0

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def _reindex(self, address: str) -> None:
        for instance_id in self._duplicate_index.pop(address, []):
            if self._instance_address.get(instance_id) == address:
                del self._instance_address[instance_id]
        unit = self._units.get(address)
        if unit is None:
            return
        for instance_id in unit.duplicate_ids:
            self._instance_address[instance_id] = address
        self._duplicate_index[address] = list(unit.duplicate_ids)

    def _insert(self, category: Category, unit: ClassificationUnit) -> None:
        self._lists[category].append(unit)
        self._units[unit.address] = unit
        self._category_of[unit.address] = category
        self._reindex(unit.address)

    def _detach(self, address: str) -> tuple[Category, ClassificationUnit] | None:
        unit = self._units.pop(address, None)
        if unit is None:
            return None
        category = self._category_of.pop(address)
        self._lists[category] = [u for u in self._lists[category] if u.address != address]
        self._reindex(address)
        return category, unit

    def _release_instance(self, instance_id: InstanceId, keep_address: str) -> None:
        """Take an instance id away from any other unit that still claims it."""
        owner = self._instance_address.get(instance_id)
        if owner is None or owner == keep_address:
            return
        unit = self._units[owner]
        unit.duplicate_ids = [i for i in unit.duplicate_ids if i != instance_id]
        if unit.duplicate_ids:
            self._reindex(owner)
        else:
            self._detach(owner)

    def _new_live_id(self) -> str:
        unit_id = f"{LIVE_ID_PREFIX}{self._next_live_id}"
        self._next_live_id += 1
        return unit_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            categorized={
                category: [unit.model_copy(deep=True) for unit in units]
                for category, units in self._lists.items()
            },
            duplicate_index={a: list(ids) for a, ids in self._duplicate_index.items()},
        )

    def find_by_address(self, address: str) -> tuple[Category, ClassificationUnit] | None:
        unit = self._units.get(address)
        if unit is None:
            return None
        return self._category_of[address], unit

    def find_by_instance(self, instance_id: InstanceId) -> tuple[Category, ClassificationUnit] | None:
        address = self._instance_address.get(instance_id)
        return self.find_by_address(address) if address is not None else None

    def counts(self) -> dict[Category, int]:
        return {category: len(units) for category, units in self._lists.items()}

    def duplicate_index(self) -> dict[str, list[InstanceId]]:
        return {a: list(ids) for a, ids in self._duplicate_index.items()}

    # ------------------------------------------------------------------
    # Bulk replace (after a classification run)
    # ------------------------------------------------------------------

    def bulk_replace(
        self,
        categorized: Mapping[Category, Iterable[ClassificationUnit]],
        covered_addresses: Iterable[str] = (),
    ) -> None:
        """
        Install the result of a classification run.

        Uncategorized is cleared; addresses covered by the run are removed from
        every tier and re-added from the fresh lists. Units in CanClose,
        SaveLater or Important whose addresses the run did not cover are kept.

        Side Effects:
            - Mutates tier lists and the duplicate index
        """
        fresh = {Category(c): list(units) for c, units in categorized.items()}
        covered = set(covered_addresses)
        covered.update(unit.address for units in fresh.values() for unit in units)

        for unit in list(self._lists[Category.UNCATEGORIZED]):
            self._detach(unit.address)
        for address in covered:
            self._detach(address)

        for category in Category:
            for unit in fresh.get(category, []):
                if unit.address in self._units:
                    # Same address listed twice in one run: last tier listed wins
                    self._detach(unit.address)
                for instance_id in unit.duplicate_ids:
                    self._release_instance(instance_id, unit.address)
                self._insert(category, unit)

        counter("state.bulk_replace")
        logger.debug("Bulk replace installed %d addresses", len(covered))

    # ------------------------------------------------------------------
    # Incremental patches (reconciler)
    # ------------------------------------------------------------------

    def add_instance(
        self,
        instance: TabInstance,
        category: Category,
        provenance: Provenance | None = None,
    ) -> tuple[ClassificationUnit, bool]:
        """
        Track one instance. Returns (unit, joined_existing_unit).

        If a unit for the address exists the instance joins it as a duplicate
        and the unit keeps its tier; otherwise a new unit is created in category.
        An instance the unit already holds is not a join.
        """
        self._release_instance(instance.instance_id, instance.address)

        existing = self._units.get(instance.address)
        if existing is not None:
            if instance.instance_id in existing.duplicate_ids:
                return existing, False
            existing.duplicate_ids.append(instance.instance_id)
            self._reindex(instance.address)
            return existing, True

        unit = ClassificationUnit.from_instance(
            self._new_live_id(), instance, provenance=provenance
        )
        self._insert(category, unit)
        return unit, False

    def remove_instance(self, instance_id: InstanceId) -> Removal | None:
        """
        Drop one instance id from its unit.

        The first remaining id becomes the representative. A unit left with no
        ids is deleted from its tier.
        """
        address = self._instance_address.get(instance_id)
        if address is None:
            return None
        category = self._category_of[address]
        unit = self._units[address]
        unit.duplicate_ids = [i for i in unit.duplicate_ids if i != instance_id]
        if unit.duplicate_ids:
            self._reindex(address)
            return Removal(category=category, unit=unit, unit_removed=False)
        self._detach(address)
        return Removal(category=category, unit=unit, unit_removed=True)

    def move_unit(
        self,
        address: str,
        category: Category,
        provenance: Provenance | None = None,
        confidence: float | None = None,
    ) -> ClassificationUnit | None:
        found = self._detach(address)
        if found is None:
            return None
        _, unit = found
        if provenance is not None:
            unit.provenance = provenance
            unit.confidence = confidence
        self._insert(category, unit)
        return unit

    def patch_title(self, instance_id: InstanceId, title: str) -> ClassificationUnit | None:
        found = self.find_by_instance(instance_id)
        if found is None:
            return None
        _, unit = found
        unit.title = title
        return unit

    def remove_unit(self, address: str) -> tuple[Category, ClassificationUnit] | None:
        return self._detach(address)

    def clear_all(self) -> None:
        """
        Reset every tier.

        Side Effects:
            - Empties all lists and indexes
        """
        for category in Category:
            self._lists[category] = []
        self._units.clear()
        self._category_of.clear()
        self._instance_address.clear()
        self._duplicate_index.clear()
        counter("state.clear_all")
