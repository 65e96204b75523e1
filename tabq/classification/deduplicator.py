"""
Group observed tab instances into classification units by exact address.

Pure: no storage, no logging side effects beyond a debug line.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tabq.classification.types import DedupeResult
from tabq.errors import ValidationError
from tabq.observability.logging import get_logger
from tabq.storage.models import ClassificationUnit, TabInstance

logger = get_logger(__name__)

UNIT_ID_PREFIX = "dedup_"
SAVED_ID_PREFIX = "saved_"


def coerce_instances(instances: Iterable[TabInstance | Mapping[str, Any]]) -> list[TabInstance]:
    """
    Validate raw host records into TabInstance objects.

    Raises:
        ValidationError: If a record is malformed or an instance id repeats
    """
    if instances is None:
        raise ValidationError("instances must be a list")

    coerced: list[TabInstance] = []
    seen_ids: set[Any] = set()
    for position, raw in enumerate(instances):
        if isinstance(raw, TabInstance):
            instance = raw
        elif isinstance(raw, Mapping):
            try:
                instance = TabInstance.model_validate(raw)
            except PydanticValidationError as e:
                raise ValidationError(f"invalid tab instance at position {position}: {e}") from e
        else:
            raise ValidationError(f"invalid tab instance at position {position}")

        if instance.instance_id in seen_ids:
            raise ValidationError(f"duplicate instance id {instance.instance_id!r}")
        seen_ids.add(instance.instance_id)
        coerced.append(instance)
    return coerced


def _group(
    instances: list[TabInstance], prefix: str
) -> tuple[list[ClassificationUnit], dict[str, list]]:
    units: list[ClassificationUnit] = []
    by_address: dict[str, ClassificationUnit] = {}
    for instance in instances:
        unit = by_address.get(instance.address)
        if unit is None:
            unit = ClassificationUnit.from_instance(f"{prefix}{len(units)}", instance)
            by_address[instance.address] = unit
            units.append(unit)
        else:
            unit.duplicate_ids.append(instance.instance_id)
    return units, {address: list(unit.duplicate_ids) for address, unit in by_address.items()}


def dedupe(
    instances: Iterable[TabInstance | Mapping[str, Any]],
    excluded_addresses: Iterable[str] = (),
) -> DedupeResult:
    """
    Merge tab instances sharing an exact address into one unit each.

    Instances whose address is in excluded_addresses are grouped separately into
    excluded_units: they are shown but never sent to classification. Unit ids
    follow order of first appearance ("dedup_0", "dedup_1", ...).

    Raises:
        ValidationError: For malformed input
    """
    tabs = coerce_instances(instances)
    excluded = {address.strip() for address in excluded_addresses or () if address}

    to_classify = [tab for tab in tabs if tab.address not in excluded]
    saved = [tab for tab in tabs if tab.address in excluded]

    units, address_to_instances = _group(to_classify, UNIT_ID_PREFIX)
    excluded_units, _ = _group(saved, SAVED_ID_PREFIX)
    for unit in excluded_units:
        unit.already_saved = True

    logger.debug(
        "Deduplicated %d instances into %d units (%d already saved)",
        len(tabs),
        len(units),
        len(excluded_units),
    )
    return DedupeResult(
        units=units,
        address_to_instances=address_to_instances,
        excluded_units=excluded_units,
    )
