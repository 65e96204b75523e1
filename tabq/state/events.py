"""
Typed host lifecycle events (inbound) and change notifications (outbound).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from tabq.storage.models import Category, ClassificationUnit, InstanceId, TabInstance


@dataclass(frozen=True)
class TabCreated:
    instance: TabInstance


@dataclass(frozen=True)
class TabUpdated:
    """A changed address is a navigation; a changed title only is a title patch."""

    instance_id: InstanceId
    address: str | None = None
    title: str | None = None
    window_id: int | None = None
    favicon: str | None = None


@dataclass(frozen=True)
class TabRemoved:
    instance_id: InstanceId


LifecycleEvent = Union[TabCreated, TabUpdated, TabRemoved]

NotificationType = Literal["created", "navigated", "removed", "duplicate-created", "refresh"]


@dataclass
class Notification:
    type: NotificationType
    unit: ClassificationUnit | None = None
    category: Category | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "unit": self.unit.model_dump(mode="json") if self.unit is not None else None,
            "category": int(self.category) if self.category is not None else None,
            "timestamp": self.timestamp,
        }
