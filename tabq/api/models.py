"""Pydantic request/response models for the tabq HTTP API.

Domain types (TabInstance, ClassificationUnit, Rule, ClassificationPolicy)
are reused as-is; this module only adds the envelopes and the lifecycle
event payload that is narrowed into typed events before it reaches the
reconciler.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tabq.config import CLASSIFY_BATCH_MAX, EVENT_QUEUE_MAX
from tabq.state.events import LifecycleEvent, TabCreated, TabRemoved, TabUpdated
from tabq.state.store import StateSnapshot
from tabq.storage.models import (
    Category,
    ClassificationPolicy,
    ClassificationUnit,
    InstanceId,
    Rule,
    TabInstance,
    UrlRecord,
)

# =============================================================================
# STATE
# =============================================================================


class StateResponse(BaseModel):
    categorized: dict[int, list[ClassificationUnit]]
    duplicate_index: dict[str, list[InstanceId]]
    counts: dict[int, int]

    @classmethod
    def from_snapshot(cls, snapshot: StateSnapshot) -> StateResponse:
        return cls(
            categorized={int(c): units for c, units in snapshot.categorized.items()},
            duplicate_index=snapshot.duplicate_index,
            counts={int(c): len(units) for c, units in snapshot.categorized.items()},
        )


# =============================================================================
# CLASSIFICATION
# =============================================================================


class ClassifyRequest(BaseModel):
    """Tabs to classify; `units`/`excludeAddresses` are accepted as aliases."""

    model_config = ConfigDict(populate_by_name=True)

    tabs: list[TabInstance] = Field(alias="units", max_length=CLASSIFY_BATCH_MAX)
    exclude_addresses: list[str] = Field(default_factory=list, alias="excludeAddresses")
    policy: ClassificationPolicy | None = None


class ClassifyResponse(BaseModel):
    success: bool
    data: dict[int, list[ClassificationUnit]] = Field(default_factory=dict)
    duplicate_index: dict[str, list[InstanceId]] = Field(default_factory=dict)
    error: str | None = None
    status: str | None = None
    persistence_error: str | None = None
    stages_run: list[str] = Field(default_factory=list)


class CorrectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(min_length=1)
    from_category: int | None = Field(default=None, alias="from", ge=0, le=3)
    to_category: int = Field(alias="to")


class CorrectResponse(BaseModel):
    ack: bool


# =============================================================================
# HOST LIFECYCLE EVENTS
# =============================================================================


class TabEventPayload(BaseModel):
    """
    One host lifecycle event.

    created: `tab` is required
    updated: `instance_id` plus whichever of address/title/window_id/favicon changed
    removed: `instance_id` only
    """

    type: Literal["created", "updated", "removed"]
    tab: TabInstance | None = None
    instance_id: InstanceId | None = None
    address: str | None = None
    title: str | None = None
    window_id: int | None = None
    favicon: str | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> TabEventPayload:
        if self.type == "created" and self.tab is None:
            raise ValueError("created events need a tab")
        if self.type != "created" and self.instance_id is None:
            raise ValueError(f"{self.type} events need an instance_id")
        return self

    def to_event(self) -> LifecycleEvent:
        if self.type == "created":
            assert self.tab is not None
            return TabCreated(instance=self.tab)
        assert self.instance_id is not None
        if self.type == "removed":
            return TabRemoved(instance_id=self.instance_id)
        return TabUpdated(
            instance_id=self.instance_id,
            address=self.address,
            title=self.title,
            window_id=self.window_id,
            favicon=self.favicon,
        )


class TabEventsRequest(BaseModel):
    events: list[TabEventPayload] = Field(max_length=EVENT_QUEUE_MAX)


class TabEventsResponse(BaseModel):
    accepted: int
    dropped: int


class BootstrapRequest(BaseModel):
    tabs: list[TabInstance] = Field(max_length=CLASSIFY_BATCH_MAX)


# =============================================================================
# RULES / RECORDS
# =============================================================================


class RulesPayload(BaseModel):
    rules: list[Rule]


class SavedUrlsResponse(BaseModel):
    """Stored records in one tier, plus record totals keyed by tier label."""

    category: int
    label: str
    records: list[UrlRecord]
    counts: dict[str, int]

    @classmethod
    def build(
        cls, category: Category, records: list[UrlRecord], counts: dict[Category, int]
    ) -> SavedUrlsResponse:
        return cls(
            category=int(category),
            label=category.label,
            records=records,
            counts={c.label: n for c, n in counts.items()},
        )
