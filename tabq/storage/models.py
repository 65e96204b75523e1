"""
Domain models (Pydantic v2) for the tab engine.

Units, records and rules are validated at ingress (HTTP bodies, host events,
storage rows) so the engine only ever sees a closed Category enum and trimmed
addresses.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, computed_field, field_validator, model_validator

from tabq.utils.urls import extract_domain, normalize_address

InstanceId = int | str


class Category(IntEnum):
    """Priority tier. Integer order is the merge order: higher wins."""

    UNCATEGORIZED = 0
    CAN_CLOSE = 1
    SAVE_LATER = 2
    IMPORTANT = 3

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]

    @classmethod
    def coerce(cls, value: Any) -> Category | None:
        """
        Narrow an untyped value (provider reply, request body) into a Category.

        Accepts ints and digit strings; bools, floats and anything else give None.

        Examples:
            >>> Category.coerce("3")
            <Category.IMPORTANT: 3>

            >>> Category.coerce(True) is None
            True
        """
        if isinstance(value, bool):
            return None
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        if not isinstance(value, int):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


_CATEGORY_LABELS = {
    Category.UNCATEGORIZED: "Uncategorized",
    Category.CAN_CLOSE: "Can Close",
    Category.SAVE_LATER: "Save Later",
    Category.IMPORTANT: "Important",
}

# Tiers a classifier may assign
ASSIGNABLE_CATEGORIES = (Category.CAN_CLOSE, Category.SAVE_LATER, Category.IMPORTANT)


class Provenance(str, Enum):
    """Origin of a category verdict."""

    RULE = "rule"
    LEARNED = "learned"
    REMOTE = "remote"
    HEURISTIC = "heuristic"
    USER_CORRECTION = "user_correction"
    PERSISTED = "persisted"


class TabInstance(BaseModel):
    """One open browsing session as reported by the host."""

    instance_id: InstanceId = Field(validation_alias=AliasChoices("instance_id", "id"))
    address: str = Field(validation_alias=AliasChoices("address", "url"))
    title: str = ""
    domain: str = ""
    window_id: int | None = None
    favicon: str | None = None

    @field_validator("address")
    @classmethod
    def _trim_address(cls, value: str) -> str:
        value = normalize_address(value)
        if not value:
            raise ValueError("address must not be empty")
        return value

    @model_validator(mode="before")
    @classmethod
    def _derive_domain(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("domain"):
            address = data.get("address") or data.get("url")
            data = {**data, "domain": extract_domain(address)}
        return data


class ClassificationUnit(BaseModel):
    """All currently open instances sharing one exact address."""

    unit_id: str
    address: str
    title: str = ""
    domain: str = ""
    window_id: int | None = None
    favicon: str | None = None
    duplicate_ids: list[InstanceId] = Field(default_factory=list)
    already_saved: bool = False
    provenance: Provenance | None = None
    confidence: float | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duplicate_count(self) -> int:
        return len(self.duplicate_ids)

    @property
    def instance_id(self) -> InstanceId | None:
        """Representative instance: first remaining duplicate id."""
        return self.duplicate_ids[0] if self.duplicate_ids else None

    @classmethod
    def from_instance(
        cls, unit_id: str, instance: TabInstance, **extra: Any
    ) -> ClassificationUnit:
        return cls(
            unit_id=unit_id,
            address=instance.address,
            title=instance.title,
            domain=instance.domain,
            window_id=instance.window_id,
            favicon=instance.favicon,
            duplicate_ids=[instance.instance_id],
            **extra,
        )


class UrlEvent(BaseModel):
    instance_id: InstanceId | None = None
    kind: Literal["open", "close"]
    timestamp: float


class UrlRecord(BaseModel):
    """Durable per-address record."""

    address: str
    category: Category = Category.UNCATEGORIZED
    provenance: Provenance | None = None
    title: str = ""
    domain: str = ""
    favicon: str | None = None
    first_seen: float
    last_categorized: float | None = None
    events: list[UrlEvent] = Field(default_factory=list)


RuleKind = Literal["domain", "url_contains", "title_contains", "regex"]


class Rule(BaseModel):
    """Static classification rule. First enabled match wins."""

    kind: RuleKind
    value: str
    field: Literal["url", "title"] = "url"
    category: Category
    enabled: bool = True

    @field_validator("value")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("rule value must not be empty")
        return value

    @field_validator("category")
    @classmethod
    def _assignable(cls, value: Category) -> Category:
        if value not in ASSIGNABLE_CATEGORIES:
            raise ValueError("rule category must be 1, 2 or 3")
        return value


class RemoteConfig(BaseModel):
    provider: Literal["claude", "openai", "gemini", "deepseek", "grok"] = "claude"
    model: str | None = None
    api_key: str | None = Field(default=None, repr=False)
    custom_prompt: str | None = None


class ClassificationPolicy(BaseModel):
    """Which pipeline stages run for one classification request."""

    rules: list[Rule] | None = None
    use_learned: bool = True
    use_remote: bool = True
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    remote_timeout: float | None = Field(default=None, gt=0)
