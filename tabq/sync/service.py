"""
Sync Service: the operations the presentation process calls.

get_state / request_classification / correct_category, plus the supporting
calls exposed over HTTP (rules, URL deletion, recent sessions, clear). The
service owns no state of its own; it drives the pipeline against the engine's
store and persists through the deferred-write buffer.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from tabq.classification.learned import LearnedModel
from tabq.classification.merge import resolve
from tabq.classification.pipeline import ClassificationPipeline
from tabq.classification.rules_engine import DEFAULT_RULES
from tabq.config import (
    DEFAULT_MODEL,
    DEFAULT_PROVIDER,
    SESSIONS_LIMIT_DEFAULT,
    USE_LEARNED_MODEL,
    USE_REMOTE_CLASSIFIER,
)
from tabq.errors import PersistenceError, PipelineExhausted, ValidationError
from tabq.observability.accuracy import VerdictLedger
from tabq.observability.confidence import USER_CORRECTION_CONFIDENCE
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter, log_event
from tabq.state.events import LifecycleEvent, Notification, NotificationType
from tabq.state.reconciler import LiveReconciler
from tabq.state.store import CanonicalStateStore, StateSnapshot
from tabq.storage.models import (
    ASSIGNABLE_CATEGORIES,
    Category,
    ClassificationPolicy,
    ClassificationUnit,
    InstanceId,
    Provenance,
    RemoteConfig,
    Rule,
    TabInstance,
    UrlRecord,
)
from tabq.storage.rules import RuleRepository
from tabq.storage.url_records import UrlRecordRepository
from tabq.storage.write_buffer import DeferredWriteBuffer
from tabq.sync.hub import NotificationHub

logger = get_logger(__name__)


@dataclass
class ClassifyOutcome:
    """What one request_classification call reports back."""

    success: bool
    categorized: dict[Category, list[ClassificationUnit]] = field(default_factory=dict)
    duplicate_index: dict[str, list[InstanceId]] = field(default_factory=dict)
    error: str | None = None
    status: str | None = None
    persistence_error: str | None = None
    stages_run: list[str] = field(default_factory=list)
    superseded: bool = False


def default_policy() -> ClassificationPolicy:
    return ClassificationPolicy(
        use_learned=USE_LEARNED_MODEL,
        use_remote=USE_REMOTE_CLASSIFIER,
        remote=RemoteConfig(provider=DEFAULT_PROVIDER, model=DEFAULT_MODEL),
    )


class SyncService:
    def __init__(
        self,
        store: CanonicalStateStore,
        records: UrlRecordRepository,
        rules: RuleRepository,
        pipeline: ClassificationPipeline,
        hub: NotificationHub,
        write_buffer: DeferredWriteBuffer,
        reconciler: LiveReconciler | None = None,
        learned_model: LearnedModel | None = None,
    ) -> None:
        self.store = store
        self.records = records
        self.rules = rules
        self.pipeline = pipeline
        self.hub = hub
        self.write_buffer = write_buffer
        self.reconciler = reconciler
        self.learned_model = learned_model
        self.verdicts = VerdictLedger()
        self._run_seq = 0

    def publish(
        self,
        kind: NotificationType,
        unit: ClassificationUnit | None = None,
        category: Category | None = None,
    ) -> int:
        return self.hub.publish(
            Notification(
                type=kind,
                unit=unit.model_copy(deep=True) if unit is not None else None,
                category=category,
            )
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_state(self) -> StateSnapshot:
        counter("sync.get_state")
        return self.store.snapshot()

    def clear_all(self) -> None:
        """
        Drop every unit from canonical state. Persisted records are kept.

        Side Effects:
            - Empties the store
            - Publishes a refresh notification
        """
        self.store.clear_all()
        self.verdicts.clear()
        log_event("sync.cleared")
        self.publish("refresh")

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    async def _resolve_policy(self, policy: ClassificationPolicy | None) -> ClassificationPolicy:
        policy = policy or default_policy()
        if policy.rules is not None:
            return policy
        try:
            stored = await asyncio.to_thread(self.rules.list_rules)
        except PersistenceError as e:
            counter("sync.rules_load_failed")
            logger.warning("Could not load stored rules, using defaults: %s", e)
            stored = []
        return policy.model_copy(update={"rules": stored or list(DEFAULT_RULES)})

    def _persist_verdicts(self, units: list[tuple[Category, ClassificationUnit]]) -> str | None:
        """Save fresh verdicts; returns the first failure message, if any."""
        first_error: str | None = None
        for category, unit in units:
            try:
                self.write_buffer.write(
                    self.records.save_category,
                    unit.address,
                    category,
                    unit.provenance,
                    title=unit.title,
                    domain=unit.domain,
                    favicon=unit.favicon,
                )
            except PersistenceError as e:
                first_error = first_error or str(e)
        return first_error

    async def request_classification(
        self,
        instances: Iterable[TabInstance | Mapping[str, Any]],
        exclude_addresses: Iterable[str] = (),
        policy: ClassificationPolicy | None = None,
    ) -> ClassifyOutcome:
        """
        Classify the given tabs and install the result into canonical state.

        A run that finishes after a newer one started is still merged on top
        of the state at completion time. User corrections (stored or made
        while the run was in flight) are never overwritten.

        Raises:
            ValidationError: For malformed instances or policy

        Side Effects:
            - Calls the remote provider when the policy enables it
            - Replaces covered addresses in the store
            - Remembers fresh verdicts for accuracy bookkeeping
            - Writes category records (deferred on storage failure)
            - Publishes a refresh notification
        """
        self._run_seq += 1
        run_id = self._run_seq
        policy = await self._resolve_policy(policy)

        try:
            tabs = await self.pipeline.categorize_tabs(instances, exclude_addresses, policy)
        except PipelineExhausted as e:
            logger.error("Classification run %d left units unresolved: %s", run_id, e)
            return ClassifyOutcome(success=False, error=str(e))

        superseded = run_id != self._run_seq
        if superseded:
            counter("sync.superseded_run")
            logger.info("Classification run %d finished after a newer run started", run_id)

        try:
            known = await asyncio.to_thread(self.records.get_many, tabs.covered_addresses)
        except PersistenceError as e:
            counter("sync.records_lookup_failed")
            logger.warning("Stored categories unavailable, using run verdicts only: %s", e)
            known = {}

        merged: dict[Category, list[ClassificationUnit]] = {c: [] for c in Category}
        to_persist: list[tuple[Category, ClassificationUnit]] = []
        for category, units in tabs.categorized.items():
            for unit in units:
                final_category, final_provenance = category, unit.provenance
                if not unit.already_saved:
                    current = self.store.find_by_address(unit.address)
                    record = known.get(unit.address)
                    if current is not None and current[1].provenance == Provenance.USER_CORRECTION:
                        final_category, final_provenance = current[0], Provenance.USER_CORRECTION
                    elif record is not None and record.category != Category.UNCATEGORIZED:
                        final_category, final_provenance = resolve(
                            category, unit.provenance, record.category, record.provenance
                        )
                    fresh = final_category == category and final_provenance == unit.provenance
                    if fresh:
                        self.verdicts.record(unit.address, unit.provenance, category)
                    if fresh and category in ASSIGNABLE_CATEGORIES:
                        to_persist.append((category, unit))
                if final_provenance != unit.provenance:
                    unit.provenance = final_provenance
                    unit.confidence = None
                merged[final_category].append(unit)

        self.store.bulk_replace(merged, tabs.covered_addresses)

        persistence_error = None
        if to_persist:
            persistence_error = await asyncio.to_thread(self._persist_verdicts, to_persist)
            if persistence_error:
                counter("sync.persist_failed")
                logger.warning("Classification results kept in memory only: %s", persistence_error)

        self.publish("refresh")
        log_event(
            "sync.classified",
            run=run_id,
            units=len(tabs.covered_addresses),
            persisted=len(to_persist),
            superseded=superseded,
        )

        status = None
        if tabs.result.remote_error:
            status = f"Remote classifier failed ({tabs.result.remote_error}); used local heuristics"
        elif tabs.result.unresolved:
            status = f"{len(tabs.result.unresolved)} tabs left uncategorized by the remote classifier"

        return ClassifyOutcome(
            success=True,
            categorized={c: [u.model_copy(deep=True) for u in units] for c, units in merged.items()},
            duplicate_index=tabs.duplicate_index,
            status=status,
            persistence_error=persistence_error,
            stages_run=list(tabs.result.stages_run),
            superseded=superseded,
        )

    # ------------------------------------------------------------------
    # User correction
    # ------------------------------------------------------------------

    async def correct_category(
        self, address: str, from_category: Category | int | None, to_category: Category | int
    ) -> bool:
        """
        Move an address to the tier the user picked, marked as a user correction.

        Returns:
            ack: True if the store or the stored record was updated

        Raises:
            ValidationError: If to_category is not 1, 2 or 3

        Side Effects:
            - Moves the unit in the store
            - Scores the verdict that had placed the address (accuracy.* counters)
            - Writes the record (deferred on storage failure)
            - Feeds the correction to the learned model
            - Publishes a refresh notification
        """
        target = Category.coerce(to_category)
        if target not in ASSIGNABLE_CATEGORIES:
            raise ValidationError(f"cannot correct to category {to_category!r}")

        found = self.store.find_by_address(address)
        if found is not None and from_category is not None and Category.coerce(from_category) != found[0]:
            logger.debug("Correction source tier differs from current tier")

        unit = self.store.move_unit(
            address, target, Provenance.USER_CORRECTION, USER_CORRECTION_CONFIDENCE
        )
        overridden = self.verdicts.record_correction(address, target)
        if overridden is not None:
            logger.info("Correction overrode a %s verdict", overridden.value)
        title = unit.title if unit is not None else ""

        persisted = True
        try:
            await asyncio.to_thread(
                self.write_buffer.write,
                self.records.save_category,
                address,
                target,
                Provenance.USER_CORRECTION,
                title=title,
                domain=unit.domain if unit is not None else "",
            )
        except PersistenceError as e:
            persisted = False
            counter("sync.correction_deferred")
            logger.warning("Correction kept in memory only: %s", e)

        if self.learned_model is not None:
            self.learned_model.learn_correction(address, title, target)

        counter("sync.corrections")
        self.publish("refresh", unit, target)
        return unit is not None or persisted

    # ------------------------------------------------------------------
    # Records and rules
    # ------------------------------------------------------------------

    async def delete_url(self, address: str) -> bool:
        """
        Delete an address's stored record and history.

        Raises:
            PersistenceError: If storage is unavailable
        """
        deleted = await asyncio.to_thread(self.records.delete, address)
        log_event("sync.url_deleted", deleted=deleted)
        return deleted

    async def list_saved(self, category: Category) -> tuple[list[UrlRecord], dict[Category, int]]:
        """
        Stored records in one tier, newest first, plus per-tier totals.

        Raises:
            PersistenceError: If storage is unavailable
        """
        records = await asyncio.to_thread(self.records.list_by_category, category)
        counts = await asyncio.to_thread(self.records.category_counts)
        return records, counts

    async def list_rules(self) -> list[Rule]:
        return await asyncio.to_thread(self.rules.list_rules)

    async def replace_rules(self, rules: Iterable[Rule]) -> int:
        return await asyncio.to_thread(self.rules.replace_rules, list(rules))

    async def recent_sessions(self, limit: int = SESSIONS_LIMIT_DEFAULT) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self.records.recent_sessions, limit)

    # ------------------------------------------------------------------
    # Host ingress
    # ------------------------------------------------------------------

    def ingest(self, events: Iterable[LifecycleEvent]) -> int:
        """Queue host lifecycle events. Returns how many were accepted."""
        if self.reconciler is None:
            raise ValidationError("no reconciler attached")
        return sum(1 for event in events if self.reconciler.submit_nowait(event))

    async def bootstrap(self, instances: Iterable[TabInstance | Mapping[str, Any]]) -> int:
        if self.reconciler is None:
            raise ValidationError("no reconciler attached")
        return await self.reconciler.bootstrap(instances)
