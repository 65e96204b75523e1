"""
Live Reconciler: keeps the canonical state in step with host tab events.

Events arrive on an asyncio.Queue and are handled one at a time by a single
dispatch task. Persisted-record lookups and event writes are the only
suspension points, and the store is re-read after each of them. Failures are
logged and counted, never raised to the host: a tab whose lookup fails is
tracked as Uncategorized.

Per-instance lifecycle: Unseen -> Tracked(category) -> Closed.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from tabq.classification.deduplicator import coerce_instances
from tabq.config import EVENT_QUEUE_MAX
from tabq.errors import PersistenceError, ValidationError
from tabq.infrastructure.settings import UI_PAGE_PREFIX
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter, log_event
from tabq.state.events import LifecycleEvent, Notification, NotificationType, TabCreated, TabRemoved, TabUpdated
from tabq.state.store import CanonicalStateStore
from tabq.storage.models import Category, InstanceId, Provenance, TabInstance, UrlRecord
from tabq.storage.url_records import UrlRecordRepository
from tabq.storage.write_buffer import DeferredWriteBuffer
from tabq.utils.urls import normalize_address

logger = get_logger(__name__)

Notifier = Callable[[Notification], Any]


class LiveReconciler:
    def __init__(
        self,
        store: CanonicalStateStore,
        records: UrlRecordRepository,
        write_buffer: DeferredWriteBuffer,
        notify: Notifier,
        ui_page_prefix: str = UI_PAGE_PREFIX,
        queue_max: int = EVENT_QUEUE_MAX,
    ) -> None:
        self.store = store
        self.records = records
        self.write_buffer = write_buffer
        self.notify = notify
        self.ui_page_prefix = ui_page_prefix
        self.queue: asyncio.Queue[LifecycleEvent] = asyncio.Queue(maxsize=queue_max)
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    def submit_nowait(self, event: LifecycleEvent) -> bool:
        """Enqueue an event; False when the queue is full and the event was dropped."""
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            counter("reconciler.queue_full")
            logger.warning("Reconciler queue full, dropping %s", type(event).__name__)
            return False
        return True

    async def submit(self, event: LifecycleEvent) -> None:
        await self.queue.put(event)

    async def run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.handle(event)
            except Exception as e:
                counter("reconciler.handler_failed")
                logger.warning("Reconciliation of %s failed: %s", type(event).__name__, e)
            finally:
                self.queue.task_done()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="tabq-reconciler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self.queue.join()

    # ------------------------------------------------------------------
    # Storage helpers (suspension points)
    # ------------------------------------------------------------------

    async def _lookup(self, address: str) -> UrlRecord | None:
        try:
            return await asyncio.to_thread(self.records.get, address)
        except PersistenceError as e:
            counter("reconciler.lookup_failed")
            logger.warning("Record lookup failed, tracking tab as Uncategorized: %s", e)
            return None

    async def _write(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            await asyncio.to_thread(self.write_buffer.write, func, *args, **kwargs)
        except PersistenceError as e:
            counter("reconciler.write_deferred")
            logger.warning("Event write deferred: %s", e)

    def _ignored(self, address: str | None) -> bool:
        address = normalize_address(address)
        return not address or address.startswith(self.ui_page_prefix)

    def _emit(
        self,
        kind: NotificationType,
        category: Category | None = None,
        unit: Any = None,
    ) -> None:
        counter(f"reconciler.{kind}")
        self.notify(
            Notification(
                type=kind,
                unit=unit.model_copy(deep=True) if unit is not None else None,
                category=category,
            )
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def handle(self, event: LifecycleEvent) -> None:
        if isinstance(event, TabCreated):
            await self._on_created(event.instance)
        elif isinstance(event, TabUpdated):
            await self._on_updated(event)
        elif isinstance(event, TabRemoved):
            await self._on_removed(event.instance_id)
        else:
            raise ValidationError(f"unknown lifecycle event {type(event).__name__}")

    async def _on_created(self, instance: TabInstance, kind: NotificationType = "created") -> None:
        """
        Track a new (or newly navigated) instance.

        The stored category is used when the address has a record. Joining an
        existing unit keeps the higher of the unit's tier and the stored one,
        unless the unit carries a user correction.
        """
        if self._ignored(instance.address):
            counter("reconciler.ignored")
            return

        tracked = self.store.find_by_instance(instance.instance_id)
        if kind == "created" and tracked is not None and tracked[1].address == instance.address:
            counter("reconciler.repeat_created")
            return

        record = await self._lookup(instance.address)
        stored = record.category if record is not None else Category.UNCATEGORIZED
        provenance = Provenance.PERSISTED if stored != Category.UNCATEGORIZED else None

        unit, joined = self.store.add_instance(instance, stored, provenance)
        found = self.store.find_by_address(unit.address)
        category = found[0] if found else stored

        if joined and stored > category and unit.provenance != Provenance.USER_CORRECTION:
            self.store.move_unit(unit.address, stored, Provenance.PERSISTED)
            category = stored

        if joined and kind == "created":
            kind = "duplicate-created"
        self._emit(kind, category, unit)

        if record is not None:
            await self._write(
                self.records.record_event, instance.address, "open", instance.instance_id
            )

    async def _on_updated(self, event: TabUpdated) -> None:
        found = self.store.find_by_instance(event.instance_id)
        if found is None:
            # Never seen this tab: treat as a creation
            if not self._ignored(event.address):
                await self._on_created(
                    TabInstance(
                        instance_id=event.instance_id,
                        address=event.address,
                        title=event.title or "",
                        window_id=event.window_id,
                        favicon=event.favicon,
                    )
                )
            return

        category, unit = found
        new_address = normalize_address(event.address) if event.address is not None else None

        if new_address is not None and new_address != unit.address:
            removal = self.store.remove_instance(event.instance_id)
            if self._ignored(new_address):
                if removal is not None:
                    self._emit("removed", removal.category, removal.unit)
                return
            await self._on_created(
                TabInstance(
                    instance_id=event.instance_id,
                    address=new_address,
                    title=event.title if event.title is not None else "",
                    window_id=event.window_id if event.window_id is not None else unit.window_id,
                    favicon=event.favicon,
                ),
                kind="navigated",
            )
            return

        if event.title is not None and event.title != unit.title:
            patched = self.store.patch_title(event.instance_id, event.title)
            self._emit("refresh", category, patched)

    async def _on_removed(self, instance_id: InstanceId) -> None:
        removal = self.store.remove_instance(instance_id)
        if removal is None:
            counter("reconciler.unknown_removed")
            return

        self._emit("removed", removal.category, removal.unit)
        await self._write(
            self.records.record_event,
            removal.unit.address,
            "close",
            instance_id,
            title=removal.unit.title,
        )

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def bootstrap(self, instances: Iterable[TabInstance | Mapping[str, Any]]) -> int:
        """
        Seed the store with every currently open tab, using stored categories.

        Returns:
            Number of instances tracked
        """
        tabs = [tab for tab in coerce_instances(instances) if not self._ignored(tab.address)]
        try:
            records = await asyncio.to_thread(
                self.records.get_many, [tab.address for tab in tabs]
            )
        except PersistenceError as e:
            counter("reconciler.lookup_failed")
            logger.warning("Bootstrap lookup failed, tabs start Uncategorized: %s", e)
            records = {}

        for tab in tabs:
            record = records.get(tab.address)
            stored = record.category if record is not None else Category.UNCATEGORIZED
            provenance = Provenance.PERSISTED if stored != Category.UNCATEGORIZED else None
            unit, joined = self.store.add_instance(tab, stored, provenance)
            found = self.store.find_by_address(unit.address)
            if joined and found is not None and stored > found[0]:
                self.store.move_unit(unit.address, stored, Provenance.PERSISTED)

        log_event("reconciler.bootstrap", tabs=len(tabs), known=len(records))
        self._emit("refresh")
        return len(tabs)
