"""
TabEngine: composition root for one engine process.

Owns the canonical store, the persisted record repositories, the pipeline,
the reconciler and the notification hub, and wires them together. Nothing
here is a module global; tests build one engine per database.
"""

from __future__ import annotations

import asyncio

from tabq.classification.learned import LearnedModel
from tabq.classification.pipeline import ClassificationPipeline, ProviderFactory
from tabq.classification.rules_engine import DEFAULT_RULES
from tabq.errors import PersistenceError
from tabq.infrastructure.database import DatabaseConnectionPool, get_pool
from tabq.llm.providers import get_provider
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import log_event
from tabq.state.reconciler import LiveReconciler
from tabq.state.store import CanonicalStateStore
from tabq.storage.models import ASSIGNABLE_CATEGORIES
from tabq.storage.rules import RuleRepository
from tabq.storage.url_records import UrlRecordRepository
from tabq.storage.write_buffer import DeferredWriteBuffer
from tabq.sync.hub import NotificationHub
from tabq.sync.service import SyncService

logger = get_logger(__name__)


class TabEngine:
    def __init__(
        self,
        pool: DatabaseConnectionPool | None = None,
        provider_factory: ProviderFactory = get_provider,
        learned_model: LearnedModel | None = None,
    ) -> None:
        self.pool = pool or get_pool()
        self.store = CanonicalStateStore()
        self.records = UrlRecordRepository(self.pool)
        self.rules = RuleRepository(self.pool)
        self.write_buffer = DeferredWriteBuffer()
        self.learned_model = learned_model or LearnedModel()
        self.pipeline = ClassificationPipeline(
            provider_factory=provider_factory, learned_model=self.learned_model
        )
        self.hub = NotificationHub()
        self.reconciler = LiveReconciler(
            self.store, self.records, self.write_buffer, notify=self.hub.publish
        )
        self.sync = SyncService(
            self.store,
            self.records,
            self.rules,
            self.pipeline,
            self.hub,
            self.write_buffer,
            reconciler=self.reconciler,
            learned_model=self.learned_model,
        )

    async def start(self) -> None:
        """
        Seed default rules, train the learned model and start event dispatch.

        Storage failures here are logged; the engine still starts with defaults.

        Side Effects:
            - May insert default rows into rules
            - Starts the reconciler dispatch task
        """
        try:
            seeded = await asyncio.to_thread(self.rules.seed_defaults, DEFAULT_RULES)
            records = []
            for category in ASSIGNABLE_CATEGORIES:
                records.extend(
                    await asyncio.to_thread(self.records.list_by_category, category)
                )
            trained = await asyncio.to_thread(self.learned_model.train, records)
        except PersistenceError as e:
            logger.warning("Engine starting without stored rules or training data: %s", e)
            seeded, trained = False, 0

        self.reconciler.start()
        log_event("engine.started", rules_seeded=seeded, trained=trained)

    async def stop(self) -> None:
        await self.reconciler.stop()
        pending = await asyncio.to_thread(self.write_buffer.flush)
        log_event("engine.stopped", pending_writes=pending)
