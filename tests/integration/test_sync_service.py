"""Sync service: classification runs, corrections and storage failures."""

import asyncio

import pytest

from tabq.engine import TabEngine
from tabq.errors import ValidationError
from tabq.observability.accuracy import accuracy_by_source
from tabq.observability.telemetry import get_counter
from tabq.storage.models import Category, ClassificationPolicy, Provenance, TabInstance

REMOTE_ONLY = ClassificationPolicy(rules=[], use_learned=False)


class GatedProvider:
    """First call blocks until released; later calls answer at once."""

    name = "gated"

    def __init__(self, first_reply: str, later_reply: str) -> None:
        self.first_reply = first_reply
        self.later_reply = later_reply
        self.release = asyncio.Event()
        self.calls = 0

    async def complete(self, prompt: str) -> str:
        self.calls += 1
        if self.calls == 1:
            await self.release.wait()
            return self.first_reply
        return self.later_reply

    def factory(self, config):
        return self


def test_superseded_run_keeps_correction_made_in_flight(db_pool, records):
    provider = GatedProvider('{"dedup_0": 3}', '{"dedup_0": 2}')
    engine = TabEngine(pool=db_pool, provider_factory=provider.factory)
    tabs = [TabInstance(instance_id=1, address="https://a.io/")]

    async def scenario():
        slow = asyncio.create_task(engine.sync.request_classification(tabs, policy=REMOTE_ONLY))
        while provider.calls < 1:
            await asyncio.sleep(0)
        fast = await engine.sync.request_classification(tabs, policy=REMOTE_ONLY)
        assert engine.store.find_by_address("https://a.io/")[0] == Category.SAVE_LATER

        await engine.sync.correct_category("https://a.io/", Category.SAVE_LATER, Category.CAN_CLOSE)
        provider.release.set()
        return fast, await slow

    fast, slow = asyncio.run(scenario())

    assert not fast.superseded
    assert slow.superseded
    assert get_counter("sync.superseded_run") == 1

    category, unit = engine.store.find_by_address("https://a.io/")
    assert category == Category.CAN_CLOSE
    assert unit.provenance == Provenance.USER_CORRECTION
    stored = records.get("https://a.io/")
    assert stored.category == Category.CAN_CLOSE
    assert stored.provenance == Provenance.USER_CORRECTION


def test_stored_correction_beats_fresh_verdict(db_pool, records, make_provider):
    records.save_category("https://a.io/", Category.CAN_CLOSE, Provenance.USER_CORRECTION)
    engine = TabEngine(pool=db_pool, provider_factory=make_provider('{"dedup_0": 3}').factory)

    asyncio.run(
        engine.sync.request_classification(
            [TabInstance(instance_id=1, address="https://a.io/")], policy=REMOTE_ONLY
        )
    )

    category, unit = engine.store.find_by_address("https://a.io/")
    assert category == Category.CAN_CLOSE
    assert unit.provenance == Provenance.USER_CORRECTION
    assert records.get("https://a.io/").category == Category.CAN_CLOSE


def test_correct_category_persists_and_notifies(db_pool, records, make_provider):
    engine = TabEngine(pool=db_pool, provider_factory=make_provider('{"dedup_0": 1}').factory)
    subscription = engine.hub.subscribe()

    async def scenario():
        await engine.sync.request_classification(
            [TabInstance(instance_id=1, address="https://a.io/", title="Quarterly report")],
            policy=REMOTE_ONLY,
        )
        return await engine.sync.correct_category("https://a.io/", 1, 3)

    assert asyncio.run(scenario()) is True

    category, unit = engine.store.find_by_address("https://a.io/")
    assert category == Category.IMPORTANT
    assert unit.provenance == Provenance.USER_CORRECTION
    assert records.get("https://a.io/").provenance == Provenance.USER_CORRECTION

    notifications = []
    while not subscription.queue.empty():
        notifications.append(subscription.queue.get_nowait())
    assert [n.type for n in notifications] == ["refresh", "refresh"]
    assert notifications[-1].category == Category.IMPORTANT
    assert get_counter("sync.corrections") == 1


def test_correct_unknown_address_still_stores_record(db_pool, records):
    engine = TabEngine(pool=db_pool)

    ack = asyncio.run(engine.sync.correct_category("https://later.io/", None, 2))

    assert ack is True
    assert engine.store.find_by_address("https://later.io/") is None
    assert records.get("https://later.io/").category == Category.SAVE_LATER


@pytest.mark.parametrize("target", [0, 4, "x"])
def test_correct_rejects_unassignable_target(db_pool, target):
    engine = TabEngine(pool=db_pool)
    with pytest.raises(ValidationError):
        asyncio.run(engine.sync.correct_category("https://a.io/", 1, target))


def test_classification_survives_storage_failure(db_pool, make_provider):
    engine = TabEngine(pool=db_pool, provider_factory=make_provider('{"dedup_0": 3, "dedup_1": 2}').factory)
    db_pool.close_all()

    outcome = asyncio.run(
        engine.sync.request_classification(
            [
                TabInstance(instance_id=1, address="https://a.io/"),
                TabInstance(instance_id=2, address="https://b.io/"),
            ],
            policy=REMOTE_ONLY,
        )
    )

    assert outcome.success
    assert outcome.persistence_error
    assert engine.store.find_by_address("https://a.io/")[0] == Category.IMPORTANT
    assert engine.store.find_by_address("https://b.io/")[0] == Category.SAVE_LATER
    assert len(engine.write_buffer) == 2


def test_correction_with_storage_down_still_acks(db_pool, make_provider):
    engine = TabEngine(pool=db_pool, provider_factory=make_provider('{"dedup_0": 1}').factory)

    async def scenario():
        await engine.sync.request_classification(
            [TabInstance(instance_id=1, address="https://a.io/")], policy=REMOTE_ONLY
        )
        db_pool.close_all()
        return await engine.sync.correct_category("https://a.io/", 1, 2)

    assert asyncio.run(scenario()) is True
    assert engine.store.find_by_address("https://a.io/")[0] == Category.SAVE_LATER
    assert get_counter("sync.correction_deferred") == 1


def test_units_missing_from_reply_stay_uncategorized(db_pool, records, make_provider):
    engine = TabEngine(pool=db_pool, provider_factory=make_provider("{}").factory)

    outcome = asyncio.run(
        engine.sync.request_classification(
            [TabInstance(instance_id=1, address="https://a.io/")], policy=REMOTE_ONLY
        )
    )

    assert outcome.success
    assert "uncategorized" in outcome.status
    assert engine.store.find_by_address("https://a.io/")[0] == Category.UNCATEGORIZED
    assert records.get("https://a.io/") is None


def test_default_rules_used_when_policy_has_none(db_pool, fake_provider):
    engine = TabEngine(pool=db_pool, provider_factory=fake_provider.factory)

    async def scenario():
        await engine.start()
        try:
            return await engine.sync.request_classification(
                [TabInstance(instance_id=1, address="https://google.com/")],
                policy=ClassificationPolicy(use_learned=False, use_remote=False),
            )
        finally:
            await engine.stop()

    outcome = asyncio.run(scenario())

    assert outcome.stages_run == ["rules"]
    category, unit = engine.store.find_by_address("https://google.com/")
    assert category == Category.CAN_CLOSE
    assert unit.provenance == Provenance.RULE


def test_ingest_without_reconciler_is_rejected(db_pool):
    engine = TabEngine(pool=db_pool)
    engine.sync.reconciler = None
    with pytest.raises(ValidationError):
        engine.sync.ingest([])


def test_correction_lowers_remote_accuracy(db_pool, make_provider):
    engine = TabEngine(
        pool=db_pool, provider_factory=make_provider('{"dedup_0": 3, "dedup_1": 1}').factory
    )
    tabs = [
        TabInstance(instance_id=1, address="https://a.io/"),
        TabInstance(instance_id=2, address="https://b.io/"),
    ]

    async def scenario():
        await engine.sync.request_classification(tabs, policy=REMOTE_ONLY)
        await engine.sync.correct_category("https://a.io/", 3, 3)
        await engine.sync.correct_category("https://b.io/", 1, 2)

    asyncio.run(scenario())

    remote = accuracy_by_source()["remote"]
    assert remote == {"predicted": 2, "overridden": 1, "accuracy": 0.5}
    assert get_counter("accuracy.remote.confirmed") == 1
    assert len(engine.sync.verdicts) == 0
    assert accuracy_by_source()["rule"]["accuracy"] is None
