"""
End-to-end: dedupe -> rules -> remote (faked) -> canonical state -> storage.
"""

import asyncio

from tabq.engine import TabEngine
from tabq.storage.models import Category, ClassificationPolicy, Provenance, Rule


def test_five_tabs_one_excluded(db_pool, make_provider, sample_tabs):
    provider = make_provider('{"dedup_0": 3, "dedup_2": 2}')
    engine = TabEngine(pool=db_pool, provider_factory=provider.factory)
    policy = ClassificationPolicy(
        rules=[Rule(kind="domain", value="b.example", category=Category.CAN_CLOSE)],
        use_learned=False,
    )

    outcome = asyncio.run(
        engine.sync.request_classification(sample_tabs, ["https://d.example/saved"], policy)
    )

    assert outcome.success
    assert outcome.stages_run == ["rules", "remote"]
    state = engine.sync.get_state().categorized
    assert [u.address for u in state[Category.IMPORTANT]] == ["https://a.example/page"]
    assert [u.address for u in state[Category.SAVE_LATER]] == ["https://c.example/post"]
    assert [u.address for u in state[Category.CAN_CLOSE]] == [
        "https://b.example/",
        "https://d.example/saved",
    ]
    assert state[Category.CAN_CLOSE][1].already_saved
    assert state[Category.UNCATEGORIZED] == []
    assert state[Category.IMPORTANT][0].duplicate_ids == [1, 2]

    # only the two remote-bound units were sent to the provider
    assert "a.example" in provider.prompts[0]
    assert "b.example" not in provider.prompts[0]

    stored = engine.records.get_many(
        ["https://a.example/page", "https://b.example/", "https://c.example/post", "https://d.example/saved"]
    )
    assert stored["https://a.example/page"].category == Category.IMPORTANT
    assert stored["https://b.example/"].provenance == Provenance.RULE
    assert stored["https://c.example/post"].category == Category.SAVE_LATER
    assert "https://d.example/saved" not in stored


def test_persisted_higher_tier_wins_over_fresh_rule(db_pool, make_provider):
    engine = TabEngine(pool=db_pool, provider_factory=make_provider().factory)
    engine.records.save_category("https://x.io/", Category.IMPORTANT, Provenance.REMOTE)
    policy = ClassificationPolicy(
        rules=[Rule(kind="domain", value="x.io", category=Category.CAN_CLOSE)], use_learned=False
    )

    asyncio.run(
        engine.sync.request_classification(
            [{"instance_id": 1, "address": "https://x.io/"}], policy=policy
        )
    )

    category, unit = engine.store.find_by_address("https://x.io/")
    assert category == Category.IMPORTANT
    assert engine.records.get("https://x.io/").category == Category.IMPORTANT


def test_remote_failure_reports_status_and_uses_heuristics(db_pool, failing_provider):
    engine = TabEngine(pool=db_pool, provider_factory=failing_provider.factory)
    policy = ClassificationPolicy(rules=[], use_learned=False)

    outcome = asyncio.run(
        engine.sync.request_classification(
            [{"instance_id": 1, "address": "https://github.com/psf/requests"}], policy=policy
        )
    )

    assert outcome.success
    assert "heuristics" in outcome.status
    assert engine.store.find_by_address("https://github.com/psf/requests")[0] == Category.IMPORTANT
