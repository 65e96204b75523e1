"""Tests for grouping tab instances into classification units."""

import pytest

from tabq.classification.deduplicator import dedupe
from tabq.errors import ValidationError


def test_dedupe_groups_exact_addresses(sample_tabs):
    result = dedupe(sample_tabs, excluded_addresses=["https://d.example/saved"])

    assert [u.address for u in result.units] == [
        "https://a.example/page",
        "https://b.example/",
        "https://c.example/post",
    ]
    assert [u.unit_id for u in result.units] == ["dedup_0", "dedup_1", "dedup_2"]
    assert result.units[0].duplicate_ids == [1, 2]
    assert result.units[0].duplicate_count == 2
    # the first instance's title represents the unit
    assert result.units[0].title == "A"
    assert result.address_to_instances["https://a.example/page"] == [1, 2]

    assert len(result.excluded_units) == 1
    saved = result.excluded_units[0]
    assert saved.already_saved
    assert saved.unit_id == "saved_0"
    assert saved.duplicate_ids == [5]


def test_dedupe_count_invariant(sample_tabs):
    result = dedupe(sample_tabs, excluded_addresses=["https://d.example/saved"])
    non_excluded = [t for t in sample_tabs if t.address != "https://d.example/saved"]

    assert sum(u.duplicate_count for u in result.units) == len(non_excluded)
    addresses = [u.address for u in result.units]
    assert len(addresses) == len(set(addresses))


def test_dedupe_is_exact_match_only():
    result = dedupe(
        [
            {"instance_id": 1, "address": "https://x.com/a"},
            {"instance_id": 2, "address": "https://x.com/a/"},
            {"instance_id": 3, "address": "  https://x.com/a  "},
        ]
    )
    assert len(result.units) == 2
    assert result.units[0].duplicate_ids == [1, 3]


def test_dedupe_accepts_host_aliases():
    result = dedupe([{"id": "t1", "url": "https://www.example.com/", "title": "Ex"}])
    unit = result.units[0]
    assert unit.duplicate_ids == ["t1"]
    assert unit.domain == "example.com"


def test_dedupe_empty_input():
    result = dedupe([])
    assert result.units == []
    assert result.excluded_units == []


@pytest.mark.parametrize(
    "instances",
    [
        [{"instance_id": 1}],
        [{"instance_id": 1, "address": "   "}],
        ["https://x.com"],
        [{"instance_id": 1, "address": "https://x.com"}, {"instance_id": 1, "address": "https://y.com"}],
    ],
)
def test_dedupe_rejects_malformed_input(instances):
    with pytest.raises(ValidationError):
        dedupe(instances)
