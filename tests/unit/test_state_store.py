"""Tests for the canonical state store."""

from tabq.state.store import CanonicalStateStore
from tabq.storage.models import Category, ClassificationUnit, Provenance, TabInstance


def _unit(unit_id, address, ids, provenance=None):
    return ClassificationUnit(
        unit_id=unit_id, address=address, duplicate_ids=list(ids), provenance=provenance
    )


def _assert_exclusive(store):
    snapshot = store.snapshot()
    addresses = [u.address for units in snapshot.categorized.values() for u in units]
    assert len(addresses) == len(set(addresses))
    assert set(snapshot.duplicate_index) == set(addresses)


class TestBulkReplace:
    def test_installs_fresh_lists(self):
        store = CanonicalStateStore()
        store.bulk_replace(
            {
                Category.IMPORTANT: [_unit("dedup_0", "A", [1, 2])],
                Category.CAN_CLOSE: [_unit("dedup_1", "B", [3])],
            }
        )
        counts = store.counts()
        assert counts[Category.IMPORTANT] == 1
        assert counts[Category.CAN_CLOSE] == 1
        assert store.duplicate_index() == {"A": [1, 2], "B": [3]}
        _assert_exclusive(store)

    def test_preserves_uncovered_units_and_clears_uncategorized(self):
        store = CanonicalStateStore()
        store.bulk_replace(
            {
                Category.SAVE_LATER: [_unit("dedup_0", "KEEP", [1])],
                Category.UNCATEGORIZED: [_unit("dedup_1", "STALE", [2])],
            }
        )

        store.bulk_replace({Category.IMPORTANT: [_unit("dedup_0", "NEW", [3])]})

        assert store.find_by_address("KEEP")[0] == Category.SAVE_LATER
        assert store.find_by_address("STALE") is None
        assert store.find_by_address("NEW")[0] == Category.IMPORTANT
        _assert_exclusive(store)

    def test_covered_address_moves_between_tiers(self):
        store = CanonicalStateStore()
        store.bulk_replace({Category.SAVE_LATER: [_unit("dedup_0", "A", [1])]})
        store.bulk_replace({Category.IMPORTANT: [_unit("dedup_0", "A", [1, 4])]})

        assert store.counts()[Category.SAVE_LATER] == 0
        category, unit = store.find_by_address("A")
        assert category == Category.IMPORTANT
        assert unit.duplicate_ids == [1, 4]
        _assert_exclusive(store)

    def test_instance_moved_to_new_address_leaves_old_unit(self):
        store = CanonicalStateStore()
        store.bulk_replace({Category.SAVE_LATER: [_unit("dedup_0", "OLD", [1, 2])]})
        store.bulk_replace({Category.CAN_CLOSE: [_unit("dedup_0", "NEW", [2])]})

        assert store.find_by_address("OLD")[1].duplicate_ids == [1]
        assert store.find_by_instance(2)[1].address == "NEW"
        _assert_exclusive(store)


class TestIncrementalPatches:
    def test_duplicate_promotion(self):
        store = CanonicalStateStore()
        store.bulk_replace({Category.SAVE_LATER: [_unit("dedup_0", "X", [5, 7, 9])]})

        removal = store.remove_instance(5)
        assert not removal.unit_removed
        category, unit = store.find_by_address("X")
        assert category == Category.SAVE_LATER
        assert unit.duplicate_ids == [7, 9]
        assert unit.duplicate_count == 2
        assert unit.instance_id == 7

        store.remove_instance(7)
        removal = store.remove_instance(9)
        assert removal.unit_removed
        assert removal.category == Category.SAVE_LATER
        assert store.find_by_address("X") is None
        assert store.counts()[Category.SAVE_LATER] == 0
        assert store.duplicate_index() == {}

    def test_remove_unknown_instance(self):
        assert CanonicalStateStore().remove_instance(42) is None

    def test_add_instance_creates_or_joins(self):
        store = CanonicalStateStore()
        unit, joined = store.add_instance(
            TabInstance(instance_id=1, address="https://a.io/"), Category.UNCATEGORIZED
        )
        assert not joined
        assert unit.unit_id.startswith("live_")

        same, joined = store.add_instance(
            TabInstance(instance_id=2, address="https://a.io/"), Category.IMPORTANT
        )
        assert joined
        assert same is unit
        # joining keeps the existing tier
        assert store.find_by_address("https://a.io/")[0] == Category.UNCATEGORIZED
        assert store.duplicate_index() == {"https://a.io/": [1, 2]}

    def test_re_adding_a_held_instance_is_not_a_join(self):
        store = CanonicalStateStore()
        unit, _ = store.add_instance(
            TabInstance(instance_id=1, address="https://a.io/"), Category.CAN_CLOSE
        )
        again, joined = store.add_instance(
            TabInstance(instance_id=1, address="https://a.io/"), Category.CAN_CLOSE
        )

        assert not joined
        assert again is unit
        assert store.duplicate_index() == {"https://a.io/": [1]}

    def test_add_instance_takes_id_from_previous_unit(self):
        store = CanonicalStateStore()
        store.add_instance(TabInstance(instance_id=1, address="https://a.io/"), Category.CAN_CLOSE)
        store.add_instance(TabInstance(instance_id=1, address="https://b.io/"), Category.SAVE_LATER)

        assert store.find_by_address("https://a.io/") is None
        assert store.find_by_instance(1)[0] == Category.SAVE_LATER
        _assert_exclusive(store)

    def test_move_unit_and_patch_title(self):
        store = CanonicalStateStore()
        store.add_instance(TabInstance(instance_id=1, address="https://a.io/"), Category.CAN_CLOSE)

        moved = store.move_unit("https://a.io/", Category.IMPORTANT, Provenance.USER_CORRECTION, 1.0)
        assert moved.provenance == Provenance.USER_CORRECTION
        assert store.counts()[Category.CAN_CLOSE] == 0
        assert store.find_by_address("https://a.io/")[0] == Category.IMPORTANT
        assert store.move_unit("https://missing/", Category.IMPORTANT) is None

        store.patch_title(1, "New title")
        assert store.find_by_instance(1)[1].title == "New title"
        assert store.find_by_address("https://a.io/")[0] == Category.IMPORTANT

    def test_remove_unit_and_clear_all(self):
        store = CanonicalStateStore()
        store.add_instance(TabInstance(instance_id=1, address="https://a.io/"), Category.CAN_CLOSE)
        store.add_instance(TabInstance(instance_id=2, address="https://b.io/"), Category.IMPORTANT)

        category, unit = store.remove_unit("https://a.io/")
        assert category == Category.CAN_CLOSE
        assert store.find_by_instance(1) is None

        store.clear_all()
        assert sum(store.counts().values()) == 0
        assert store.find_by_address("https://b.io/") is None


def test_snapshot_is_a_copy():
    store = CanonicalStateStore()
    store.add_instance(TabInstance(instance_id=1, address="https://a.io/"), Category.CAN_CLOSE)
    snapshot = store.snapshot()
    snapshot.categorized[Category.CAN_CLOSE][0].duplicate_ids.append(99)
    snapshot.duplicate_index["https://a.io/"].append(99)

    assert store.find_by_address("https://a.io/")[1].duplicate_ids == [1]
    assert store.duplicate_index() == {"https://a.io/": [1]}


def test_category_exclusivity_under_mixed_operations():
    store = CanonicalStateStore()
    store.bulk_replace(
        {
            Category.IMPORTANT: [_unit("dedup_0", "A", [1])],
            Category.SAVE_LATER: [_unit("dedup_1", "B", [2, 3])],
        }
    )
    store.add_instance(TabInstance(instance_id=4, address="A"), Category.CAN_CLOSE)
    store.move_unit("B", Category.CAN_CLOSE)
    store.add_instance(TabInstance(instance_id=3, address="C"), Category.UNCATEGORIZED)
    store.bulk_replace({Category.SAVE_LATER: [_unit("dedup_0", "A", [1, 4])]})
    store.remove_instance(2)

    _assert_exclusive(store)
    # bulk replace clears Uncategorized
    assert store.find_by_instance(3) is None
    assert store.find_by_address("A")[0] == Category.SAVE_LATER
    assert store.find_by_address("B") is None
