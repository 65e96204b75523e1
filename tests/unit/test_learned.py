"""Tests for the local learned model."""

from tabq.classification.learned import LearnedModel, tokenize
from tabq.storage.models import Category, ClassificationUnit, Provenance, UrlRecord


def _train_docs_vs_social(model, repeats=5):
    for i in range(repeats):
        model.learn(f"https://docs.python.org/3/library/mod{i}", "python docs", Category.IMPORTANT)
        model.learn(f"https://www.facebook.com/feed/{i}", "facebook feed", Category.CAN_CLOSE)


def test_tokenize():
    assert tokenize("https://www.example.co.uk/a/b", "Hello, World!") == [
        "d:example.co.uk",
        "r:example.co.uk",
        "p:a",
        "p:b",
        "t:hello",
        "t:world",
    ]


def test_unavailable_until_enough_examples():
    model = LearnedModel(min_examples=10)
    _train_docs_vs_social(model, repeats=4)
    assert not model.is_available
    assert model.predict("https://docs.python.org/3/") is None

    _train_docs_vs_social(model, repeats=1)
    assert model.is_available


def test_unavailable_with_single_class():
    model = LearnedModel(min_examples=2)
    for i in range(5):
        model.learn(f"https://a.io/{i}", "a", Category.IMPORTANT)
    assert not model.is_available


def test_predicts_trained_class():
    model = LearnedModel(min_examples=4)
    _train_docs_vs_social(model)

    category, confidence = model.predict("https://docs.python.org/3/library/json", "python docs")
    assert category == Category.IMPORTANT
    assert 0.5 < confidence <= 1.0


def test_classify_respects_min_confidence():
    model = LearnedModel(min_examples=4, min_confidence=0.999999)
    _train_docs_vs_social(model)
    units = [ClassificationUnit(unit_id="u1", address="https://unrelated.site/", duplicate_ids=[1])]
    assert model.classify(units) == {}


def test_classify_emits_learned_verdicts():
    model = LearnedModel(min_examples=4)
    _train_docs_vs_social(model)
    units = [
        ClassificationUnit(
            unit_id="u1", address="https://www.facebook.com/feed/99", title="facebook feed",
            duplicate_ids=[1],
        )
    ]
    verdict = model.classify(units)["u1"]
    assert verdict.category == Category.CAN_CLOSE
    assert verdict.provenance == Provenance.LEARNED


def test_train_weights_user_corrections():
    model = LearnedModel(min_examples=2, correction_weight=3)
    records = [
        UrlRecord(address="https://a.io/x", category=Category.SAVE_LATER, first_seen=1.0),
        UrlRecord(
            address="https://b.io/y",
            category=Category.IMPORTANT,
            provenance=Provenance.USER_CORRECTION,
            first_seen=1.0,
        ),
        UrlRecord(address="https://c.io/z", category=Category.UNCATEGORIZED, first_seen=1.0),
    ]
    assert model.train(records) == 2
    assert model.is_available
    assert model.class_counts[Category.IMPORTANT] == 3
    assert model.class_counts[Category.SAVE_LATER] == 1


def test_correction_is_learned_incrementally():
    model = LearnedModel(min_examples=4)
    _train_docs_vs_social(model, repeats=2)
    before = model.examples
    model.learn_correction("https://news.site/a", "news", Category.SAVE_LATER)
    assert model.examples == before + 1
    assert model.class_counts[Category.SAVE_LATER] == model.correction_weight


def test_tokenize_skips_address_features_for_non_urls():
    assert tokenize("not a url", "Reading List") == ["t:reading", "t:list"]


def test_batch_classify_matches_single_predictions():
    model = LearnedModel(min_examples=4)
    _train_docs_vs_social(model)
    units = [
        ClassificationUnit(
            unit_id="docs", address="https://docs.python.org/3/library/os", title="python docs",
            duplicate_ids=[1],
        ),
        ClassificationUnit(
            unit_id="feed", address="https://www.facebook.com/feed/7", title="facebook feed",
            duplicate_ids=[2],
        ),
    ]
    verdicts = model.classify(units)

    for unit in units:
        category, confidence = model.predict(unit.address, unit.title)
        assert verdicts[unit.unit_id].category == category
        assert abs(verdicts[unit.unit_id].confidence - confidence) < 1e-9
