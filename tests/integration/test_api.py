"""HTTP and WebSocket surface, driven through FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from tabq.api.app import create_app
from tabq.classification.rules_engine import DEFAULT_RULES
from tabq.engine import TabEngine
from tabq.storage.models import Category, Provenance

REMOTE_ONLY = {"rules": [], "use_learned": False}


@pytest.fixture
def engine(db_pool, make_provider):
    return TabEngine(
        pool=db_pool,
        provider_factory=make_provider('{"dedup_0": 3, "dedup_1": 1}').factory,
    )


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as client:
        yield client


def _drain(client, engine):
    client.portal.call(engine.reconciler.drain)


def test_state_starts_empty(client):
    response = client.get("/api/state")

    assert response.status_code == 200
    body = response.json()
    assert body["counts"] == {"0": 0, "1": 0, "2": 0, "3": 0}
    assert body["duplicate_index"] == {}


def test_classify_installs_state(client):
    response = client.post(
        "/api/classify",
        json={
            "tabs": [
                {"id": 1, "url": "https://a.io/", "title": "A"},
                {"id": 2, "url": "https://a.io/", "title": "A"},
                {"id": 3, "url": "https://b.io/", "title": "B"},
            ],
            "policy": REMOTE_ONLY,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["stages_run"] == ["rules", "remote"]
    assert [u["address"] for u in body["data"]["3"]] == ["https://a.io/"]
    assert body["data"]["3"][0]["duplicate_count"] == 2
    assert "0" not in body["data"]
    assert body["duplicate_index"]["https://a.io/"] == [1, 2]

    state = client.get("/api/state").json()
    assert state["counts"]["1"] == 1
    assert state["counts"]["3"] == 1


def test_classify_accepts_camel_case_aliases(client):
    response = client.post(
        "/api/classify",
        json={
            "units": [{"instance_id": 1, "address": "https://a.io/"}],
            "excludeAddresses": ["https://a.io/"],
            "policy": REMOTE_ONLY,
        },
    )

    body = response.json()
    assert body["success"] is True
    assert body["data"]["1"][0]["already_saved"] is True


def test_classify_rejects_malformed_body(client):
    response = client.post("/api/classify", json={"tabs": [{"id": 1}]})

    assert response.status_code == 422
    body = response.json()
    assert body["detail"].startswith("Invalid request format")
    assert "url" in body["invalid_fields"] or "address" in body["invalid_fields"]


def test_correct_moves_unit(client, engine):
    client.post(
        "/api/classify",
        json={"tabs": [{"id": 1, "url": "https://a.io/"}], "policy": REMOTE_ONLY},
    )

    response = client.post("/api/correct", json={"address": "https://a.io/", "from": 3, "to": 2})

    assert response.json() == {"ack": True}
    category, unit = engine.store.find_by_address("https://a.io/")
    assert category == Category.SAVE_LATER
    assert unit.provenance == Provenance.USER_CORRECTION


def test_correct_to_uncategorized_is_rejected(client):
    response = client.post("/api/correct", json={"address": "https://a.io/", "from": 1, "to": 0})

    assert response.status_code == 422
    assert "cannot correct" in response.json()["detail"]


def test_tab_events_are_reconciled(client, engine):
    response = client.post(
        "/api/tabs/events",
        json={
            "events": [
                {"type": "created", "tab": {"id": 1, "url": "https://a.io/", "title": "A"}},
                {"type": "created", "tab": {"id": 2, "url": "https://a.io/", "title": "A"}},
                {"type": "updated", "instance_id": 1, "address": "https://b.io/"},
                {"type": "removed", "instance_id": 2},
            ]
        },
    )

    assert response.json() == {"accepted": 4, "dropped": 0}
    _drain(client, engine)

    state = client.get("/api/state").json()
    units = state["categorized"]["0"]
    assert [(u["address"], u["duplicate_ids"]) for u in units] == [("https://b.io/", [1])]


def test_tab_event_shape_is_validated(client):
    response = client.post("/api/tabs/events", json={"events": [{"type": "removed"}]})
    assert response.status_code == 422


def test_bootstrap_tracks_open_tabs(client, engine):
    engine.records.save_category("https://a.io/", Category.IMPORTANT, Provenance.REMOTE)

    response = client.post(
        "/api/tabs/bootstrap",
        json={"tabs": [{"id": 1, "url": "https://a.io/"}, {"id": 2, "url": "https://b.io/"}]},
    )

    assert response.json() == {"tracked": 2}
    counts = client.get("/api/state").json()["counts"]
    assert counts["3"] == 1
    assert counts["0"] == 1


def test_rules_round_trip(client):
    listed = client.get("/api/rules").json()["rules"]
    assert len(listed) == len(DEFAULT_RULES)

    replaced = client.put(
        "/api/rules",
        json={"rules": [{"kind": "domain", "value": "news.io", "category": 3}]},
    )
    assert replaced.json() == {"stored": 1}
    assert client.get("/api/rules").json()["rules"][0]["value"] == "news.io"


def test_rule_with_uncategorized_target_is_rejected(client):
    response = client.put(
        "/api/rules", json={"rules": [{"kind": "domain", "value": "x.io", "category": 0}]}
    )
    assert response.status_code == 422


def test_delete_url_and_sessions(client, engine):
    engine.records.save_category("https://a.io/", Category.IMPORTANT, Provenance.REMOTE)
    engine.records.record_event("https://gone.io/", "close", 4, title="Gone")

    sessions = client.get("/api/sessions", params={"limit": 5}).json()["sessions"]
    assert sessions
    assert client.delete("/api/urls", params={"address": "https://a.io/"}).json() == {"deleted": True}
    assert client.delete("/api/urls", params={"address": "https://a.io/"}).json() == {"deleted": False}
    assert engine.records.get("https://a.io/") is None


def test_saved_urls_listed_by_category(client, engine):
    engine.records.save_category(
        "https://old.io/", Category.SAVE_LATER, Provenance.REMOTE, title="Old", timestamp=100.0
    )
    engine.records.save_category(
        "https://new.io/", Category.SAVE_LATER, Provenance.RULE, title="New", timestamp=200.0
    )
    engine.records.save_category("https://keep.io/", Category.IMPORTANT, Provenance.REMOTE)

    response = client.get("/api/urls", params={"category": 2})

    assert response.status_code == 200
    body = response.json()
    assert body["label"] == "Save Later"
    assert [r["address"] for r in body["records"]] == ["https://new.io/", "https://old.io/"]
    assert body["records"][0]["title"] == "New"
    assert body["counts"] == {"Uncategorized": 0, "Can Close": 0, "Save Later": 2, "Important": 1}


def test_saved_urls_category_is_validated(client):
    assert client.get("/api/urls", params={"category": 4}).status_code == 422
    assert client.get("/api/urls").status_code == 422


def test_sessions_limit_is_bounded(client):
    assert client.get("/api/sessions", params={"limit": 0}).status_code == 422


def test_storage_outage_maps_to_503(client, engine):
    engine.pool.close_all()
    response = client.delete("/api/urls", params={"address": "https://a.io/"})
    assert response.status_code == 503


def test_clear_empties_state(client):
    client.post(
        "/api/classify",
        json={"tabs": [{"id": 1, "url": "https://a.io/"}], "policy": REMOTE_ONLY},
    )

    assert client.post("/api/clear").json() == {"cleared": True}
    assert sum(client.get("/api/state").json()["counts"].values()) == 0


def test_health_endpoints(client):
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert set(health["remote"]["credentials"]) == {"claude", "openai", "deepseek", "grok", "gemini"}
    assert health["engine"]["units"] == 0
    assert health["thresholds"]["rule"] == 1.0
    assert health["accuracy"]["remote"] == {"predicted": 0, "overridden": 0, "accuracy": None}

    db = client.get("/health/db").json()
    assert db["status"] == "healthy"
    assert db["pool"]["pool_size"] == 2


def test_websocket_pushes_notifications(client, engine):
    with client.websocket_connect("/api/events") as websocket:
        assert websocket.receive_json()["type"] == "refresh"

        client.post("/api/clear")
        assert websocket.receive_json()["type"] == "refresh"

        client.post(
            "/api/tabs/events",
            json={"events": [{"type": "created", "tab": {"id": 9, "url": "https://a.io/"}}]},
        )
        message = websocket.receive_json()
        assert message["type"] == "created"
        assert message["category"] == 0
        assert message["unit"]["address"] == "https://a.io/"

    assert engine.hub.subscriber_count == 0
