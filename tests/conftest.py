"""
Shared pytest fixtures for tabq tests.

- a fresh SQLite database per test (tmp_path)
- a scripted fake remote provider
- sample tab instances
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from tabq.errors import ProviderRequestFailed
from tabq.infrastructure.database import DatabaseConnectionPool
from tabq.infrastructure.database_schema import init_database
from tabq.observability.telemetry import reset_counters, reset_latencies
from tabq.storage.models import ClassificationPolicy, RemoteConfig, TabInstance
from tabq.storage.rules import RuleRepository
from tabq.storage.url_records import UrlRecordRepository


class FakeProvider:
    """Remote provider double: replies with canned text or raises."""

    name = "fake"

    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self.reply = reply if reply is not None else "{}"
        self.error = error
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply

    def factory(self, config: RemoteConfig) -> FakeProvider:
        return self


@pytest.fixture(autouse=True)
def _reset_telemetry() -> Iterator[None]:
    reset_counters()
    reset_latencies()
    yield


@pytest.fixture
def db_pool(tmp_path) -> Iterator[DatabaseConnectionPool]:
    db_path = tmp_path / "tabq.db"
    init_database(db_path)
    pool = DatabaseConnectionPool(db_path, pool_size=2)
    yield pool
    pool.close_all()


@pytest.fixture
def records(db_pool) -> UrlRecordRepository:
    return UrlRecordRepository(db_pool)


@pytest.fixture
def rule_repo(db_pool) -> RuleRepository:
    return RuleRepository(db_pool)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def failing_provider() -> FakeProvider:
    return FakeProvider(error=ProviderRequestFailed("connection refused"))


@pytest.fixture
def remote_only_policy() -> ClassificationPolicy:
    """No rules, no learned model: everything goes to the remote stage."""
    return ClassificationPolicy(rules=[], use_learned=False, use_remote=True)


@pytest.fixture
def sample_tabs() -> list[TabInstance]:
    return [
        TabInstance(instance_id=1, address="https://a.example/page", title="A"),
        TabInstance(instance_id=2, address="https://a.example/page", title="A again"),
        TabInstance(instance_id=3, address="https://b.example/", title="B"),
        TabInstance(instance_id=4, address="https://c.example/post", title="C"),
        TabInstance(instance_id=5, address="https://d.example/saved", title="D"),
    ]


@pytest.fixture
def make_provider():
    """FakeProvider constructor, for tests that script several providers."""
    return FakeProvider
