"""
Pytest configuration and fixtures for sync service tests.
Provides fake MongoDB clients, stores and isolated metrics registries.
"""

import os
from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

from fakes import FakeMongoClient
from synchronization.config import SyncConfig
from synchronization.store import MongoStore
from utils.metrics import SyncMetrics

TEST_URI = "mongodb://localhost:27017/shop"


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Get project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(autouse=True)
def clear_sync_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of configuration tests."""
    for key in list(os.environ):
        if key in {
            "DB_URI", "SOURCE_COLLECTION", "TARGET_COLLECTION", "BUNCH_SIZE",
            "FLUSH_INTERVAL_MS", "SCAN_PAGE_SIZE", "SCAN_PAGINATION",
            "FEED_RESUBSCRIBE_ATTEMPTS", "ANONYMIZER", "ANONYMIZER_FILLER_SIZE",
            "ANONYMIZER_SALT", "LOG_LEVEL", "LOG_FILE", "LOG_JSON", "LOG_CONSOLE",
        }:
            monkeypatch.delenv(key)


@pytest.fixture
def registry() -> CollectorRegistry:
    """Isolated Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> SyncMetrics:
    return SyncMetrics(registry=registry)


@pytest.fixture
def fake_client() -> FakeMongoClient:
    return FakeMongoClient()


@pytest.fixture
def store(fake_client: FakeMongoClient) -> MongoStore:
    """Store wired to the fake client; call ``await store.connect()`` in the test."""
    return MongoStore(
        TEST_URI,
        "customers",
        "customers_anonymised",
        client_factory=fake_client,
        connect_retries=0,
    )


@pytest.fixture
def source(fake_client: FakeMongoClient):
    return fake_client["shop"]["customers"]


@pytest.fixture
def target(fake_client: FakeMongoClient):
    return fake_client["shop"]["customers_anonymised"]


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig(db_uri=TEST_URI, bunch_size=3, flush_interval_ms=50, scan_page_size=4)
