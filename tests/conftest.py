"""Shared test fixtures and configuration."""

import os
from pathlib import Path
import sys

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))


# Complete test environment that overrides ALL possible config values
TEST_ENV = {
    "ENTITY_INDEX_BACKEND": "memory",
    "ENTITY_INDEX_SQLITE_PATH": "entity_index.db",
    "ENTITY_INDEX_DRIVER": "mysql+pymysql",
    "ENTITY_INDEX_HOST": "127.0.0.1",
    "ENTITY_INDEX_PORT": "3306",
    "ENTITY_INDEX_USER": "root",
    "ENTITY_INDEX_PASSWORD": "",
    "ENTITY_INDEX_DATABASE": "phonetworks",
    "ENTITY_INDEX_TABLE": "index_rows",
    "ENTITY_INDEX_VALUE_MATCH": "exact",
    "ENTITY_INDEX_STORAGE_TIMEOUT_SECONDS": "5",
    "ENTITY_INDEX_RECONNECT_INTERVAL_SECONDS": "30",
    "ENTITY_INDEX_LOG_LEVEL": "info",
    "ENTITY_INDEX_LOG_JSON": "true",
    "ENTITY_INDEX_LOGGER_LEVELS": "{}",
    "ENTITY_INDEX_OTLP_ENDPOINT": "",
    "ENTITY_INDEX_OTLP_PROTOCOL": "grpc",
    "ENTITY_INDEX_OTLP_TIMEOUT_SECONDS": "10",
}


# Set environment variables immediately when conftest.py is loaded
for key, value in TEST_ENV.items():
    os.environ[key] = value

from entity_index.config import Settings
from entity_index.search.memory_storage import InMemoryRowStore
from entity_index.search.sqlite_storage import SqliteRowStore
from entity_index.service_layer.index_engine import IndexEngine


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Clean environment variables before each test and set test defaults."""
    for key in list(os.environ):
        if key.startswith("ENTITY_INDEX_") and key not in TEST_ENV:
            monkeypatch.delenv(key, raising=False)
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def sqlite_store(tmp_path):
    """Open SQLite row store in a temporary directory."""
    store = SqliteRowStore(tmp_path / "index.db", timeout_seconds=5)
    store.open()
    yield store
    store.close()


@pytest.fixture
def memory_engine(settings):
    engine = IndexEngine(InMemoryRowStore(), settings=settings)
    yield engine
    engine.close()


@pytest.fixture
def sqlite_engine(tmp_path, settings):
    engine = IndexEngine(SqliteRowStore(tmp_path / "engine.db", timeout_seconds=5), settings=settings)
    yield engine
    engine.close()


@pytest.fixture(params=["memory", "sqlite"])
def engine(request, tmp_path, settings):
    """Engine over each built-in backend."""
    if request.param == "memory":
        store = InMemoryRowStore()
    else:
        store = SqliteRowStore(tmp_path / "param.db", timeout_seconds=5)
    index_engine = IndexEngine(store, settings=settings)
    yield index_engine
    index_engine.close()
