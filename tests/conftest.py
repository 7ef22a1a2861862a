"""
Shared fixtures: a temporary SQLite store and the small two-dimensional
word-vector vocabulary used across the retrieval tests.
"""

import pytest

from recall.core.config import RecallConfig
from recall.core.dao import MessageDAO
from recall.core.service import build_service
from recall.vector.embeddings import InMemoryWordVectors

SCENARIO_VECTORS = {
    "hello": [1.0, 0.0],
    "world": [0.0, 1.0],
    "goodnight": [0.0, -1.0],
    "moon": [-1.0, 0.0],
    "there": [1.0, 1.0],
}


@pytest.fixture
def scenario_provider():
    return InMemoryWordVectors(SCENARIO_VECTORS)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "recall.db")


@pytest.fixture
def dao(db_path):
    return MessageDAO(db_path)


@pytest.fixture
def service(db_path, scenario_provider):
    """Service wired with small shards so searches fan out across workers."""
    config = RecallConfig(db_path=db_path, search_workers=2, search_batch_size=2, backfill_batch_size=3)
    svc = build_service(config, provider=scenario_provider)
    yield svc
    svc.close()
