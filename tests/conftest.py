"""Pytest configuration for cachepilot tests.

Every test gets a fresh engine, catalog and configuration, and the
process-wide singletons are reset around each test so no registry state
leaks between tests.
"""

from __future__ import annotations

import pytest

from cachepilot.catalog import QueryCatalog
from cachepilot.config import CachePilotConfig, reset_config
from cachepilot.engine import InMemoryQueryEngine
from cachepilot.prefetch import reset_cache_manager
from tests.helpers import FakeBackend, build_catalog


@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_config()
    reset_cache_manager()
    yield
    reset_cache_manager()
    reset_config()


@pytest.fixture
def config() -> CachePilotConfig:
    return CachePilotConfig()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def engine() -> InMemoryQueryEngine:
    return InMemoryQueryEngine()


@pytest.fixture
def catalog(backend: FakeBackend) -> QueryCatalog:
    return build_catalog(backend)
