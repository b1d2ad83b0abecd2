"""Tests for cache warming."""

import logging

import pytest

from cachepilot.catalog import QueryCatalog
from cachepilot.config import WarmingConfig
from cachepilot.engine import InMemoryQueryEngine
from cachepilot.prefetch.warming import CacheWarmer, WarmingOptions, WarmingResult
from tests.helpers import FakeBackend


@pytest.fixture
def warmer(engine: InMemoryQueryEngine, catalog: QueryCatalog) -> CacheWarmer:
    return CacheWarmer(engine, catalog, WarmingConfig())


class TestWarmingResult:
    """Tests for WarmingResult."""

    def test_addition(self) -> None:
        total = WarmingResult(2, 1, 1, 5.0) + WarmingResult(3, 3, 0, 2.5)

        assert total == WarmingResult(attempted=5, succeeded=4, failed=1, duration_ms=7.5)

    def test_to_dict(self) -> None:
        assert WarmingResult(1, 1, 0, 1.0).to_dict() == {
            "attempted": 1,
            "succeeded": 1,
            "failed": 0,
            "duration_ms": 1.0,
        }


class TestWarmDashboard:
    """Tests for CacheWarmer.warm_dashboard."""

    @pytest.mark.asyncio
    async def test_all_valid_grades_by_default(
        self, warmer: CacheWarmer, catalog: QueryCatalog, backend: FakeBackend
    ) -> None:
        result = await warmer.warm_dashboard()

        expected = [k for grade in (1, 2, 3) for k in catalog.dashboard_keys(grade, limit=5)]
        assert result.attempted == 6
        assert result.succeeded == 6
        assert set(backend.calls) == set(expected)

    @pytest.mark.asyncio
    async def test_invalid_grades_are_dropped(
        self, warmer: CacheWarmer, catalog: QueryCatalog, backend: FakeBackend
    ) -> None:
        result = await warmer.warm_dashboard([2, 7, 2])

        assert result.attempted == 2
        assert set(backend.calls) == set(catalog.dashboard_keys(2))

    @pytest.mark.asyncio
    async def test_partial_failure(
        self,
        warmer: CacheWarmer,
        catalog: QueryCatalog,
        backend: FakeBackend,
        engine: InMemoryQueryEngine,
    ) -> None:
        status_key, distribution_key = catalog.dashboard_keys(1)
        backend.failing.add(status_key)

        result = await warmer.warm_dashboard([1])

        assert result.failed == 1
        assert result.succeeded == 1
        assert engine.get_cached_entry(distribution_key) is not None


class TestWarmListView:
    """Tests for CacheWarmer.warm_list_view."""

    @pytest.mark.asyncio
    async def test_default_filter_sets(
        self, warmer: CacheWarmer, catalog: QueryCatalog, backend: FakeBackend
    ) -> None:
        result = await warmer.warm_list_view()

        assert result.attempted == 2
        assert set(backend.calls) == {
            catalog.list_key({"page": 0, "size": 20}),
            catalog.list_key({"page": 0, "size": 20, "sort": "createdAt,desc"}),
        }

    @pytest.mark.asyncio
    async def test_failing_member_does_not_stop_siblings(
        self,
        warmer: CacheWarmer,
        catalog: QueryCatalog,
        backend: FakeBackend,
        engine: InMemoryQueryEngine,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        filter_sets = [{"page": 0}, {"page": 1}, {"page": 2}]
        keys = [catalog.list_key(f) for f in filter_sets]
        backend.failing.add(keys[1])

        with caplog.at_level(logging.WARNING):
            result = await warmer.warm_list_view(filter_sets)

        assert result.attempted == 3
        assert result.succeeded == 2
        assert result.failed == 1
        assert engine.get_cached_entry(keys[0]) is not None
        assert engine.get_cached_entry(keys[2]) is not None
        failures = [
            r for r in caplog.records if getattr(r, "event_type", None) == "warming.list_view.failed"
        ]
        assert len(failures) == 1
        assert keys[1].serialize() in failures[0].getMessage()

    @pytest.mark.asyncio
    async def test_empty_filter_sets(self, warmer: CacheWarmer, backend: FakeBackend) -> None:
        result = await warmer.warm_list_view([])

        assert result.attempted == 0
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_unresolvable_keys_are_counted_as_failed(
        self, engine: InMemoryQueryEngine, backend: FakeBackend
    ) -> None:
        warmer = CacheWarmer(engine, QueryCatalog())

        result = await warmer.warm_list_view()

        assert result.failed == 2
        assert backend.calls == []


class TestWarmApplication:
    """Tests for CacheWarmer.warm_application."""

    @pytest.mark.asyncio
    async def test_warms_dashboard_and_lists(
        self, warmer: CacheWarmer, backend: FakeBackend
    ) -> None:
        result = await warmer.warm_application()

        assert result.attempted == 8
        assert result.succeeded == 8
        assert len(backend.calls) == 8
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_user_grade_narrows_dashboard(
        self, warmer: CacheWarmer, catalog: QueryCatalog, backend: FakeBackend
    ) -> None:
        result = await warmer.warm_application(WarmingOptions(user_grade=3))

        assert result.attempted == 4
        assert set(catalog.dashboard_keys(3)) <= set(backend.calls)
        assert not set(catalog.dashboard_keys(1)) & set(backend.calls)

    @pytest.mark.asyncio
    async def test_invalid_user_grade_warms_all_grades(
        self, warmer: CacheWarmer, backend: FakeBackend
    ) -> None:
        result = await warmer.warm_application(WarmingOptions(user_grade=9))

        assert result.attempted == 8

    @pytest.mark.asyncio
    async def test_batches_can_be_disabled(
        self, warmer: CacheWarmer, backend: FakeBackend
    ) -> None:
        result = await warmer.warm_application(
            WarmingOptions(enable_dashboard_warming=False, enable_list_warming=False)
        )

        assert result.attempted == 0
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_never_raises(
        self, engine: InMemoryQueryEngine, catalog: QueryCatalog, backend: FakeBackend
    ) -> None:
        backend.failing.update(catalog.dashboard_keys(1) + catalog.dashboard_keys(2))
        warmer = CacheWarmer(engine, catalog)

        result = await warmer.warm_application()

        assert result.failed == 4
        assert result.succeeded == 4

    @pytest.mark.asyncio
    async def test_logs_total_duration(
        self, warmer: CacheWarmer, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO):
            await warmer.warm_application()

        completions = [
            r
            for r in caplog.records
            if getattr(r, "event_type", None) == "warming.application.complete"
        ]
        assert len(completions) == 1
        assert completions[0].metrics["attempted"] == 8
