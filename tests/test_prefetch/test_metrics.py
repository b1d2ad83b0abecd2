"""Tests for the per-key metrics ledger and performance report."""

import pytest

from cachepilot.keys import ResourceKey
from cachepilot.prefetch.metrics import CacheMetrics, MetricsLedger, PerformanceReport

DETAIL = ResourceKey.of("exam", "detail", "e1")
LIST = ResourceKey.of("exam", "list", {"page": 0, "size": 20})


class TestCacheMetrics:
    """Tests for CacheMetrics."""

    def test_defaults(self) -> None:
        metrics = CacheMetrics()
        assert metrics.total_queries == 0
        assert metrics.hit_rate == 0.0
        assert metrics.error_rate == 0.0
        assert metrics.last_error_at is None

    def test_running_average(self) -> None:
        """Average latency is the mean over every sample, not a pairwise blend."""
        metrics = CacheMetrics()
        for latency in (100.0, 200.0, 600.0):
            metrics.record(latency, is_cache_hit=True, has_error=False)

        assert metrics.avg_response_time_ms == pytest.approx(300.0)

    def test_hit_rate_tracks_misses(self) -> None:
        metrics = CacheMetrics()
        metrics.record(10.0, is_cache_hit=False, has_error=False)
        metrics.record(10.0, is_cache_hit=True, has_error=False)
        metrics.record(10.0, is_cache_hit=True, has_error=False)
        metrics.record(10.0, is_cache_hit=True, has_error=False)

        assert metrics.miss_count == 1
        assert metrics.hit_count == 3
        assert metrics.hit_rate == pytest.approx(75.0)

    def test_errors_are_timestamped(self) -> None:
        metrics = CacheMetrics()
        metrics.record(10.0, is_cache_hit=False, has_error=True)

        assert metrics.error_count == 1
        assert metrics.last_error_at is not None
        assert metrics.error_rate == pytest.approx(100.0)


class TestMetricsLedger:
    """Tests for MetricsLedger."""

    def test_entry_created_lazily(self) -> None:
        ledger = MetricsLedger()
        assert ledger.get(DETAIL) is None
        assert len(ledger) == 0

        ledger.record(DETAIL, 50.0, is_cache_hit=True)

        assert DETAIL in ledger
        assert ledger.get(DETAIL).total_queries == 1

    def test_hit_rate_consistent_with_counts(self) -> None:
        """hit_rate always equals (total - misses) / total * 100."""
        ledger = MetricsLedger()
        pattern = [True, False, True, True, False, True, True]
        for i, hit in enumerate(pattern, start=1):
            ledger.record(DETAIL, 20.0, is_cache_hit=hit)
            metrics = ledger.get(DETAIL)
            assert metrics.total_queries == i
            assert metrics.miss_count <= metrics.total_queries
            expected = (metrics.total_queries - metrics.miss_count) / metrics.total_queries * 100
            assert metrics.hit_rate == pytest.approx(expected)

    def test_equal_keys_share_an_entry(self) -> None:
        """Mapping segments compare by content, not insertion order."""
        ledger = MetricsLedger()
        ledger.record(ResourceKey.of("exam", "list", {"page": 0, "size": 20}), 10.0, True)
        ledger.record(ResourceKey.of("exam", "list", {"size": 20, "page": 0}), 10.0, True)

        assert len(ledger) == 1
        assert ledger.get(LIST).total_queries == 2

    def test_record_never_raises(self) -> None:
        ledger = MetricsLedger()
        ledger.record([], 10.0, True)  # type: ignore[arg-type]
        ledger.record(DETAIL, "not a number", True)  # type: ignore[arg-type]

        assert len(ledger) == 0

    def test_lookup_with_list_key(self) -> None:
        ledger = MetricsLedger()
        ledger.record(["exam", "detail", "e1"], 10.0, True)

        assert ledger.get(["exam", "detail", "e1"]).total_queries == 1
        assert ledger.get(DETAIL).total_queries == 1
        assert ["exam", "detail", "e1"] in ledger
        assert ["exam", "detail", "e2"] not in ledger
        assert [] not in ledger

    def test_empty_report(self) -> None:
        report = MetricsLedger().get_report()

        assert report == PerformanceReport()
        assert report.overall_cache_hit_rate == 0.0
        assert report.slow_queries == []
        assert report.error_prone_queries == []

    def test_report_overall_hit_rate_rounded(self) -> None:
        ledger = MetricsLedger()
        ledger.record(DETAIL, 10.0, is_cache_hit=True)
        ledger.record(DETAIL, 10.0, is_cache_hit=False)
        ledger.record(LIST, 10.0, is_cache_hit=True)

        report = ledger.get_report()

        assert report.total_queries == 3
        assert report.overall_cache_hit_rate == 66.67

    def test_slow_queries_strictly_above_threshold(self) -> None:
        ledger = MetricsLedger(slow_query_threshold_ms=1000.0)
        ledger.record(DETAIL, 1000.0, True)
        ledger.record(LIST, 1000.1, True)

        report = ledger.get_report()

        assert [q.query_key for q in report.slow_queries] == [LIST.serialize()]

    def test_slow_queries_sorted_and_limited(self) -> None:
        ledger = MetricsLedger(slow_query_threshold_ms=100.0, report_limit=5)
        for i in range(7):
            ledger.record(ResourceKey.of("exam", "detail", i), 200.0 + i * 10, False)

        slow = ledger.get_report().slow_queries

        assert len(slow) == 5
        latencies = [q.avg_response_time_ms for q in slow]
        assert latencies == sorted(latencies, reverse=True)
        assert latencies[0] == 260.0

    def test_error_prone_queries(self) -> None:
        ledger = MetricsLedger()
        ledger.record(DETAIL, 10.0, False, has_error=True)
        ledger.record(DETAIL, 10.0, False, has_error=False)
        ledger.record(LIST, 10.0, False, has_error=True)
        ledger.record(ResourceKey.of("exam", "detail", "ok"), 10.0, True)

        errors = ledger.get_report().error_prone_queries

        assert [q.query_key for q in errors] == [LIST.serialize(), DETAIL.serialize()]
        assert errors[0].error_rate == pytest.approx(100.0)
        assert errors[1].error_rate == pytest.approx(50.0)

    def test_report_to_dict(self) -> None:
        ledger = MetricsLedger(slow_query_threshold_ms=5.0)
        ledger.record(DETAIL, 10.0, True, has_error=True)

        payload = ledger.get_report().to_dict()

        assert payload["overall_cache_hit_rate"] == 100.0
        assert payload["slow_queries"][0]["query_key"] == DETAIL.serialize()
        assert payload["error_prone_queries"][0]["error_rate"] == 100.0

    def test_reset(self) -> None:
        ledger = MetricsLedger()
        ledger.record(DETAIL, 10.0, True)
        ledger.reset()

        assert len(ledger) == 0
        assert ledger.get_report().total_queries == 0
