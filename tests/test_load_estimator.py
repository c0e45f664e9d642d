"""Unit tests for the adaptive look-ahead estimator."""

import pytest

from load_estimator import (
    BackendConfig,
    LoadTimeEstimator,
    Quality,
    format_stats,
    nearest_rank,
    population_std_dev,
)


class TestStatistics:
    """Pure statistics helpers."""

    def test_p95_nearest_rank_of_one_to_ten(self):
        assert nearest_rank(list(range(1, 11)), 0.95) == 10

    def test_p95_ignores_insertion_order(self):
        assert nearest_rank([10, 1, 9, 2, 8, 3, 7, 4, 6, 5], 0.95) == 10

    def test_p95_small_window_clamps_to_last(self):
        assert nearest_rank([300, 100, 200], 0.95) == 300

    def test_std_dev_constant_samples(self):
        assert population_std_dev([10, 10, 10, 10]) == 0

    def test_std_dev_is_population(self):
        assert population_std_dev([0, 0, 0, 0, 10]) == pytest.approx(4.0)

    def test_std_dev_single_sample(self):
        assert population_std_dev([123]) == 0.0


class TestRecording:

    def test_history_is_bounded(self):
        est = LoadTimeEstimator({"A": BackendConfig(0.5, 5.0, 1.5, 1.2)}, capacity=3)
        for ms in (1, 2, 3, 4, 5):
            est.record_load_time("A", ms)

        prof = est.profile("A")
        assert list(prof.samples) == [3, 4, 5]
        assert prof.total_count == 5

    def test_cache_invalidated_by_new_sample(self, estimator):
        for ms in (100, 100, 100):
            estimator.record_load_time("A", ms)
        assert estimator.mean("A") == 100

        estimator.record_load_time("A", 500)
        assert estimator.mean("A") == 200

    def test_stats_are_memoized(self, estimator):
        for ms in (100, 200, 300):
            estimator.record_load_time("A", ms)
        assert estimator.stats("A") is estimator.stats("A")

    def test_late_count_never_exceeds_total(self, estimator):
        estimator.record_load_time("A", 100)
        estimator.record_late("A", 300)
        estimator.record_late("A", 300)

        prof = estimator.profile("A")
        assert prof.late_count == 1
        assert prof.late_count <= prof.total_count

    def test_unknown_backend_shares_default_profile(self, estimator):
        estimator.record_load_time("nope", 700)
        assert list(estimator.profile("A").samples) == [700]
        assert estimator.recommended_lookahead("nope") == estimator.recommended_lookahead("A")


class TestRecommendation:

    @pytest.mark.parametrize("samples", [[], [100], [9000, 9000]])
    def test_default_below_three_samples(self, estimator, samples):
        for ms in samples:
            estimator.record_load_time("A", ms)
        assert estimator.recommended_lookahead("A") == 1.5

    def test_formula(self, estimator):
        for ms in (1000, 1000, 1000, 3000):
            estimator.record_load_time("A", ms)
        # p95 = 3000, sd = sqrt(0.75e6) ≈ 866.03
        expected = (3000 + 866.0254037844386 * 1.2) / 1000
        assert estimator.recommended_lookahead("A") == pytest.approx(expected)

    @pytest.mark.parametrize("backend", ["A", "B"])
    def test_flat_samples_clamped_within_bounds(self, estimator, backend):
        for _ in range(5):
            estimator.record_load_time(backend, 100)
        cfg = estimator.config_for(backend)
        assert cfg.min_lookahead <= estimator.recommended_lookahead(backend) <= cfg.max_lookahead

    def test_clamped_to_max(self, estimator):
        for ms in (20_000, 30_000, 40_000):
            estimator.record_load_time("A", ms)
        assert estimator.recommended_lookahead("A") == 5.0

    def test_late_rate_escalation(self):
        est = LoadTimeEstimator({"A": BackendConfig(0.01, 50.0, 1.5, 1.2)})
        for _ in range(6):
            est.record_load_time("A", 1000)
        before = est.recommended_lookahead("A")
        assert before == pytest.approx(1.0)

        est.record_late("A", 500)           # 1/6 > 0.10 with 6 attempts
        after = est.recommended_lookahead("A")
        assert after == pytest.approx(1.2)
        assert after >= before

    def test_no_escalation_with_few_attempts(self):
        est = LoadTimeEstimator({"A": BackendConfig(0.01, 50.0, 1.5, 1.2)})
        for _ in range(5):
            est.record_load_time("A", 1000)
        est.record_late("A", 500)           # 20 % but only 5 attempts
        assert est.recommended_lookahead("A") == pytest.approx(1.0)

    @pytest.mark.parametrize("backend", ["A", "B"])
    def test_monotonic_across_late_threshold(self, estimator, backend):
        for _ in range(6):
            estimator.record_load_time(backend, 100)
        values = [estimator.recommended_lookahead(backend)]
        for _ in range(3):
            estimator.record_late(backend, 200)
            values.append(estimator.recommended_lookahead(backend))
        assert values == sorted(values)


class TestQuality:

    def test_default_backend_bands(self, estimator):
        for ms in (400, 400, 400):
            estimator.record_load_time("A", ms)
        assert estimator.quality("A") is Quality.EXCELLENT

    def test_slow_backend_has_looser_bands(self, estimator):
        for ms in (3000, 3000, 3000):
            estimator.record_load_time("A", ms)
            estimator.record_load_time("B", ms)
        assert estimator.quality("A") is Quality.POOR
        assert estimator.quality("B") is Quality.GOOD

    @pytest.mark.parametrize("backend", ["A", "B"])
    def test_no_samples_is_not_rated_from_default(self, estimator, backend):
        assert estimator.quality(backend) is Quality.BAD
        assert estimator.snapshot(backend)["quality"] == "bad"

    def test_bad_above_last_band(self, estimator):
        estimator.record_load_time("A", 10_000)
        assert estimator.quality("A") is Quality.BAD


class TestConfigValidation:

    def test_default_outside_bounds(self):
        with pytest.raises(ValueError):
            BackendConfig(min_lookahead=2.0, max_lookahead=5.0,
                          default_lookahead=1.0, safety_margin=1.2)

    def test_non_positive(self):
        with pytest.raises(ValueError):
            BackendConfig(min_lookahead=0.0, max_lookahead=5.0,
                          default_lookahead=1.0, safety_margin=1.2)

    def test_shipped_configuration_is_valid(self):
        est = LoadTimeEstimator()
        assert set(est.configs) == {"playbin", "stream"}
        assert est.recommended_lookahead("stream") == 4.0


class TestReport:

    def test_empty_report(self, estimator):
        assert "no load data" in format_stats(estimator, "A")

    def test_snapshot_and_report(self, estimator):
        for ms in (500, 700, 900):
            estimator.record_load_time("A", ms)
        estimator.record_late("A", 150)

        snap = estimator.snapshot("A")
        assert snap["samples"] == 3
        assert snap["min_ms"] == 500
        assert snap["max_ms"] == 900
        assert snap["late"] == 1
        assert snap["success_pct"] == pytest.approx(66.7)
        assert snap["quality"] == "good"

        text = format_stats(estimator, "A")
        assert "Load stats: A" in text
        assert "Recommended look-ahead" in text
