"""Tests for the Profile Computer: statistics, windowing, context partitions."""

import pytest
from datetime import timedelta

from velo_calibration.engine.profile_computer import (
    WINDOW_CHRONOLOGICAL,
    WINDOW_INPUT,
    compute_profiles,
    confidence_for,
    population_variance,
    recency_weight,
    trend_delta,
    weighted_median,
)
from velo_calibration.models.profile import Confidence, ContextType


def _by_context(profiles):
    return {(p.user_id, p.context_type, p.context_key): p for p in profiles}


def _global(profiles, user_id="u-1"):
    return _by_context(profiles)[(user_id, ContextType.GLOBAL, "global")]


# ═══════════════════════════════════════════════════════════════════════════
# Statistics (pure functions)
# ═══════════════════════════════════════════════════════════════════════════


class TestWeightedMedian:
    def test_empty_is_neutral(self):
        assert weighted_median([]) == 1.0

    def test_equal_weights_odd_count(self):
        assert weighted_median([(3.0, 1), (1.0, 1), (2.0, 1)]) == 2.0

    def test_tie_resolves_to_first_reaching_half(self):
        """Cumulative weight hits exactly half on the first value: no interpolation."""
        assert weighted_median([(2.0, 1), (1.0, 1)]) == 1.0

    def test_heavy_weight_dominates(self):
        assert weighted_median([(1.0, 0.2), (1.2, 0.2), (3.0, 1.0)]) == 3.0

    def test_single_entry(self):
        assert weighted_median([(1.7, 0.4)]) == 1.7


class TestRecencyWeight:
    def test_fresh_record_full_weight(self):
        assert recency_weight(0) == 1.0

    def test_linear_decay(self):
        assert recency_weight(90) == pytest.approx(0.5)

    def test_floor(self):
        assert recency_weight(180) == 0.2
        assert recency_weight(10_000) == 0.2


class TestVarianceAndTrend:
    def test_population_variance_rounded(self):
        assert population_variance([1.0, 2.0]) == 0.25
        assert population_variance([1.05, 1.1, 1.15]) == pytest.approx(0.0017, abs=1e-4)

    def test_population_variance_empty(self):
        assert population_variance([]) == 0.0

    def test_trend_later_minus_earlier(self):
        assert trend_delta([1.0, 1.0, 2.0, 2.0], fallback=1.5) == 1.0

    def test_trend_single_value_uses_fallback_for_empty_half(self):
        assert trend_delta([1.4], fallback=1.4) == 0.0

    def test_trend_odd_count_splits_at_floor_midpoint(self):
        # older = [1.0], newer = [1.0, 1.6]
        assert trend_delta([1.0, 1.0, 1.6], fallback=1.0) == 0.3


class TestConfidence:
    @pytest.mark.parametrize("n,var,expected", [
        (7, 0.0, Confidence.LOW),
        (8, 0.0, Confidence.LOW),
        (14, 0.1, Confidence.LOW),
        (15, 0.35, Confidence.MEDIUM),
        (15, 0.36, Confidence.LOW),
        (20, 0.9, Confidence.MEDIUM),
        (29, 0.18, Confidence.MEDIUM),
        (30, 0.18, Confidence.HIGH),
        (30, 0.19, Confidence.MEDIUM),
        (100, 2.0, Confidence.MEDIUM),
    ])
    def test_tiers(self, n, var, expected):
        assert confidence_for(n, var) == expected

    def test_crossing_thirty_reaches_high(self):
        assert confidence_for(29, 0.1) != Confidence.HIGH
        assert confidence_for(30, 0.1) == Confidence.HIGH

    @pytest.mark.parametrize("var", [0.0, 0.1, 0.18, 0.25, 0.35, 0.5, 1.5])
    def test_never_decreases_with_sample_size(self, var):
        ranks = [Confidence.RANK[confidence_for(n, var)] for n in range(0, 80)]
        assert ranks == sorted(ranks)


# ═══════════════════════════════════════════════════════════════════════════
# Calibratable filtering
# ═══════════════════════════════════════════════════════════════════════════


class TestCalibratableFiltering:
    def test_only_calibratable_records_count(self, make_record, frozen_now):
        tasks = [make_record() for _ in range(3)] + [
            make_record(status="in-progress"),
            make_record(estimate_minutes=None),
            make_record(actual_minutes=None),
            make_record(estimate_provided_by=None, user_id=None),
            make_record(organization_id="org-2"),
        ]
        profiles = compute_profiles(tasks, "org-1", now=frozen_now)
        assert len(profiles) == 1
        assert profiles[0].sample_size == 3

    def test_time_logged_fallback(self, make_record, frozen_now):
        tasks = [make_record(actual_minutes=None, time_logged_ms=90 * 60000)]
        [profile] = compute_profiles(tasks, "org-1", now=frozen_now)
        assert profile.bias_factor == 1.5

    def test_time_logged_under_half_minute_is_not_actual(self, make_record, frozen_now):
        tasks = [make_record(actual_minutes=None, time_logged_ms=20000)]
        assert compute_profiles(tasks, "org-1", now=frozen_now) == []

    def test_estimator_falls_back_to_owner(self, make_record, frozen_now):
        tasks = [make_record(estimate_provided_by=None, user_id="owner-7")]
        [profile] = compute_profiles(tasks, "org-1", now=frozen_now)
        assert profile.user_id == "owner-7"

    def test_done_like_statuses(self, make_record, frozen_now):
        tasks = [
            make_record(status="Done"),
            make_record(status="completed"),
            make_record(status="stage-done-qa"),
            make_record(status="review"),
        ]
        [profile] = compute_profiles(tasks, "org-1", now=frozen_now)
        assert profile.sample_size == 3

    def test_empty_input_yields_no_profiles(self, frozen_now):
        assert compute_profiles([], "org-1", now=frozen_now) == []


# ═══════════════════════════════════════════════════════════════════════════
# Global profile
# ═══════════════════════════════════════════════════════════════════════════


class TestGlobalProfile:
    def test_low_confidence_despite_strong_signal(self, make_history, frozen_now):
        """10 tasks all taking twice the estimate: clear bias, not enough samples."""
        tasks = make_history([2.0] * 10)
        profile = _global(compute_profiles(tasks, "org-1", now=frozen_now))
        assert profile.context_type == ContextType.GLOBAL
        assert profile.context_key == "global"
        assert profile.sample_size == 10
        assert profile.variance_score == 0.0
        assert profile.bias_factor == 2.0
        assert profile.confidence == Confidence.LOW

    def test_high_confidence_with_tight_spread(self, make_history, frozen_now):
        tasks = make_history([1.05, 1.10, 1.15] * 10, completed_at=frozen_now)
        profile = _global(compute_profiles(tasks, "org-1", now=frozen_now))
        assert profile.sample_size == 30
        assert profile.bias_factor == pytest.approx(1.10)
        assert profile.variance_score <= 0.18
        assert profile.confidence == Confidence.HIGH

    def test_ratios_are_clamped(self, make_history, frozen_now):
        tasks = make_history([0.1, 10.0, 0.2, 8.0, 5.0])
        for profile in compute_profiles(tasks, "org-1", now=frozen_now):
            assert 0.5 <= profile.bias_factor <= 2.5
        profile = _global(compute_profiles(tasks, "org-1", now=frozen_now))
        assert profile.bias_factor == 2.5

    def test_window_caps_at_forty(self, make_history, frozen_now):
        tasks = make_history([1.2] * 55)
        profiles = _by_context(compute_profiles(tasks, "org-1", now=frozen_now))
        assert profiles[("u-1", ContextType.GLOBAL, "global")].sample_size == 40

    def test_recent_records_outweigh_old_ones(self, make_record, frozen_now):
        old = [
            make_record(actual_minutes=120, completed_at=frozen_now - timedelta(days=300))
            for _ in range(3)
        ]
        recent = [
            make_record(actual_minutes=60, completed_at=frozen_now - timedelta(days=1))
            for _ in range(2)
        ]
        profile = _global(compute_profiles(old + recent, "org-1", now=frozen_now))
        # 3 * 0.2 old weight vs ~2 * 0.99 recent weight
        assert profile.bias_factor == 1.0

    def test_window_bounds_and_updated_at(self, make_record, frozen_now):
        first = frozen_now - timedelta(days=30)
        last = frozen_now - timedelta(days=2)
        tasks = [
            make_record(completed_at=first),
            make_record(completed_at=frozen_now - timedelta(days=10)),
            make_record(completed_at=last),
        ]
        [profile] = compute_profiles(tasks, "org-1", now=frozen_now)
        assert profile.window_start == first
        assert profile.window_end == last
        assert profile.updated_at == frozen_now

    def test_missing_completion_time_uses_updated_at(self, make_record, frozen_now):
        updated = frozen_now - timedelta(days=5)
        tasks = [make_record(completed_at=None, updated_at=updated)]
        [profile] = compute_profiles(tasks, "org-1", now=frozen_now)
        assert profile.window_start == updated

    def test_trend_reflects_improvement(self, make_history, frozen_now):
        tasks = make_history([1.6] * 5 + [1.0] * 5)
        profile = _global(compute_profiles(tasks, "org-1", now=frozen_now))
        assert profile.trend_delta == -0.6

    def test_deterministic_id(self, make_history, frozen_now):
        [profile] = compute_profiles(make_history([1.0]), "org-1", now=frozen_now)
        assert profile.id == "org-1:u-1:global:global"


# ═══════════════════════════════════════════════════════════════════════════
# Window ordering
# ═══════════════════════════════════════════════════════════════════════════


class TestWindowOrder:
    @pytest.fixture
    def newest_first(self, make_record, frozen_now):
        """45 records listed newest-first; the 5 oldest overran badly."""
        tasks = []
        for age in range(45):
            ratio = 2.5 if age >= 40 else 1.0
            tasks.append(make_record(
                actual_minutes=60 * ratio,
                completed_at=frozen_now - timedelta(days=age + 1),
            ))
        return tasks

    def test_chronological_window_keeps_most_recent(self, newest_first, frozen_now):
        profile = _global(compute_profiles(
            newest_first, "org-1", now=frozen_now, window_order=WINDOW_CHRONOLOGICAL,
        ))
        assert profile.sample_size == 40
        assert profile.variance_score == 0.0
        assert profile.window_start < profile.window_end

    def test_input_window_follows_array_position(self, newest_first, frozen_now):
        profile = _global(compute_profiles(
            newest_first, "org-1", now=frozen_now, window_order=WINDOW_INPUT,
        ))
        assert profile.sample_size == 40
        assert profile.variance_score > 0
        # first/last by position, not by time
        assert profile.window_start > profile.window_end


# ═══════════════════════════════════════════════════════════════════════════
# Context partitions
# ═══════════════════════════════════════════════════════════════════════════


class TestContextProfiles:
    def test_partitions_need_five_records(self, make_record, frozen_now):
        tasks = (
            [make_record(project_id="p-big", tags=["api"]) for _ in range(6)]
            + [make_record(project_id="p-small", tags=["ui"]) for _ in range(4)]
        )
        profiles = _by_context(compute_profiles(tasks, "org-1", now=frozen_now))
        assert ("u-1", ContextType.GLOBAL, "global") in profiles
        assert profiles[("u-1", ContextType.PROJECT, "p-big")].sample_size == 6
        assert ("u-1", ContextType.PROJECT, "p-small") not in profiles
        assert profiles[("u-1", ContextType.TAG, "api")].sample_size == 6
        assert ("u-1", ContextType.TAG, "ui") not in profiles
        assert profiles[("u-1", ContextType.STAGE, "done")].sample_size == 10

    def test_task_counts_for_every_tag(self, make_record, frozen_now):
        tasks = [make_record(tags=["api", "bug"]) for _ in range(5)]
        profiles = _by_context(compute_profiles(tasks, "org-1", now=frozen_now))
        assert ("u-1", ContextType.TAG, "api") in profiles
        assert ("u-1", ContextType.TAG, "bug") in profiles

    def test_repeated_tag_counts_per_entry(self, make_record, frozen_now):
        tasks = [make_record(tags=["api", "api"]) for _ in range(3)]
        profiles = _by_context(compute_profiles(tasks, "org-1", now=frozen_now))
        assert profiles[("u-1", ContextType.TAG, "api")].sample_size == 6
        assert ("u-1", ContextType.PROJECT, "p-1") not in profiles

    def test_users_are_profiled_separately(self, make_record, frozen_now):
        tasks = (
            [make_record(estimate_provided_by="u-a", actual_minutes=120) for _ in range(5)]
            + [make_record(estimate_provided_by="u-b", actual_minutes=45) for _ in range(5)]
        )
        profiles = _by_context(compute_profiles(tasks, "org-1", now=frozen_now))
        assert profiles[("u-a", ContextType.GLOBAL, "global")].bias_factor == 2.0
        assert profiles[("u-b", ContextType.GLOBAL, "global")].bias_factor == 0.75
        assert profiles[("u-a", ContextType.PROJECT, "p-1")].sample_size == 5

    def test_no_zero_sample_profiles(self, make_record, frozen_now):
        tasks = [make_record(project_id=f"p-{i % 3}", tags=[f"t{i}"]) for i in range(12)]
        for profile in compute_profiles(tasks, "org-1", now=frozen_now):
            assert profile.sample_size > 0


# ═══════════════════════════════════════════════════════════════════════════
# Idempotence
# ═══════════════════════════════════════════════════════════════════════════


class TestIdempotence:
    def test_same_snapshot_same_profiles(self, make_record, frozen_now):
        tasks = [
            make_record(
                project_id=f"p-{i % 2}",
                tags=["a"] if i % 3 else ["b"],
                actual_minutes=40 + i * 3,
            )
            for i in range(25)
        ]
        first = compute_profiles(tasks, "org-1", now=frozen_now)
        second = compute_profiles(tasks, "org-1", now=frozen_now)
        assert first == second
        assert [p.to_dict() for p in first] == [p.to_dict() for p in second]
