"""Profile Computer: historical task records -> bias profiles.

For every estimator in an organization, compares estimates with actual
time spent and summarizes the ratios into one global profile plus one
profile per project, stage and tag that has enough history.

    ratio  = clamp(actual / estimate, 0.5, 2.5)
    weight = max(0.2, 1 - age_days / 180)
    bias   = weighted median of ratios

Pure: no Redis, no clock unless ``now`` is omitted.
"""

from __future__ import annotations

import logging
import statistics
from datetime import datetime, timezone
from typing import Iterable, Optional

from velo_calibration.config.settings import (
    CALIBRATION_WINDOW_ORDER,
    CONTEXT_MIN_SAMPLES,
    MAX_RATIO,
    MIN_RATIO,
    MIN_RECENCY_WEIGHT,
    MIN_SAMPLES,
    RECENCY_HORIZON_DAYS,
    WINDOW_TASKS,
)
from velo_calibration.models.profile import (
    BiasProfile,
    Confidence,
    ContextType,
    GLOBAL_CONTEXT_KEY,
    profile_id,
)
from velo_calibration.models.task import TaskRecord
from velo_calibration.utils.datetime_utils import age_in_days
from velo_calibration.utils.numeric import clamp

logger = logging.getLogger(__name__)

WINDOW_CHRONOLOGICAL = "chronological"
WINDOW_INPUT = "input"

UNKNOWN_STAGE = "unknown"


# ═══════════════════════════════════════════════════════════════════════════
# Statistics
# ═══════════════════════════════════════════════════════════════════════════

def clamp_ratio(value: float) -> float:
    return clamp(value, MIN_RATIO, MAX_RATIO)


def recency_weight(age_days: float) -> float:
    """Linear decay over the horizon, floored so old history still counts."""
    return max(MIN_RECENCY_WEIGHT, 1 - age_days / RECENCY_HORIZON_DAYS)


def weighted_median(entries: list[tuple[float, float]]) -> float:
    """First value whose cumulative weight reaches half the total. No interpolation.

    entries: (value, weight) pairs in any order.
    """
    if not entries:
        return 1.0
    ordered = sorted(entries, key=lambda e: e[0])
    total = sum(w for _, w in ordered)
    cumulative = 0.0
    for value, weight in ordered:
        cumulative += weight
        if cumulative >= total / 2:
            return value
    return ordered[-1][0]


def population_variance(values: list[float]) -> float:
    if not values:
        return 0.0
    return round(statistics.pvariance(values), 4)


def confidence_for(sample_size: int, variance: float) -> str:
    if sample_size < MIN_SAMPLES:
        return Confidence.LOW
    if sample_size >= 30 and variance <= 0.18:
        return Confidence.HIGH
    if sample_size >= 15 and variance <= 0.35:
        return Confidence.MEDIUM
    return Confidence.MEDIUM if sample_size >= 20 else Confidence.LOW


def trend_delta(ratios: list[float], fallback: float) -> float:
    """Mean of the later half minus mean of the earlier half, by position."""
    midpoint = len(ratios) // 2
    older = ratios[:midpoint]
    newer = ratios[midpoint:]
    older_avg = statistics.fmean(older) if older else fallback
    newer_avg = statistics.fmean(newer) if newer else fallback
    return round(newer_avg - older_avg, 3)


# ═══════════════════════════════════════════════════════════════════════════
# Windowing
# ═══════════════════════════════════════════════════════════════════════════

def order_history(
    records: list[TaskRecord],
    now: datetime,
    window_order: str = WINDOW_CHRONOLOGICAL,
) -> list[TaskRecord]:
    """Oldest-first history for one estimator.

    ``input`` keeps the task store's ordering as-is. ``chronological``
    sorts by completion time (stable; records without one sort as "now").
    """
    if window_order == WINDOW_INPUT:
        return list(records)
    return sorted(records, key=lambda t: t.completion_time or now)


def recent_window(records: list[TaskRecord]) -> list[TaskRecord]:
    return records[-WINDOW_TASKS:]


# ═══════════════════════════════════════════════════════════════════════════
# Profile computation
# ═══════════════════════════════════════════════════════════════════════════

def compute_profile(
    records: list[TaskRecord],
    organization_id: str,
    user_id: str,
    context_type: str,
    context_key: str,
    now: datetime,
) -> Optional[BiasProfile]:
    """Summarize an ordered record window into one profile (None if no ratios)."""
    entries: list[tuple[float, float]] = []
    for task in records:
        estimate = task.estimate_minutes or 0
        actual = task.actual
        if estimate <= 0 or actual <= 0:
            continue
        weight = recency_weight(age_in_days(task.completion_time, now))
        entries.append((clamp_ratio(actual / estimate), weight))

    if not entries:
        return None

    ratios = [value for value, _ in entries]
    bias = weighted_median(entries)
    variance = population_variance(ratios)

    return BiasProfile(
        id=profile_id(organization_id, user_id, context_type, context_key),
        organization_id=organization_id,
        user_id=user_id,
        context_type=context_type,
        context_key=context_key,
        bias_factor=round(bias, 3),
        confidence=confidence_for(len(ratios), variance),
        sample_size=len(ratios),
        variance_score=variance,
        trend_delta=trend_delta(ratios, bias),
        window_start=records[0].completion_time or now,
        window_end=records[-1].completion_time or now,
        updated_at=now,
    )


def _partition(records: Iterable[TaskRecord]) -> dict[str, dict[str, list[TaskRecord]]]:
    partitions: dict[str, dict[str, list[TaskRecord]]] = {
        ContextType.PROJECT: {},
        ContextType.STAGE: {},
        ContextType.TAG: {},
    }
    for task in records:
        partitions[ContextType.PROJECT].setdefault(task.project_id, []).append(task)
        partitions[ContextType.STAGE].setdefault(task.status or UNKNOWN_STAGE, []).append(task)
        for tag in task.tags:
            partitions[ContextType.TAG].setdefault(tag, []).append(task)
    return partitions


def compute_profiles(
    tasks: Iterable[TaskRecord],
    organization_id: str,
    now: datetime | None = None,
    window_order: str = CALIBRATION_WINDOW_ORDER,
) -> list[BiasProfile]:
    """Compute the complete profile set for one organization.

    Output order is deterministic for a given input: users by first
    appearance; per user the global profile, then project, stage and tag
    profiles in first-appearance order of their keys.
    """
    now = now or datetime.now(timezone.utc)

    by_user: dict[str, list[TaskRecord]] = {}
    for task in tasks:
        if task.organization_id != organization_id or not task.is_calibratable():
            continue
        by_user.setdefault(task.estimator_id, []).append(task)

    profiles: list[BiasProfile] = []
    for user_id, history in by_user.items():
        ordered = order_history(history, now, window_order)

        global_profile = compute_profile(
            recent_window(ordered), organization_id, user_id,
            ContextType.GLOBAL, GLOBAL_CONTEXT_KEY, now,
        )
        if global_profile:
            profiles.append(global_profile)

        for context_type, groups in _partition(ordered).items():
            for context_key, group in groups.items():
                if len(group) < CONTEXT_MIN_SAMPLES:
                    continue
                profile = compute_profile(
                    recent_window(group), organization_id, user_id,
                    context_type, context_key, now,
                )
                if profile:
                    profiles.append(profile)

    logger.info(
        "Computed %d bias profiles for org %s (%d estimators)",
        len(profiles), organization_id, len(by_user),
    )
    return profiles
