"""Redis-backed entry points to the calibration engine.

These are the operations the task workflow, dashboards and the
calibration agent call. Each one reads settings and profiles from Redis
at call time, so every worker sees the latest recompute.

Recompute happens synchronously after every mutating task operation in an
organization (create, update, comment, reorder, delete). Without
``expected_version`` concurrent recomputes are last-write-wins.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

import redis

from velo_calibration.config.settings import MIN_SAMPLES, REDIS_URL
from velo_calibration.engine.adjustment import AdjustmentEngine, EstimateContext, NOT_ENOUGH_DATA
from velo_calibration.engine.approval_gate import ApprovalGate
from velo_calibration.engine.portfolio import (
    ForecastSummary,
    PortfolioRiskReporter,
    RiskRow,
    export_csv,
)
from velo_calibration.engine.profile_computer import compute_profiles
from velo_calibration.engine.profile_repository import RedisProfileRepository
from velo_calibration.engine.settings_store import get_settings
from velo_calibration.models.profile import AdjustmentPreview, BiasProfile, ContextType
from velo_calibration.models.task import Project, TaskRecord
from velo_calibration.utils.numeric import round_half_up

logger = logging.getLogger(__name__)

# Within this band around 1.0 an estimator is considered on target.
ON_TARGET_BAND = 0.05


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def _engine(r: redis.Redis) -> AdjustmentEngine:
    return AdjustmentEngine(RedisProfileRepository(r), get_settings(r))


def recompute_and_store(
    organization_id: str,
    tasks: list[TaskRecord],
    r: redis.Redis | None = None,
    now: datetime | None = None,
    expected_version: Optional[int] = None,
) -> tuple[list[BiasProfile], bool]:
    """Rebuild the organization's profiles and store them.

    Returns the computed profiles and whether the write landed. Each profile's
    ``updated_at`` is ``now``, so two recomputes of the same snapshot only
    store identical records when both pass the same ``now``.
    """
    profiles = compute_profiles(tasks, organization_id, now=now)
    stored = store_org_profiles(organization_id, profiles, r=r, expected_version=expected_version)
    return profiles, stored


def recompute_org_profiles(
    organization_id: str,
    tasks: list[TaskRecord],
    r: redis.Redis | None = None,
    now: datetime | None = None,
    expected_version: Optional[int] = None,
) -> list[BiasProfile]:
    """Rebuild and store the organization's profiles from a full task snapshot."""
    profiles, _ = recompute_and_store(organization_id, tasks, r=r, now=now, expected_version=expected_version)
    return profiles


def store_org_profiles(
    organization_id: str,
    profiles: list[BiasProfile],
    r: redis.Redis | None = None,
    expected_version: Optional[int] = None,
) -> bool:
    """Wholesale-replace the organization's stored profiles. True when the write landed."""
    r = r or _get_redis()
    stored = RedisProfileRepository(r).replace_all(
        organization_id, profiles, expected_version=expected_version,
    )
    if not stored:
        logger.warning("Recomputed profiles for org %s were not stored", organization_id)
    return stored


def get_profiles_for_user(
    organization_id: str, user_id: str, r: redis.Redis | None = None
) -> list[BiasProfile]:
    r = r or _get_redis()
    return RedisProfileRepository(r).get_for_user(organization_id, user_id)


def purge_org_profiles(organization_id: str, r: redis.Redis | None = None) -> bool:
    r = r or _get_redis()
    return RedisProfileRepository(r).purge_org(organization_id)


def get_adjustment_preview(
    organization_id: str,
    user_id: str,
    estimate_minutes: float,
    context: EstimateContext | None = None,
    r: redis.Redis | None = None,
) -> AdjustmentPreview:
    r = r or _get_redis()
    return _engine(r).preview(organization_id, user_id, estimate_minutes, context)


def should_require_approval_for_done(task: TaskRecord, r: redis.Redis | None = None) -> bool:
    r = r or _get_redis()
    return ApprovalGate(_engine(r)).requires_approval_for_done(task)


def get_portfolio_risk_rows(
    organization_id: str,
    projects: list[Project],
    tasks: list[TaskRecord],
    r: redis.Redis | None = None,
) -> list[RiskRow]:
    r = r or _get_redis()
    return PortfolioRiskReporter(_engine(r)).risk_rows(organization_id, projects, tasks)


def export_portfolio_csv(rows: list[RiskRow]) -> str:
    return export_csv(rows)


def get_forecast_summary(
    organization_id: str, tasks: list[TaskRecord], r: redis.Redis | None = None
) -> ForecastSummary:
    r = r or _get_redis()
    return PortfolioRiskReporter(_engine(r)).forecast_summary(organization_id, tasks)


def get_calibration_summary(
    organization_id: str, user_id: str, r: redis.Redis | None = None
) -> dict[str, Any]:
    """User-facing view of one estimator's calibration.

    Returns ``{"enabled": False}`` when personal calibration is hidden.
    """
    r = r or _get_redis()
    if not get_settings(r).show_personal_calibration:
        return {"enabled": False, "headline": "", "global": None, "contexts": []}

    profiles = get_profiles_for_user(organization_id, user_id, r)
    global_profile = next((p for p in profiles if p.context_type == ContextType.GLOBAL), None)
    contexts = [p for p in profiles if p.context_type != ContextType.GLOBAL]
    contexts.sort(key=lambda p: abs(p.bias_factor - 1), reverse=True)

    if global_profile is None or global_profile.sample_size < MIN_SAMPLES:
        headline = NOT_ENOUGH_DATA
    else:
        delta = global_profile.bias_factor - 1
        percent = abs(round_half_up(delta * 100))
        if abs(delta) <= ON_TARGET_BAND:
            headline = "Your estimates are on target"
        elif delta > 0:
            headline = f"You tend to underestimate by {percent}%"
        else:
            headline = f"You tend to overestimate by {percent}%"

    return {
        "enabled": True,
        "headline": headline,
        "global": global_profile.to_dict() if global_profile else None,
        "contexts": [p.to_dict() for p in contexts],
    }
