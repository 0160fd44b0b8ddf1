"""Adjustment Engine: raw estimate + work context -> calibrated estimate.

Candidate profiles for the estimator are the global one plus whichever
project, stage and tag profiles match the context. They are blended by
sample size:

    factor  = sum(bias * n) / sum(n)
    samples = sum(n)

With fewer than MIN_SAMPLES blended observations the factor is forced to
1. Adjusted estimates are whole quarter-hours, never below 15 minutes.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from velo_calibration.config.settings import MIN_SAMPLES, ROUNDING_STEP_MINUTES
from velo_calibration.engine.profile_repository import ProfileRepository
from velo_calibration.engine.settings_store import CalibrationSettings
from velo_calibration.models.profile import (
    AdjustmentPreview,
    BiasProfile,
    Confidence,
    ContextType,
    GLOBAL_CONTEXT_KEY,
)
from velo_calibration.utils.numeric import round_half_up

logger = logging.getLogger(__name__)

NOT_ENOUGH_DATA = "Not enough historical data yet"
CALIBRATION_OFF = "Forecast calibration is turned off"
NO_ESTIMATE = "No estimate to calibrate"


@dataclass
class EstimateContext:
    project_id: Optional[str] = None
    status: Optional[str] = None
    tags: list = field(default_factory=list)


@dataclass
class Blend:
    factor: float
    confidence: str
    samples: int


def blend_profiles(profiles: list[BiasProfile]) -> Blend:
    if not profiles:
        return Blend(factor=1.0, confidence=Confidence.LOW, samples=0)
    samples = sum(p.sample_size for p in profiles)
    weighted = sum(p.bias_factor * p.sample_size for p in profiles)
    return Blend(
        factor=round(weighted / max(1, samples), 3),
        confidence=Confidence.highest([p.confidence for p in profiles]),
        samples=samples,
    )


def select_candidates(profiles: list[BiasProfile], context: EstimateContext) -> list[BiasProfile]:
    """Global + project + stage + one profile per tag entry.

    A tag repeated in the context is blended once per repetition.
    """
    index = {(p.context_type, p.context_key): p for p in profiles}
    wanted = [(ContextType.GLOBAL, GLOBAL_CONTEXT_KEY)]
    if context.project_id:
        wanted.append((ContextType.PROJECT, context.project_id))
    if context.status:
        wanted.append((ContextType.STAGE, context.status))
    for tag in context.tags or []:
        wanted.append((ContextType.TAG, tag))
    return [index[k] for k in wanted if k in index]


def round_to_step(minutes: float) -> int:
    return max(ROUNDING_STEP_MINUTES, round_half_up(minutes / ROUNDING_STEP_MINUTES) * ROUNDING_STEP_MINUTES)


def explain(factor: float, samples: int) -> str:
    if samples < MIN_SAMPLES:
        return NOT_ENOUGH_DATA
    percent = round_half_up((factor - 1) * 100)
    direction = f"+{percent}%" if factor > 1 else f"{percent}%"
    return f"Adjusted from your historical pattern ({direction} across {samples} completed tasks)"


def passthrough(estimate_minutes: float, explanation: str) -> AdjustmentPreview:
    return AdjustmentPreview(
        estimated_minutes=estimate_minutes,
        adjusted_minutes=estimate_minutes,
        bias_factor_used=1.0,
        confidence=Confidence.LOW,
        sample_size=0,
        explanation=explanation,
        requires_approval=False,
    )


class AdjustmentEngine:
    def __init__(self, repository: ProfileRepository, settings: CalibrationSettings):
        self.repository = repository
        self.settings = settings

    def preview(
        self,
        organization_id: str,
        user_id: Optional[str],
        estimate_minutes: float,
        context: EstimateContext | None = None,
    ) -> AdjustmentPreview:
        if not self.settings.enable_estimate_calibration:
            return passthrough(estimate_minutes, CALIBRATION_OFF)
        if not estimate_minutes or not math.isfinite(estimate_minutes) or estimate_minutes <= 0:
            return passthrough(estimate_minutes, NO_ESTIMATE)

        context = context or EstimateContext()
        profiles = self.repository.get_for_user(organization_id, user_id) if user_id else []
        blended = blend_profiles(select_candidates(profiles, context))

        factor = 1.0 if blended.samples < MIN_SAMPLES else blended.factor
        requires_approval = (
            self.settings.estimation_require_approval
            and blended.confidence != Confidence.LOW
            and factor >= self.settings.estimation_approval_threshold
        )
        logger.debug(
            "Preview org=%s user=%s estimate=%s factor=%s samples=%d",
            organization_id, user_id, estimate_minutes, factor, blended.samples,
        )
        return AdjustmentPreview(
            estimated_minutes=estimate_minutes,
            adjusted_minutes=round_to_step(estimate_minutes * factor),
            bias_factor_used=round(factor, 3),
            confidence=blended.confidence,
            sample_size=blended.samples,
            explanation=explain(factor, blended.samples),
            requires_approval=bool(requires_approval),
        )
