"""Shared test fixtures for the calibration backend test suite."""

import pytest
import fakeredis
from datetime import datetime, timedelta, timezone

from velo_calibration.engine.adjustment import AdjustmentEngine
from velo_calibration.engine.profile_repository import InMemoryProfileRepository
from velo_calibration.engine.settings_store import CalibrationSettings
from velo_calibration.models.profile import BiasProfile, Confidence, ContextType, profile_id
from velo_calibration.models.task import TaskRecord, TaskStatus


# ── Redis ────────────────────────────────────────────────────────────────

@pytest.fixture
def r():
    """Fresh fakeredis instance per test (decode_responses=True like production)."""
    return fakeredis.FakeRedis(decode_responses=True)


# ── Time ─────────────────────────────────────────────────────────────────

@pytest.fixture
def frozen_now():
    """Fixed 'now' for deterministic recency weights.

    Default: 2026-02-15T12:00:00Z.
    """
    return datetime(2026, 2, 15, 12, 0, 0, tzinfo=timezone.utc)


# ── Record Factories ────────────────────────────────────────────────────

@pytest.fixture
def make_record(frozen_now):
    """Factory fixture for completed, calibratable TaskRecords.

    Usage:
        rec = make_record(estimate_minutes=60, actual_minutes=90)
    Each record completes one day after the previous one, ending before
    frozen_now, unless completed_at is given.
    """
    _counter = 0

    def _factory(**overrides):
        nonlocal _counter
        _counter += 1
        defaults = {
            "id": f"rec-{_counter}",
            "organization_id": "org-1",
            "project_id": "p-1",
            "status": TaskStatus.DONE,
            "tags": [],
            "estimate_minutes": 60,
            "estimate_provided_by": "u-1",
            "user_id": "u-1",
            "actual_minutes": 60,
            "completed_at": frozen_now - timedelta(days=200 - _counter),
        }
        defaults.update(overrides)
        return TaskRecord(**defaults)

    return _factory


@pytest.fixture
def make_history(make_record):
    """Build n records whose actual/estimate ratios come from ``ratios``."""

    def _factory(ratios, estimate=100, **overrides):
        return [
            make_record(estimate_minutes=estimate, actual_minutes=estimate * ratio, **overrides)
            for ratio in ratios
        ]

    return _factory


@pytest.fixture
def make_profile(frozen_now):
    """Factory for stored BiasProfiles with explicit statistics."""

    def _factory(
        bias_factor=1.0,
        sample_size=10,
        confidence=Confidence.LOW,
        context_type=ContextType.GLOBAL,
        context_key="global",
        user_id="u-1",
        organization_id="org-1",
    ):
        return BiasProfile(
            id=profile_id(organization_id, user_id, context_type, context_key),
            organization_id=organization_id,
            user_id=user_id,
            context_type=context_type,
            context_key=context_key,
            bias_factor=bias_factor,
            confidence=confidence,
            sample_size=sample_size,
            variance_score=0.0,
            trend_delta=0.0,
            window_start=frozen_now,
            window_end=frozen_now,
            updated_at=frozen_now,
        )

    return _factory


@pytest.fixture
def repo():
    return InMemoryProfileRepository()


@pytest.fixture
def settings():
    return CalibrationSettings(
        enable_estimate_calibration=True,
        estimation_require_approval=True,
        estimation_approval_threshold=1.3,
        show_personal_calibration=True,
    )


@pytest.fixture
def engine(repo, settings):
    return AdjustmentEngine(repo, settings)
