"""Seed Redis with a demo organization's calibration profiles.

Builds a completed-task history for three estimators with different
habits, then runs a full recompute so the API has something to show.

Run: python -m velo_calibration.scripts.seed_demo (from backend/)
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone

import redis

from velo_calibration.config.settings import REDIS_URL
from velo_calibration.engine.estimation_service import recompute_org_profiles
from velo_calibration.models.profile import ContextType
from velo_calibration.models.task import TaskRecord, TaskStatus

logger = logging.getLogger(__name__)

DEMO_ORG = "org-demo"

# estimator -> (typical actual/estimate ratio, spread)
ESTIMATORS = {
    "u-optimist": (1.6, 0.15),
    "u-steady": (1.05, 0.05),
    "u-padder": (0.75, 0.1),
}
PROJECTS = ["p-web", "p-mobile"]
TAGS = ["frontend", "backend", "bug", "research"]


def build_history(seed: int = 7, per_user: int = 36) -> list[TaskRecord]:
    rng = random.Random(seed)
    now = datetime.now(timezone.utc)
    tasks = []
    for user_id, (ratio, spread) in ESTIMATORS.items():
        for i in range(per_user):
            estimate = rng.choice([30, 45, 60, 90, 120, 240])
            actual = max(5, round(estimate * rng.gauss(ratio, spread)))
            tasks.append(TaskRecord(
                id=f"{user_id}-t{i}",
                organization_id=DEMO_ORG,
                project_id=PROJECTS[i % len(PROJECTS)],
                status=TaskStatus.DONE,
                tags=[TAGS[i % len(TAGS)]],
                estimate_minutes=estimate,
                estimate_provided_by=user_id,
                actual_minutes=actual,
                completed_at=now - timedelta(days=3 * (per_user - i)),
            ))
    return tasks


def seed(r: redis.Redis | None = None) -> int:
    r = r or redis.Redis.from_url(REDIS_URL, decode_responses=True)
    profiles = recompute_org_profiles(DEMO_ORG, build_history(), r=r)
    logger.info("Seeded %d profiles for %s", len(profiles), DEMO_ORG)
    for p in profiles:
        if p.context_type == ContextType.GLOBAL:
            logger.info(
                "  %-12s bias=%.3f confidence=%s samples=%d",
                p.user_id, p.bias_factor, p.confidence, p.sample_size,
            )
    return len(profiles)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    seed()
