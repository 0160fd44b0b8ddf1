"""Approval Gate: should a done-transition be held for approval?

Only answers the policy question. The task workflow that calls it is
responsible for actually blocking the status change.
"""

from __future__ import annotations

import logging

from velo_calibration.engine.adjustment import AdjustmentEngine, EstimateContext
from velo_calibration.models.task import TaskRecord

logger = logging.getLogger(__name__)


class ApprovalGate:
    def __init__(self, engine: AdjustmentEngine):
        self.engine = engine

    def requires_approval_for_done(self, task: TaskRecord) -> bool:
        if not task.has_estimate:
            return False
        preview = self.engine.preview(
            task.organization_id,
            task.estimator_id,
            task.estimate_minutes,
            EstimateContext(project_id=task.project_id, status=task.status, tags=task.tags),
        )
        if preview.requires_approval:
            logger.info(
                "Task %s needs approval before done (factor %s, %s confidence)",
                task.id, preview.bias_factor_used, preview.confidence,
            )
        return preview.requires_approval
