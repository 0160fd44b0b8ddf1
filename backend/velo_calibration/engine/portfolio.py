"""Portfolio Risk Reporter: raw vs calibrated estimates per project.

Each estimated task is run through the Adjustment Engine with its own
estimator and context, then summed per project:

    inflation_factor = adjusted_minutes / estimated_minutes   (1 when nothing is estimated)
"""

from __future__ import annotations

from dataclasses import dataclass, asdict

from velo_calibration.engine.adjustment import AdjustmentEngine, EstimateContext
from velo_calibration.models.task import Project, TaskRecord

CSV_HEADER = [
    "Project",
    "Estimated (min)",
    "Adjusted (min)",
    "Delta (min)",
    "Inflation factor",
    "Tasks with estimate",
]

# Board-level forecast labels, checked top-down.
RISK_LABELS = [
    (1.3, "At risk"),
    (1.1, "Tight"),
]
ON_TRACK = "On-track"


@dataclass
class RiskRow:
    project_id: str
    project_name: str
    estimated_minutes: float
    adjusted_minutes: float
    inflation_factor: float
    delta_minutes: float
    task_count: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ForecastSummary:
    estimated_minutes: float
    adjusted_minutes: float
    inflation_factor: float
    risk_label: str

    def to_dict(self) -> dict:
        return asdict(self)


def risk_label(factor: float) -> str:
    for threshold, label in RISK_LABELS:
        if factor >= threshold:
            return label
    return ON_TRACK


class PortfolioRiskReporter:
    def __init__(self, engine: AdjustmentEngine):
        self.engine = engine

    def _adjusted(self, organization_id: str, task: TaskRecord, project_id: str) -> float:
        preview = self.engine.preview(
            organization_id,
            task.estimator_id,
            task.estimate_minutes,
            EstimateContext(project_id=project_id, status=task.status, tags=task.tags),
        )
        return preview.adjusted_minutes

    def risk_rows(
        self,
        organization_id: str,
        projects: list[Project],
        tasks: list[TaskRecord],
    ) -> list[RiskRow]:
        rows = []
        for project in projects:
            estimated_tasks = [
                t for t in tasks
                if t.project_id == project.id and not t.is_deleted and t.has_estimate
            ]
            estimated = sum(t.estimate_minutes for t in estimated_tasks)
            adjusted = sum(self._adjusted(organization_id, t, project.id) for t in estimated_tasks)
            inflation = adjusted / estimated if estimated > 0 else 1
            rows.append(RiskRow(
                project_id=project.id,
                project_name=project.name,
                estimated_minutes=estimated,
                adjusted_minutes=adjusted,
                inflation_factor=round(inflation, 3),
                delta_minutes=adjusted - estimated,
                task_count=len(estimated_tasks),
            ))
        return rows

    def forecast_summary(self, organization_id: str, tasks: list[TaskRecord]) -> ForecastSummary:
        """Totals for one board view. Unestimated tasks count as zero on both sides."""
        estimated_tasks = [t for t in tasks if t.has_estimate]
        estimated = sum(t.estimate_minutes for t in estimated_tasks)
        adjusted = sum(self._adjusted(organization_id, t, t.project_id) for t in estimated_tasks)
        factor = adjusted / estimated if estimated > 0 else 1
        return ForecastSummary(
            estimated_minutes=estimated,
            adjusted_minutes=adjusted,
            inflation_factor=round(factor, 3),
            risk_label=risk_label(factor),
        )


def export_csv(rows: list[RiskRow]) -> str:
    """Plain comma-joined lines; field values are not quoted or escaped."""
    lines = [",".join(CSV_HEADER)]
    for row in rows:
        lines.append(",".join(str(v) for v in (
            row.project_name,
            row.estimated_minutes,
            row.adjusted_minutes,
            row.delta_minutes,
            row.inflation_factor,
            row.task_count,
        )))
    return "\n".join(lines)
