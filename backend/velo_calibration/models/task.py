"""Task record model for the calibration engine.

Read-only view of the tracker's task store: only the fields the engine
needs. Records arrive as JSON dicts from the browser client (camelCase)
or from Python callers (snake_case); ``TaskRecord.from_dict`` accepts both.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from velo_calibration.utils.datetime_utils import parse_timestamp
from velo_calibration.utils.numeric import round_half_up

MS_PER_MINUTE = 60000

# camelCase wire key -> dataclass field
_WIRE_KEYS = {
    "orgId": "organization_id",
    "organizationId": "organization_id",
    "projectId": "project_id",
    "estimateMinutes": "estimate_minutes",
    "estimateProvidedBy": "estimate_provided_by",
    "userId": "user_id",
    "actualMinutes": "actual_minutes",
    "timeLogged": "time_logged_ms",
    "timeLoggedMs": "time_logged_ms",
    "completedAt": "completed_at",
    "updatedAt": "updated_at",
    "isDeleted": "is_deleted",
}


class TaskStatus:
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    COMPLETED = "completed"


def is_done_like(status: Optional[str]) -> bool:
    """Projects may rename their final stage, so anything containing "done" counts."""
    if not status:
        return False
    normalized = status.lower()
    return normalized in (TaskStatus.DONE, TaskStatus.COMPLETED) or "done" in normalized


def _normalize_minutes(value: Any) -> Optional[int]:
    """Positive finite minutes rounded to a whole number, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(minutes) or minutes <= 0:
        return None
    return round_half_up(minutes)


def _optional_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass
class TaskRecord:
    id: str
    organization_id: str
    project_id: str = ""
    status: str = TaskStatus.TODO
    tags: list = field(default_factory=list)
    estimate_minutes: Optional[int] = None
    estimate_provided_by: Optional[str] = None
    user_id: Optional[str] = None          # task owner / creator
    actual_minutes: Optional[float] = None
    time_logged_ms: Optional[float] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_deleted: bool = False

    @property
    def estimator_id(self) -> Optional[str]:
        return self.estimate_provided_by or self.user_id or None

    @property
    def actual(self) -> float:
        """Actual minutes spent: explicit value first, then logged time."""
        if self.actual_minutes and self.actual_minutes > 0:
            return self.actual_minutes
        if self.time_logged_ms:
            return round_half_up(self.time_logged_ms / MS_PER_MINUTE)
        return 0

    @property
    def completion_time(self) -> Optional[datetime]:
        return self.completed_at or self.updated_at

    @property
    def has_estimate(self) -> bool:
        return bool(self.estimate_minutes and self.estimate_minutes > 0)

    def is_calibratable(self) -> bool:
        return (
            is_done_like(self.status)
            and self.has_estimate
            and self.actual > 0
            and bool(self.estimator_id)
        )

    @classmethod
    def from_dict(cls, data: dict) -> TaskRecord:
        data = {_WIRE_KEYS.get(k, k): v for k, v in data.items()}
        tags = data.get("tags") or []
        return cls(
            id=str(data.get("id") or data.get("task_id") or ""),
            organization_id=str(data.get("organization_id") or ""),
            project_id=str(data.get("project_id") or ""),
            status=str(data.get("status") or TaskStatus.TODO),
            tags=[str(t) for t in tags] if isinstance(tags, (list, tuple)) else [],
            estimate_minutes=_normalize_minutes(data.get("estimate_minutes")),
            estimate_provided_by=data.get("estimate_provided_by") or None,
            user_id=data.get("user_id") or None,
            actual_minutes=_optional_number(data.get("actual_minutes")),
            time_logged_ms=_optional_number(data.get("time_logged_ms")),
            completed_at=parse_timestamp(data.get("completed_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            is_deleted=bool(data.get("is_deleted", False)),
        )


@dataclass
class Project:
    id: str
    name: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> Project:
        return cls(id=str(data.get("id", "")), name=str(data.get("name", "")))
