"""Typed message models for the calibration agent.

All messages are uAgents Model subclasses providing schema validation
and serialization across the Fetch.ai ecosystem. Task and profile
payloads travel as plain dicts in the tracker's JSON layout.
"""

from uagents import Model


class TaskMutationEvent(Model):
    """Emitted by the task workflow after any mutating task operation."""
    organization_id: str
    mutation: str            # create | update | comment | reorder | delete
    tasks: list              # full task snapshot of the organization (task dicts)
    expected_version: int = -1  # >= 0 enables the optimistic replace guard


class ProfilesRecomputed(Model):
    """Reply to TaskMutationEvent."""
    organization_id: str
    profile_count: int
    stored: bool
    timestamp: str           # ISO 8601


class EstimatePreviewRequest(Model):
    """Request an adjustment preview when a user enters or edits an estimate."""
    organization_id: str
    user_id: str
    estimate_minutes: float
    project_id: str = ""
    status: str = ""
    tags: list = []


class EstimatePreviewResponse(Model):
    """AdjustmentPreview fields."""
    estimated_minutes: float
    adjusted_minutes: float
    bias_factor_used: float
    confidence: str          # low | medium | high
    sample_size: int
    explanation: str
    requires_approval: bool


class ApprovalCheckRequest(Model):
    """Sent by the task-completion workflow before a done transition."""
    task: dict               # task dict


class ApprovalCheckResponse(Model):
    task_id: str
    requires_approval: bool
