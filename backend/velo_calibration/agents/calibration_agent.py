"""Calibration Agent.

Receives TaskMutationEvent from the task workflow and recomputes the
organization's bias profiles; answers EstimatePreviewRequest and
ApprovalCheckRequest from the same Redis-backed profiles.

Usage:
    from velo_calibration.agents.calibration_agent import create_calibration_agent
    agent = create_calibration_agent(port=8001)
    agent.run()
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import redis
from uagents import Agent, Context

from velo_calibration.config.settings import (
    AGENT_DEPLOY_MODE,
    AGENT_ENDPOINT_BASE,
    CALIBRATION_AGENT_PORT,
    CALIBRATION_AGENT_SEED,
    REDIS_URL,
)
from velo_calibration.engine.adjustment import EstimateContext
from velo_calibration.engine.estimation_service import (
    get_adjustment_preview,
    get_calibration_summary,
    recompute_and_store,
    should_require_approval_for_done,
)
from velo_calibration.models.messages import (
    ApprovalCheckRequest,
    ApprovalCheckResponse,
    EstimatePreviewRequest,
    EstimatePreviewResponse,
    ProfilesRecomputed,
    TaskMutationEvent,
)
from velo_calibration.models.task import TaskRecord
from velo_calibration.agents.protocols import USAGE, ChatCommand, create_chat_protocol

logger = logging.getLogger(__name__)


# ── Handlers (plain functions, no agent context needed) ─────────────────

def handle_mutation(event: TaskMutationEvent, r: redis.Redis) -> ProfilesRecomputed:
    tasks = [TaskRecord.from_dict(t) for t in event.tasks if isinstance(t, dict)]
    expected = event.expected_version if event.expected_version >= 0 else None
    profiles, stored = recompute_and_store(event.organization_id, tasks, r=r, expected_version=expected)
    logger.info(
        "Mutation %s in org %s: %d profiles (stored=%s)",
        event.mutation, event.organization_id, len(profiles), stored,
    )
    return ProfilesRecomputed(
        organization_id=event.organization_id,
        profile_count=len(profiles),
        stored=stored,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


def handle_preview(req: EstimatePreviewRequest, r: redis.Redis) -> EstimatePreviewResponse:
    context = EstimateContext(
        project_id=req.project_id or None,
        status=req.status or None,
        tags=list(req.tags),
    )
    preview = get_adjustment_preview(
        req.organization_id, req.user_id, req.estimate_minutes, context, r=r,
    )
    return EstimatePreviewResponse(
        estimated_minutes=preview.estimated_minutes,
        adjusted_minutes=preview.adjusted_minutes,
        bias_factor_used=preview.bias_factor_used,
        confidence=preview.confidence,
        sample_size=preview.sample_size,
        explanation=preview.explanation,
        requires_approval=preview.requires_approval,
    )


def handle_approval_check(req: ApprovalCheckRequest, r: redis.Redis) -> ApprovalCheckResponse:
    task = TaskRecord.from_dict(req.task)
    return ApprovalCheckResponse(
        task_id=task.id,
        requires_approval=should_require_approval_for_done(task, r=r),
    )


def answer_chat(command: Optional[ChatCommand], r: redis.Redis) -> str:
    if command is None:
        return USAGE
    if command.name == "preview":
        preview = get_adjustment_preview(
            command.organization_id, command.user_id, command.minutes, r=r,
        )
        return (
            f"{preview.estimated_minutes:g} min -> {preview.adjusted_minutes:g} min. "
            f"{preview.explanation}."
        )
    summary = get_calibration_summary(command.organization_id, command.user_id, r=r)
    if not summary["enabled"]:
        return "Personal calibration is turned off for this organization."
    return summary["headline"] + "."


# ═══════════════════════════════════════════════════════════════════════════
# Agent Factory
# ═══════════════════════════════════════════════════════════════════════════


def create_calibration_agent(port: int = CALIBRATION_AGENT_PORT) -> Agent:
    """Create and configure the Calibration Agent."""
    agent = Agent(
        name="calibration_agent",
        seed=CALIBRATION_AGENT_SEED,
        port=port,
        endpoint=[f"{AGENT_ENDPOINT_BASE}:{port}/submit"] if AGENT_DEPLOY_MODE == "local" else [],
        mailbox=AGENT_DEPLOY_MODE == "agentverse",
    )

    _state: Dict[str, Any] = {"redis": None}

    def _get_redis_client() -> redis.Redis:
        if _state["redis"] is None:
            _state["redis"] = redis.Redis.from_url(REDIS_URL, decode_responses=True)
        return _state["redis"]

    @agent.on_event("startup")
    async def on_startup(ctx: Context):
        logger.info("Calibration Agent started. Address: %s", agent.address)

    @agent.on_message(TaskMutationEvent, replies=ProfilesRecomputed)
    async def on_task_mutation(ctx: Context, sender: str, event: TaskMutationEvent):
        await ctx.send(sender, handle_mutation(event, _get_redis_client()))

    @agent.on_message(EstimatePreviewRequest, replies=EstimatePreviewResponse)
    async def on_preview(ctx: Context, sender: str, req: EstimatePreviewRequest):
        await ctx.send(sender, handle_preview(req, _get_redis_client()))

    @agent.on_message(ApprovalCheckRequest, replies=ApprovalCheckResponse)
    async def on_approval_check(ctx: Context, sender: str, req: ApprovalCheckRequest):
        await ctx.send(sender, handle_approval_check(req, _get_redis_client()))

    chat_proto = create_chat_protocol(lambda command: answer_chat(command, _get_redis_client()))
    agent.include(chat_proto, publish_manifest=True)

    return agent


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_calibration_agent().run()
