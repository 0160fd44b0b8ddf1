"""FastAPI server exposing the estimation calibration engine.

REST endpoints used by the task workflow (recompute after every mutation,
approval check before a done transition), the estimate editor (preview),
dashboards (portfolio risk, CSV export, board forecast) and the settings
screen.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import redis
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from velo_calibration.config.settings import REDIS_URL
from velo_calibration.engine.adjustment import EstimateContext
from velo_calibration.engine import estimation_service
from velo_calibration.engine.profile_repository import RedisProfileRepository
from velo_calibration.engine.settings_store import get_settings, update_settings
from velo_calibration.models.task import Project, TaskRecord

logger = logging.getLogger(__name__)

app = FastAPI(title="Velo Calibration", description="Estimation calibration engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def _records(tasks: list[dict[str, Any]]) -> list[TaskRecord]:
    return [TaskRecord.from_dict(t) for t in tasks if isinstance(t, dict)]


# ── Request Models ───────────────────────────────────────────────────────

class TaskSnapshotRequest(BaseModel):
    tasks: list[dict[str, Any]] = []
    expected_version: Optional[int] = None


class PreviewRequest(BaseModel):
    user_id: str
    estimate_minutes: float
    project_id: Optional[str] = None
    status: Optional[str] = None
    tags: list[str] = []


class ApprovalCheckRequest(BaseModel):
    task: dict[str, Any]


class PortfolioRequest(BaseModel):
    projects: list[dict[str, Any]] = []
    tasks: list[dict[str, Any]] = []


class SettingsUpdateRequest(BaseModel):
    enable_estimate_calibration: Optional[bool] = None
    estimation_require_approval: Optional[bool] = None
    estimation_approval_threshold: Optional[float] = None
    show_personal_calibration: Optional[bool] = None


# ── Health ───────────────────────────────────────────────────────────────

@app.get("/api/health")
async def health():
    r = _get_redis()
    try:
        r.ping()
        redis_ok = True
    except redis.RedisError:
        redis_ok = False
    return {"status": "ok", "redis": redis_ok}


# ── Settings ─────────────────────────────────────────────────────────────

@app.get("/api/settings/estimation")
async def read_settings():
    return get_settings(_get_redis()).to_dict()


@app.put("/api/settings/estimation")
async def write_settings(req: SettingsUpdateRequest):
    changes = {k: v for k, v in req.model_dump().items() if v is not None}
    return update_settings(_get_redis(), **changes).to_dict()


# ── Profiles ─────────────────────────────────────────────────────────────

@app.post("/api/orgs/{org_id}/profiles/recompute")
async def recompute_profiles(org_id: str, req: TaskSnapshotRequest):
    """Called by the task workflow after create/update/comment/reorder/delete."""
    r = _get_redis()
    repo = RedisProfileRepository(r)
    profiles, stored = estimation_service.recompute_and_store(
        org_id, _records(req.tasks), r=r, expected_version=req.expected_version,
    )
    return {
        "organization_id": org_id,
        "stored": stored,
        "version": repo.version(org_id),
        "profiles": [p.to_dict() for p in profiles],
    }


@app.delete("/api/orgs/{org_id}/profiles")
async def purge_profiles(org_id: str):
    stored = estimation_service.purge_org_profiles(org_id, r=_get_redis())
    return {"organization_id": org_id, "purged": stored}


@app.get("/api/orgs/{org_id}/users/{user_id}/profiles")
async def user_profiles(org_id: str, user_id: str):
    profiles = estimation_service.get_profiles_for_user(org_id, user_id, r=_get_redis())
    return {"profiles": [p.to_dict() for p in profiles]}


@app.get("/api/orgs/{org_id}/users/{user_id}/calibration")
async def user_calibration(org_id: str, user_id: str):
    return estimation_service.get_calibration_summary(org_id, user_id, r=_get_redis())


# ── Estimates & Approval ─────────────────────────────────────────────────

@app.post("/api/orgs/{org_id}/estimates/preview")
async def preview_estimate(org_id: str, req: PreviewRequest):
    context = EstimateContext(project_id=req.project_id, status=req.status, tags=req.tags)
    preview = estimation_service.get_adjustment_preview(
        org_id, req.user_id, req.estimate_minutes, context, r=_get_redis(),
    )
    return preview.to_dict()


@app.post("/api/tasks/approval-check")
async def approval_check(req: ApprovalCheckRequest):
    task = TaskRecord.from_dict(req.task)
    if not task.organization_id:
        raise HTTPException(status_code=422, detail="task has no organization id")
    required = estimation_service.should_require_approval_for_done(task, r=_get_redis())
    return {"task_id": task.id, "requires_approval": required}


# ── Reporting ────────────────────────────────────────────────────────────

@app.post("/api/orgs/{org_id}/portfolio/risk")
async def portfolio_risk(org_id: str, req: PortfolioRequest):
    rows = estimation_service.get_portfolio_risk_rows(
        org_id,
        [Project.from_dict(p) for p in req.projects],
        _records(req.tasks),
        r=_get_redis(),
    )
    return {"rows": [row.to_dict() for row in rows]}


@app.post("/api/orgs/{org_id}/portfolio/risk.csv", response_class=PlainTextResponse)
async def portfolio_risk_csv(org_id: str, req: PortfolioRequest):
    rows = estimation_service.get_portfolio_risk_rows(
        org_id,
        [Project.from_dict(p) for p in req.projects],
        _records(req.tasks),
        r=_get_redis(),
    )
    return PlainTextResponse(
        estimation_service.export_portfolio_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="portfolio-risk-{org_id}.csv"'},
    )


@app.post("/api/orgs/{org_id}/forecast")
async def board_forecast(org_id: str, req: PortfolioRequest):
    summary = estimation_service.get_forecast_summary(org_id, _records(req.tasks), r=_get_redis())
    return summary.to_dict()


if __name__ == "__main__":
    import uvicorn
    from velo_calibration.config.settings import SERVER_HOST, SERVER_PORT
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT)
