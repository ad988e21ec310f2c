"""
canopy.api.routes.challenges — Challenge progress & query endpoints
=====================================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from canopy.api.deps import get_service
from canopy.database.engine import run_db
from canopy.engine.achievements import AchievementRecord
from canopy.engine.catalog import ChallengeTemplate
from canopy.engine.progress import InstanceState, ProgressResult
from canopy.services.challenge_service import ChallengeService, ChallengeView

router = APIRouter(tags=["challenges"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ProgressIn(BaseModel):
    template_id: str
    delta: int = Field(1, strict=True)


class CompleteIn(BaseModel):
    template_id: str


class ActivityIn(BaseModel):
    activity_type: str
    delta: int = Field(1, strict=True)


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def _template_dict(t: ChallengeTemplate) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "kind": t.kind.value,
        "target": t.target,
        "point_value": t.point_value,
        "icon": t.icon,
    }


def _instance_dict(i: InstanceState) -> dict:
    return {
        "id": i.id,
        "template_id": i.template_id,
        "kind": i.kind,
        "period_key": i.period_key,
        "progress": i.progress,
        "completed": i.completed,
        "created_at": i.created_at.isoformat() if i.created_at else None,
        "completed_at": i.completed_at.isoformat() if i.completed_at else None,
    }


def _view_dict(v: ChallengeView) -> dict:
    return {**_template_dict(v.template), "instance": _instance_dict(v.instance)}


def _achievement_dict(a: AchievementRecord) -> dict:
    return {
        "id": a.id,
        "template_id": a.template_id,
        "instance_id": a.instance_id,
        "title": a.title,
        "description": a.description,
        "icon": a.icon,
        "points": a.points,
        "unlocked_at": a.unlocked_at.isoformat(),
    }


def _result_dict(r: ProgressResult) -> dict:
    return {
        "instance": _instance_dict(r.instance),
        "just_completed": r.just_completed,
        "reward_pending": r.reward_pending,
        "achievement": _achievement_dict(r.achievement) if r.achievement else None,
    }


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
@router.get("/challenges")
async def list_templates(service: ChallengeService = Depends(get_service)):
    """Every challenge template in catalog order."""
    return [_template_dict(t) for t in service.catalog]


# ---------------------------------------------------------------------------
# Per-user queries
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/challenges/daily")
async def daily_challenges(user_id: str, service: ChallengeService = Depends(get_service)):
    views = await run_db(service.get_daily_challenges, user_id)
    return [_view_dict(v) for v in views]


@router.get("/users/{user_id}/challenges/weekly")
async def weekly_challenges(user_id: str, service: ChallengeService = Depends(get_service)):
    views = await run_db(service.get_weekly_challenges, user_id)
    return [_view_dict(v) for v in views]


@router.get("/users/{user_id}/challenges/milestones")
async def milestones(user_id: str, service: ChallengeService = Depends(get_service)):
    views = await run_db(service.get_milestones, user_id)
    return [_view_dict(v) for v in views]


@router.get("/users/{user_id}/challenges/history")
async def challenge_history(
    user_id: str,
    template_id: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    service: ChallengeService = Depends(get_service),
):
    """Archived instances from past periods, most recent first."""
    history = await run_db(service.get_history, user_id, template_id, limit)
    return [_instance_dict(i) for i in history]


@router.get("/users/{user_id}/achievements")
async def achievements(user_id: str, service: ChallengeService = Depends(get_service)):
    records = await run_db(service.get_achievements, user_id)
    return [_achievement_dict(a) for a in records]


@router.get("/users/{user_id}/streak")
async def streak(user_id: str, service: ChallengeService = Depends(get_service)):
    record = await run_db(service.get_streak_record, user_id)
    return {
        "user_id": user_id,
        "streak": record.current,
        "longest": record.longest,
        "last_completed_on": (
            record.last_completed_on.isoformat() if record.last_completed_on else None
        ),
        "active_today": record.active_today,
    }


@router.get("/users/{user_id}/points")
async def points(user_id: str, service: ChallengeService = Depends(get_service)):
    return {"user_id": user_id, "points": await run_db(service.get_points, user_id)}


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------
@router.post("/users/{user_id}/progress")
async def apply_progress(
    user_id: str,
    body: ProgressIn,
    service: ChallengeService = Depends(get_service),
):
    result = await run_db(service.apply_progress, user_id, body.template_id, body.delta)
    return _result_dict(result)


@router.post("/users/{user_id}/complete")
async def complete_challenge(
    user_id: str,
    body: CompleteIn,
    service: ChallengeService = Depends(get_service),
):
    result = await run_db(service.complete_challenge, user_id, body.template_id)
    return _result_dict(result)


@router.post("/users/{user_id}/activities")
async def record_activity(
    user_id: str,
    body: ActivityIn,
    service: ChallengeService = Depends(get_service),
):
    """Apply a raw activity (e.g. ``tree_planting``) to every mapped challenge."""
    results = await run_db(service.record_activity, user_id, body.activity_type, body.delta)
    return [_result_dict(r) for r in results]
