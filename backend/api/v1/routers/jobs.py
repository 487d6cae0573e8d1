"""
Jobs Router — enqueue analytics jobs on demand (same tasks Celery Beat runs).
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.deps import get_current_user
from workers.celery_app import celery_app

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])

PATTERN_DETECTION_TASK = "workers.pattern_detection.detect_patterns_all_sites"
RECOMMENDATION_TASK = "workers.recommendation_generation.generate_recommendations"
PEER_GROUPS_TASK = "workers.peer_groups.recalculate_industry"


# ─── Schemas ────────────────────────────────────────────────────────────────


class RecommendationJobRequest(BaseModel):
    site_id: str | None = None


class PeerGroupJobRequest(BaseModel):
    industry: str = Field(min_length=1, max_length=100)


class JobQueuedResponse(BaseModel):
    task_id: str
    task: str
    status: str = "queued"


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/pattern-detection", response_model=JobQueuedResponse, status_code=202)
async def trigger_pattern_detection(user: dict = Depends(get_current_user)):
    result = celery_app.send_task(PATTERN_DETECTION_TASK)
    return JobQueuedResponse(task_id=str(result.id), task=PATTERN_DETECTION_TASK)


@router.post("/recommendation-generation", response_model=JobQueuedResponse, status_code=202)
async def trigger_recommendation_generation(
    body: RecommendationJobRequest | None = None,
    user: dict = Depends(get_current_user),
):
    """Generate for every site with recent patterns, or only ``site_id``."""
    site_id = body.site_id if body else None
    result = celery_app.send_task(RECOMMENDATION_TASK, kwargs={"site_id": site_id})
    return JobQueuedResponse(task_id=str(result.id), task=RECOMMENDATION_TASK)


@router.post("/peer-groups", response_model=JobQueuedResponse, status_code=202)
async def trigger_peer_group_recalculation(
    body: PeerGroupJobRequest,
    user: dict = Depends(get_current_user),
):
    result = celery_app.send_task(PEER_GROUPS_TASK, kwargs={"industry": body.industry})
    return JobQueuedResponse(task_id=str(result.id), task=PEER_GROUPS_TASK)
