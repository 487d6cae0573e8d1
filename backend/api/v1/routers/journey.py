"""
Journey Router — conversion funnel and journey-type breakdown.
"""

from datetime import timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from analytics.journey import JOURNEY_TYPES, calculate_funnel, generate_insight, journey_type_stats
from api.deps import get_current_user, get_store
from core.errors import ValidationError
from db.models import utcnow
from db.store import Store, get_owned_business

router = APIRouter(prefix="/api/v1/businesses", tags=["journey"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class StagePageResponse(BaseModel):
    url: str
    count: int

    model_config = {"from_attributes": True}


class FunnelStageResponse(BaseModel):
    name: str
    count: int
    percentage: float
    drop_off_rate: float | None = None
    conversion_rate: float | None = None
    avg_time_spent: int | None = None
    top_pages: list[StagePageResponse] = []

    model_config = {"from_attributes": True}


class FunnelInsightResponse(BaseModel):
    primary: str
    secondary: str | None = None
    biggest_drop_off_stage: str | None = None
    biggest_drop_off_rate: float | None = None
    best_performing_stage: str | None = None
    best_conversion_rate: float | None = None

    model_config = {"from_attributes": True}


class JourneyTypeResponse(BaseModel):
    type: str
    label: str
    count: int
    percentage: float

    model_config = {"from_attributes": True}


class JourneyResponse(BaseModel):
    journey_type: str
    days: int
    total_sessions: int
    overall_conversion: float
    stages: list[FunnelStageResponse]
    insight: FunnelInsightResponse
    journey_types: list[JourneyTypeResponse]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/{business_id}/journey", response_model=JourneyResponse)
async def get_journey(
    business_id: UUID,
    days: int = Query(30, ge=1, le=365),
    journey_type: str = Query("all"),
    store: Store = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """Entry → Product View → Cart → Checkout → Purchase over the last ``days`` days."""
    if journey_type not in JOURNEY_TYPES:
        raise ValidationError(f"journey_type must be one of {', '.join(JOURNEY_TYPES)}")

    business = await get_owned_business(store, user["sub"], business_id)
    sessions = await store.get_sessions(business.site_id, start=utcnow() - timedelta(days=days))

    funnel = calculate_funnel(sessions, journey_type)
    return JourneyResponse(
        journey_type=journey_type,
        days=days,
        total_sessions=funnel.total_sessions,
        overall_conversion=funnel.overall_conversion,
        stages=[FunnelStageResponse.model_validate(stage) for stage in funnel.stages],
        insight=FunnelInsightResponse.model_validate(generate_insight(funnel)),
        journey_types=[JourneyTypeResponse.model_validate(s) for s in journey_type_stats(sessions)],
    )
