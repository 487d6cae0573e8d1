"""
Recommendations Router — owner-scoped listing and lifecycle transitions.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.deps import get_current_user, get_store
from db.store import Store
from recommendations import lifecycle
from recommendations.levels import display_priority

router = APIRouter(prefix="/api/v1", tags=["recommendations"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class RecommendationResponse(BaseModel):
    recommendation_id: UUID
    business_id: UUID
    site_id: str
    pattern_id: UUID | None
    pattern_type: str
    title: str
    problem_statement: str
    action_steps: list[str]
    expected_impact: str
    impact_level: str
    confidence_level: str
    impact_score: float
    priority: int = 0
    peer_success_data: str | None = None
    status: str
    implementation_notes: str | None = None
    created_at: datetime
    planned_at: datetime | None = None
    implemented_at: datetime | None = None
    dismissed_at: datetime | None = None

    model_config = {"from_attributes": True}


class ImplementRequest(BaseModel):
    implemented_at: datetime | None = None
    # Length is checked in the lifecycle so the error text stays consistent.
    notes: str | None = None


def _serialize(recommendation) -> RecommendationResponse:
    payload = RecommendationResponse.model_validate(recommendation)
    payload.priority = display_priority(recommendation.impact_level, recommendation.confidence_level)
    return payload


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/businesses/{business_id}/recommendations", response_model=list[RecommendationResponse])
async def list_recommendations(
    business_id: UUID,
    status: Literal["NEW", "PLANNED", "IMPLEMENTED", "DISMISSED"] | None = None,
    impact_level: Literal["LOW", "MEDIUM", "HIGH"] | None = None,
    confidence_level: Literal["LOW", "MEDIUM", "HIGH"] | None = None,
    sort_by: str = Query("priority"),
    sort_order: str = Query("desc"),
    limit: int | None = Query(None),
    store: Store = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """List a business's recommendations, highest display priority first by default."""
    recommendations = await lifecycle.list_recommendations(
        store,
        user["sub"],
        business_id,
        status=status,
        impact_level=impact_level,
        confidence_level=confidence_level,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
    )
    return [_serialize(r) for r in recommendations]


@router.get("/recommendations/{recommendation_id}", response_model=RecommendationResponse)
async def get_recommendation(
    recommendation_id: UUID,
    store: Store = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    return _serialize(await lifecycle.get_recommendation(store, user["sub"], recommendation_id))


@router.patch("/recommendations/{recommendation_id}/plan", response_model=RecommendationResponse)
async def plan_recommendation(
    recommendation_id: UUID,
    store: Store = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """NEW → PLANNED."""
    return _serialize(await lifecycle.plan_recommendation(store, user["sub"], recommendation_id))


@router.patch("/recommendations/{recommendation_id}/implement", response_model=RecommendationResponse)
async def implement_recommendation(
    recommendation_id: UUID,
    body: ImplementRequest | None = None,
    store: Store = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """NEW or PLANNED → IMPLEMENTED, with optional date and notes."""
    body = body or ImplementRequest()
    recommendation = await lifecycle.implement_recommendation(
        store,
        user["sub"],
        recommendation_id,
        implemented_at=body.implemented_at,
        notes=body.notes,
    )
    return _serialize(recommendation)


@router.patch("/recommendations/{recommendation_id}/dismiss", response_model=RecommendationResponse)
async def dismiss_recommendation(
    recommendation_id: UUID,
    store: Store = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """NEW or PLANNED → DISMISSED."""
    return _serialize(await lifecycle.dismiss_recommendation(store, user["sub"], recommendation_id))
