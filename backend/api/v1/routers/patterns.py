"""
Patterns Router — detected friction patterns for a business's site.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.deps import get_current_user, get_store
from db.store import Store, get_owned_business

router = APIRouter(prefix="/api/v1/businesses", tags=["patterns"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class PatternResponse(BaseModel):
    pattern_id: UUID
    site_id: str
    pattern_type: str
    description: str
    severity: float
    session_count: int
    confidence_score: float
    metadata: dict = Field(validation_alias="pattern_metadata")
    detected_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/{business_id}/patterns", response_model=list[PatternResponse])
async def list_patterns(
    business_id: UUID,
    pattern_type: Literal["ABANDONMENT", "HESITATION", "LOW_ENGAGEMENT"] | None = None,
    min_severity: float = Query(0.0, ge=0.0, le=1.0),
    min_confidence: float = Query(0.0, ge=0.0, le=1.0),
    limit: int = Query(50, ge=1, le=100),
    store: Store = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """Most severe first, newest first within equal severity."""
    business = await get_owned_business(store, user["sub"], business_id)
    return await store.get_patterns(
        business.site_id,
        min_severity=min_severity,
        min_confidence=min_confidence,
        pattern_type=pattern_type,
        limit=limit,
    )
