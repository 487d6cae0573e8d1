"""
Peers Router — peer benchmarks and on-demand peer group recalculation.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.deps import get_current_user, get_store
from db.store import Store, get_owned_business
from peers.benchmarks import build_benchmark
from peers.matcher import calculate_peer_group

router = APIRouter(prefix="/api/v1/businesses", tags=["peers"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class MetricComparisonResponse(BaseModel):
    metric: str
    user_value: float
    peer_average: float
    percentile: str
    percentile_value: int
    performance: str
    explanation: str

    model_config = {"from_attributes": True}


class BenchmarkResponse(BaseModel):
    business_id: UUID
    sufficient_data: bool
    peer_count: int
    tier: str | None
    description: str
    comparisons: list[MetricComparisonResponse]
    message: str | None = None

    model_config = {"from_attributes": True}


class PeerGroupResponse(BaseModel):
    peer_group_id: UUID
    business_ids: list[str]
    criteria: dict
    match_count: int

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/{business_id}/peer-benchmarks", response_model=BenchmarkResponse)
async def get_peer_benchmarks(
    business_id: UUID,
    store: Store = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """Conversion, cart abandonment and bounce rate against the peer group."""
    return BenchmarkResponse.model_validate(await build_benchmark(store, user["sub"], business_id))


@router.post("/{business_id}/peer-group", response_model=PeerGroupResponse, status_code=201)
async def recalculate_peer_group(
    business_id: UUID,
    store: Store = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    await get_owned_business(store, user["sub"], business_id)
    return PeerGroupResponse.model_validate(await calculate_peer_group(store, business_id))
