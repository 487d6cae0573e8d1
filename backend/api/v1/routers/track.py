"""
Tracking Router — event ingestion from the storefront script, plus the
ingestion health probe.
"""

from fastapi import APIRouter, Depends, Response

from api.deps import get_event_buffer, get_ingestion_service, get_store
from core.config import get_settings
from core.errors import rate_limit_headers
from db.store import Store
from tracking.buffer import EventBuffer
from tracking.ingest import IngestionService, health_status
from tracking.schemas import HealthResponse, TrackingEventBatch, TrackResponse

router = APIRouter(prefix="/api/v1/track", tags=["tracking"])


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("", response_model=TrackResponse)
async def track_events(
    batch: TrackingEventBatch,
    response: Response,
    service: IngestionService = Depends(get_ingestion_service),
):
    """Accept a batch of tracking events for one site."""
    limit = await service.submit(batch)
    response.headers.update(rate_limit_headers(limit.limit, limit.remaining, limit.reset))
    return TrackResponse(success=True, buffered=not service.direct_write)


@router.get("/health", response_model=HealthResponse)
async def ingestion_health(
    response: Response,
    store: Store = Depends(get_store),
    buffer: EventBuffer = Depends(get_event_buffer),
):
    """Store reachability and buffer backlog."""
    health = await health_status(store, buffer, get_settings().event_buffer_warning_threshold)
    if health.status == "unhealthy":
        response.status_code = 503
    return health
