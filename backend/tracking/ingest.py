"""
Ingestion service — site authentication, rate limiting and hand-off to the
event buffer (or straight to the store in direct-write mode).
"""

from datetime import datetime, timezone

import structlog

from core.errors import AuthenticationError, RateLimitError, TransientStoreError, ValidationError
from db.store import Store
from tracking.buffer import EventBuffer
from tracking.rate_limiter import RateLimiter, RateLimitResult
from tracking.schemas import HealthCheck, HealthResponse, TrackingEventBatch

logger = structlog.get_logger()


class IngestionService:
    def __init__(
        self,
        store: Store,
        rate_limiter: RateLimiter,
        buffer: EventBuffer | None = None,
        direct_write: bool = False,
    ):
        if buffer is None and not direct_write:
            raise ValueError("An event buffer is required unless direct_write is enabled")
        self.store = store
        self.rate_limiter = rate_limiter
        self.buffer = buffer
        self.direct_write = direct_write

    async def submit(self, batch: TrackingEventBatch) -> RateLimitResult:
        """Accept a validated batch. Every event in a batch must name the same site."""
        site_ids = {event.site_id for event in batch.events}
        if len(site_ids) > 1:
            raise ValidationError("All events in a batch must share one siteId")
        site_id = batch.events[0].site_id

        business = await self.store.get_business_by_site(site_id)
        if business is None:
            logger.warning("track.unknown_site", site_id=site_id)
            raise AuthenticationError("Invalid siteId")

        limit = self.rate_limiter.check(f"track:{site_id}")
        if not limit.allowed:
            raise RateLimitError(limit=limit.limit, remaining=limit.remaining, reset=limit.reset)

        rows = [event.to_row() for event in batch.events]

        if self.direct_write:
            try:
                await self.store.insert_events(rows)
                await self.store.commit()
            except Exception as exc:
                await self.store.rollback()
                logger.error("track.direct_write_failed", site_id=site_id, events=len(rows), exc_info=True)
                raise TransientStoreError("Failed to process events") from exc
        else:
            self.buffer.add_batch(rows)

        logger.info("track.accepted", site_id=site_id, events=len(rows), buffered=not self.direct_write)
        return limit


async def health_status(store: Store, buffer: EventBuffer, warning_threshold: int) -> HealthResponse:
    """Roll store reachability and buffer backlog into one status."""
    checks: dict[str, HealthCheck] = {}
    status = "healthy"

    try:
        await store.ping()
        checks["database"] = HealthCheck(status="pass")
    except Exception as exc:
        logger.error("health.store_unreachable", error=str(exc))
        checks["database"] = HealthCheck(status="fail", detail="Database unreachable")
        status = "unhealthy"

    backlog = buffer.size
    if backlog > warning_threshold:
        checks["buffer"] = HealthCheck(status="warn", detail=f"{backlog} events pending")
        if status == "healthy":
            status = "degraded"
    else:
        checks["buffer"] = HealthCheck(status="pass")

    return HealthResponse(
        status=status,
        checks=checks,
        buffer_size=backlog,
        timestamp=datetime.now(timezone.utc),
    )
