"""
StoreLens API Dependencies

Dependency injection for DB sessions, auth, the store and the ingestion
pipeline objects owned by the app lifespan.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.session import AsyncSessionLocal
from db.store import SqlAlchemyStore, Store
from tracking.buffer import EventBuffer
from tracking.ingest import IngestionService
from tracking.rate_limiter import RateLimiter

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

DEV_USER_ID = "dev-user"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {"sub": DEV_USER_ID, "email": "dev@storelens.local"}

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def get_store(db: AsyncSession = Depends(get_db)) -> Store:
    return SqlAlchemyStore(db)


def get_event_buffer(request: Request) -> EventBuffer:
    return request.app.state.event_buffer


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


async def get_ingestion_service(
    store: Store = Depends(get_store),
    buffer: EventBuffer = Depends(get_event_buffer),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> IngestionService:
    return IngestionService(
        store=store,
        rate_limiter=rate_limiter,
        buffer=buffer,
        direct_write=settings.ingest_direct_write,
    )
