"""
StoreLens API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import RateLimitError, StoreLensError
from db.session import AsyncSessionLocal
from tracking.buffer import EventBuffer, session_writer
from tracking.rate_limiter import build_track_rate_limiter

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("StoreLens API starting up", version=settings.app_version)
    app.state.event_buffer = EventBuffer(
        writer=session_writer(AsyncSessionLocal),
        max_size=settings.event_buffer_max_size,
        flush_interval=settings.event_buffer_flush_interval_seconds,
        retry_delay=settings.event_buffer_retry_delay_seconds,
    )
    app.state.rate_limiter = build_track_rate_limiter()
    yield
    await app.state.event_buffer.close()
    logger.info("StoreLens API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Behavioral analytics and recommendations for e-commerce stores",
    lifespan=lifespan,
)


@app.exception_handler(StoreLensError)
async def storelens_error_handler(request: Request, exc: StoreLensError):
    message = exc.public_message if settings.is_production_like else exc.message
    headers = exc.headers if isinstance(exc, RateLimitError) else None
    if exc.status_code >= 500:
        logger.error("api.request_failed", path=request.url.path, error=exc.message, exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": message},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info("api.invalid_request", path=request.url.path, errors=len(exc.errors()))
    content = {"success": False, "error": "Invalid request"}
    if not settings.is_production_like:
        content["details"] = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()
        ]
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("api.unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
    message = "Internal server error" if settings.is_production_like else str(exc)
    return JSONResponse(status_code=500, content={"success": False, "error": message})


# CORS (the tracker posts cross-origin from storefronts)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)

# Import and register routers
from api.v1.routers import jobs, journey, patterns, peers, recommendations, track

app.include_router(track.router)
app.include_router(recommendations.router)
app.include_router(patterns.router)
app.include_router(journey.router)
app.include_router(peers.router)
app.include_router(jobs.router)


@app.get("/health")
async def health_check():
    """Liveness probe for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
