"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "storelens",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "workers.pattern_detection",
        "workers.recommendation_generation",
        "workers.peer_groups",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.pattern_detection.*": {"queue": "analytics"},
        "workers.recommendation_generation.*": {"queue": "analytics"},
        "workers.peer_groups.*": {"queue": "analytics"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # Recommendation generation is chained from detection, not scheduled.
    beat_schedule={
        "detect-patterns-daily": {
            "task": "workers.pattern_detection.detect_patterns_all_sites",
            "schedule": crontab(hour=2, minute=0),
            "options": {"queue": "analytics"},
        },
    },
)
