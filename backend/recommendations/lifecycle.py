"""
Recommendation lifecycle and owner-scoped queries.

Transitions:
  NEW            → PLANNED
  NEW | PLANNED  → IMPLEMENTED   (implementation date not in the future, notes ≤ 500 chars)
  NEW | PLANNED  → DISMISSED

Input is validated first, then ownership, then the state change. A caller who
does not own the business gets NotFoundError, same as for a missing record.
"""

import uuid
from datetime import datetime, timezone

import structlog

from core.errors import AuthorizationError, InvalidTransitionError, NotFoundError, ValidationError
from db.models import Recommendation, utcnow
from db.store import Store, get_owned_business
from recommendations.levels import LEVEL_WEIGHTS, RecommendationStatus, rank_for_display

logger = structlog.get_logger()

MAX_NOTES_LENGTH = 500
MAX_LIST_LIMIT = 100
SORT_FIELDS = ("priority", "created_at", "impact_level")

ALLOWED_TRANSITIONS = {
    RecommendationStatus.PLANNED: {RecommendationStatus.NEW},
    RecommendationStatus.IMPLEMENTED: {RecommendationStatus.NEW, RecommendationStatus.PLANNED},
    RecommendationStatus.DISMISSED: {RecommendationStatus.NEW, RecommendationStatus.PLANNED},
}


async def get_recommendation(store: Store, user_id: str, recommendation_id: uuid.UUID) -> Recommendation:
    recommendation = await store.get_recommendation(recommendation_id)
    if recommendation is None:
        raise NotFoundError("Recommendation not found")

    business = await store.get_business(recommendation.business_id)
    if business is None or business.owner_id != user_id:
        logger.warning(
            "recommendations.unauthorized_access",
            user_id=user_id,
            recommendation_id=str(recommendation_id),
        )
        raise AuthorizationError("Recommendation not found")
    return recommendation


async def list_recommendations(
    store: Store,
    user_id: str,
    business_id: uuid.UUID,
    status: str | None = None,
    impact_level: str | None = None,
    confidence_level: str | None = None,
    sort_by: str = "priority",
    sort_order: str = "desc",
    limit: int | None = None,
) -> list[Recommendation]:
    if sort_by not in SORT_FIELDS:
        raise ValidationError(f"sort_by must be one of {', '.join(SORT_FIELDS)}")
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be 'asc' or 'desc'")
    if limit is not None and not 1 <= limit <= MAX_LIST_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIST_LIMIT}")

    await get_owned_business(store, user_id, business_id)
    recommendations = await store.list_recommendations(business_id, status=status)

    if impact_level:
        recommendations = [r for r in recommendations if r.impact_level == impact_level]
    if confidence_level:
        recommendations = [r for r in recommendations if r.confidence_level == confidence_level]

    descending = sort_order == "desc"
    # ties stay newest first in either direction
    if sort_by == "priority":
        ordered = rank_for_display(recommendations, descending=descending)
    elif sort_by == "impact_level":
        by_newest = sorted(recommendations, key=lambda r: r.created_at, reverse=True)
        ordered = sorted(by_newest, key=lambda r: LEVEL_WEIGHTS[r.impact_level], reverse=descending)
    else:
        ordered = sorted(recommendations, key=lambda r: r.created_at, reverse=descending)

    return ordered[:limit] if limit else ordered


async def _transition(
    store: Store,
    user_id: str,
    recommendation_id: uuid.UUID,
    target: RecommendationStatus,
    **changes,
) -> Recommendation:
    recommendation = await get_recommendation(store, user_id, recommendation_id)

    current = RecommendationStatus(recommendation.status)
    if current not in ALLOWED_TRANSITIONS[target]:
        raise InvalidTransitionError(f"Cannot move recommendation from {current.value} to {target.value}")

    updated = await store.update_recommendation(recommendation, status=target.value, **changes)
    await store.commit()
    logger.info(
        "recommendations.status_changed",
        recommendation_id=str(recommendation_id),
        from_status=current.value,
        to_status=target.value,
    )
    return updated


async def plan_recommendation(store: Store, user_id: str, recommendation_id: uuid.UUID) -> Recommendation:
    return await _transition(
        store, user_id, recommendation_id, RecommendationStatus.PLANNED, planned_at=utcnow()
    )


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


async def implement_recommendation(
    store: Store,
    user_id: str,
    recommendation_id: uuid.UUID,
    implemented_at: datetime | None = None,
    notes: str | None = None,
) -> Recommendation:
    now = utcnow()
    when = _as_naive_utc(implemented_at) if implemented_at else now
    if when > now:
        raise ValidationError("Implementation date cannot be in the future")
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"Implementation notes must be at most {MAX_NOTES_LENGTH} characters")

    return await _transition(
        store,
        user_id,
        recommendation_id,
        RecommendationStatus.IMPLEMENTED,
        implemented_at=when,
        implementation_notes=notes,
    )


async def dismiss_recommendation(store: Store, user_id: str, recommendation_id: uuid.UUID) -> Recommendation:
    return await _transition(
        store, user_id, recommendation_id, RecommendationStatus.DISMISSED, dismissed_at=utcnow()
    )
