"""
Durable store consumed by the analytics pipeline.

The pipeline never talks to SQLAlchemy directly; it goes through the Store
interface so jobs, the ingestion path and tests can swap implementations.
SqlAlchemyStore is the production implementation over an AsyncSession.
"""

import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

import structlog
from sqlalchemy import insert, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import AuthorizationError, NotFoundError
from db.models import (
    Business,
    Pattern,
    PeerGroup,
    Recommendation,
    TrackingEvent,
    VisitorSession,
)

logger = structlog.get_logger()

FORM_EVENT_TYPES = ("form", "form_focus", "form_blur", "form_input")


class Store(ABC):
    """Persistence operations required by ingestion, detection and recommendations."""

    # ── Health ──────────────────────────────────────────────────────────

    @abstractmethod
    async def ping(self) -> None:
        """Raise if the store is unreachable."""

    # ── Businesses & peer groups ────────────────────────────────────────

    @abstractmethod
    async def get_business(self, business_id: uuid.UUID) -> Business | None: ...

    @abstractmethod
    async def get_business_by_site(self, site_id: str) -> Business | None: ...

    @abstractmethod
    async def list_businesses(
        self, industry: str | None = None, exclude_ids: Iterable[uuid.UUID] = ()
    ) -> list[Business]: ...

    @abstractmethod
    async def list_site_ids(self) -> list[str]: ...

    @abstractmethod
    async def get_peer_group(self, peer_group_id: uuid.UUID) -> PeerGroup | None: ...

    @abstractmethod
    async def create_peer_group(self, name: str, criteria: dict, business_ids: list[str]) -> PeerGroup: ...

    @abstractmethod
    async def assign_peer_group(self, business_id: uuid.UUID, peer_group_id: uuid.UUID) -> None: ...

    # ── Events & sessions ───────────────────────────────────────────────

    @abstractmethod
    async def insert_events(self, rows: list[dict]) -> int: ...

    @abstractmethod
    async def get_sessions(
        self, site_id: str, start: datetime | None = None, end: datetime | None = None, limit: int | None = None
    ) -> list[VisitorSession]: ...

    @abstractmethod
    async def get_form_events(self, site_id: str, start: datetime, end: datetime) -> list[TrackingEvent]: ...

    # ── Patterns ────────────────────────────────────────────────────────

    @abstractmethod
    async def insert_patterns(self, rows: list[dict]) -> int:
        """Bulk insert, skipping rows that collide on (site_id, dedup_key)."""

    @abstractmethod
    async def insert_pattern(self, row: dict) -> bool:
        """Insert a single pattern. False when it already existed."""

    @abstractmethod
    async def get_patterns(
        self,
        site_id: str,
        since: datetime | None = None,
        min_severity: float = 0.0,
        min_confidence: float = 0.0,
        pattern_type: str | None = None,
        limit: int | None = None,
    ) -> list[Pattern]: ...

    @abstractmethod
    async def list_sites_with_patterns(self, since: datetime) -> list[str]: ...

    # ── Recommendations ─────────────────────────────────────────────────

    @abstractmethod
    async def get_recommendation(self, recommendation_id: uuid.UUID) -> Recommendation | None: ...

    @abstractmethod
    async def list_recommendations(self, business_id: uuid.UUID, status: str | None = None) -> list[Recommendation]: ...

    @abstractmethod
    async def insert_recommendations(self, rows: list[dict]) -> int: ...

    @abstractmethod
    async def update_recommendation(self, recommendation: Recommendation, **changes) -> Recommendation: ...

    @abstractmethod
    async def list_implemented_recommendations(self, business_ids: Iterable[uuid.UUID]) -> list[Recommendation]: ...

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...


class SqlAlchemyStore(Store):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _dialect_insert(self, model):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        return None

    async def ping(self) -> None:
        await self.session.execute(text("SELECT 1"))

    async def get_business(self, business_id: uuid.UUID) -> Business | None:
        return await self.session.get(Business, business_id)

    async def get_business_by_site(self, site_id: str) -> Business | None:
        result = await self.session.execute(select(Business).where(Business.site_id == site_id))
        return result.scalar_one_or_none()

    async def list_businesses(
        self, industry: str | None = None, exclude_ids: Iterable[uuid.UUID] = ()
    ) -> list[Business]:
        query = select(Business)
        if industry is not None:
            query = query.where(Business.industry == industry)
        exclude = list(exclude_ids)
        if exclude:
            query = query.where(Business.business_id.not_in(exclude))
        result = await self.session.execute(query.order_by(Business.created_at))
        return list(result.scalars().all())

    async def list_site_ids(self) -> list[str]:
        result = await self.session.execute(select(Business.site_id).order_by(Business.created_at))
        return list(result.scalars().all())

    async def get_peer_group(self, peer_group_id: uuid.UUID) -> PeerGroup | None:
        return await self.session.get(PeerGroup, peer_group_id)

    async def create_peer_group(self, name: str, criteria: dict, business_ids: list[str]) -> PeerGroup:
        group = PeerGroup(name=name, criteria=criteria, business_ids=business_ids)
        self.session.add(group)
        await self.session.flush()
        return group

    async def assign_peer_group(self, business_id: uuid.UUID, peer_group_id: uuid.UUID) -> None:
        await self.session.execute(
            update(Business).where(Business.business_id == business_id).values(peer_group_id=peer_group_id)
        )

    async def insert_events(self, rows: list[dict]) -> int:
        if not rows:
            return 0
        await self.session.execute(insert(TrackingEvent), rows)
        return len(rows)

    async def get_sessions(
        self, site_id: str, start: datetime | None = None, end: datetime | None = None, limit: int | None = None
    ) -> list[VisitorSession]:
        query = select(VisitorSession).where(VisitorSession.site_id == site_id)
        if start is not None:
            query = query.where(VisitorSession.created_at >= start)
        if end is not None:
            query = query.where(VisitorSession.created_at <= end)
        query = query.order_by(VisitorSession.created_at.desc())
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_form_events(self, site_id: str, start: datetime, end: datetime) -> list[TrackingEvent]:
        result = await self.session.execute(
            select(TrackingEvent)
            .where(
                TrackingEvent.site_id == site_id,
                TrackingEvent.event_type.in_(FORM_EVENT_TYPES),
                TrackingEvent.timestamp >= start,
                TrackingEvent.timestamp <= end,
            )
            .order_by(TrackingEvent.session_id, TrackingEvent.timestamp)
        )
        return list(result.scalars().all())

    async def insert_patterns(self, rows: list[dict]) -> int:
        if not rows:
            return 0
        stmt = self._dialect_insert(Pattern)
        if stmt is None:
            await self.session.execute(insert(Pattern), rows)
            return len(rows)
        stmt = stmt.on_conflict_do_nothing(index_elements=["site_id", "dedup_key"]).returning(Pattern.pattern_id)
        result = await self.session.execute(stmt, rows)
        return len(result.all())

    async def insert_pattern(self, row: dict) -> bool:
        existing = await self.session.execute(
            select(Pattern.pattern_id).where(Pattern.site_id == row["site_id"], Pattern.dedup_key == row["dedup_key"])
        )
        if existing.scalar_one_or_none() is not None:
            return False
        self.session.add(Pattern(**row))
        await self.session.flush()
        return True

    async def get_patterns(
        self,
        site_id: str,
        since: datetime | None = None,
        min_severity: float = 0.0,
        min_confidence: float = 0.0,
        pattern_type: str | None = None,
        limit: int | None = None,
    ) -> list[Pattern]:
        query = select(Pattern).where(Pattern.site_id == site_id, Pattern.severity >= min_severity)
        if min_confidence:
            query = query.where(Pattern.confidence_score >= min_confidence)
        if since is not None:
            query = query.where(Pattern.detected_at >= since)
        if pattern_type:
            query = query.where(Pattern.pattern_type == pattern_type)
        query = query.order_by(Pattern.severity.desc(), Pattern.detected_at.desc())
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_sites_with_patterns(self, since: datetime) -> list[str]:
        result = await self.session.execute(
            select(Pattern.site_id).where(Pattern.detected_at >= since).group_by(Pattern.site_id)
        )
        return list(result.scalars().all())

    async def get_recommendation(self, recommendation_id: uuid.UUID) -> Recommendation | None:
        return await self.session.get(Recommendation, recommendation_id)

    async def list_recommendations(self, business_id: uuid.UUID, status: str | None = None) -> list[Recommendation]:
        query = select(Recommendation).where(Recommendation.business_id == business_id)
        if status:
            query = query.where(Recommendation.status == status)
        result = await self.session.execute(query.order_by(Recommendation.created_at.desc()))
        return list(result.scalars().all())

    async def insert_recommendations(self, rows: list[dict]) -> int:
        if not rows:
            return 0
        self.session.add_all([Recommendation(**row) for row in rows])
        await self.session.flush()
        return len(rows)

    async def update_recommendation(self, recommendation: Recommendation, **changes) -> Recommendation:
        for key, value in changes.items():
            setattr(recommendation, key, value)
        await self.session.flush()
        return recommendation

    async def list_implemented_recommendations(self, business_ids: Iterable[uuid.UUID]) -> list[Recommendation]:
        ids = list(business_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(Recommendation).where(
                Recommendation.business_id.in_(ids),
                Recommendation.status == "IMPLEMENTED",
                Recommendation.implemented_at.is_not(None),
            )
        )
        return list(result.scalars().all())

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


async def get_owned_business(store: Store, user_id: str, business_id: uuid.UUID) -> Business:
    """Load a business the caller owns. Anyone else gets the same error as for a missing record."""
    business = await store.get_business(business_id)
    if business is None:
        raise NotFoundError("Business not found")
    if business.owner_id != user_id:
        logger.warning("store.unauthorized_business", user_id=user_id, business_id=str(business_id))
        raise AuthorizationError("Business not found")
    return business
