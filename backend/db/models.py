"""
StoreLens Database Models

Tables:
  1. peer_groups      - Cohorts of comparable businesses
  2. businesses       - Store owners' business profiles (one tracked site each)
  3. tracking_events  - Raw storefront telemetry (append-only)
  4. sessions         - Materialized visitor sessions (read-only to the pipeline)
  5. patterns         - Detected behavioral patterns
  6. recommendations  - Ranked action items with lifecycle status
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


PATTERN_TYPES = ("ABANDONMENT", "HESITATION", "LOW_ENGAGEMENT")
RECOMMENDATION_STATUSES = ("NEW", "PLANNED", "IMPLEMENTED", "DISMISSED")
LEVELS = ("LOW", "MEDIUM", "HIGH")


def _in_clause(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ─── 1. Peer Groups ─────────────────────────────────────────────────────────


class PeerGroup(Base):
    __tablename__ = "peer_groups"

    peer_group_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    # industry, revenue_range, product_types, platform, tier, similarity_threshold
    criteria = Column(JSON, nullable=False, default=dict)
    business_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    businesses = relationship("Business", back_populates="peer_group")


# ─── 2. Businesses ──────────────────────────────────────────────────────────


class Business(Base):
    __tablename__ = "businesses"

    business_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    industry = Column(String(100), nullable=False)
    revenue_range = Column(String(50), nullable=False)
    product_types = Column(JSON, nullable=False, default=list)
    platform = Column(String(50), nullable=False)
    site_id = Column(String(64), nullable=False, unique=True)
    peer_group_id = Column(GUID(), ForeignKey("peer_groups.peer_group_id"))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_businesses_owner", "owner_id"),
        Index("ix_businesses_industry", "industry"),
    )

    peer_group = relationship("PeerGroup", back_populates="businesses")
    recommendations = relationship("Recommendation", back_populates="business", cascade="all, delete-orphan")


# ─── 3. Tracking Events ─────────────────────────────────────────────────────


class TrackingEvent(Base):
    __tablename__ = "tracking_events"

    event_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    site_id = Column(String(64), nullable=False)
    session_id = Column(String(128), nullable=False)
    event_type = Column(String(30), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_tracking_events_site_time", "site_id", "timestamp"),
        Index("ix_tracking_events_site_type_time", "site_id", "event_type", "timestamp"),
        Index("ix_tracking_events_session", "session_id"),
    )


# ─── 4. Sessions ────────────────────────────────────────────────────────────


class VisitorSession(Base):
    __tablename__ = "sessions"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    site_id = Column(String(64), nullable=False)
    session_id = Column(String(128), nullable=False)
    entry_page = Column(String(2048), nullable=False)
    exit_page = Column(String(2048))
    duration = Column(Integer)  # seconds, null while the session is open
    page_count = Column(Integer, nullable=False, default=0)
    bounced = Column(Boolean, nullable=False, default=False)
    converted = Column(Boolean, nullable=False, default=False)
    journey_path = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("site_id", "session_id", name="uq_sessions_site_session"),
        Index("ix_sessions_site_created", "site_id", "created_at"),
    )


# ─── 5. Patterns ────────────────────────────────────────────────────────────


class Pattern(Base):
    __tablename__ = "patterns"

    pattern_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    site_id = Column(String(64), nullable=False)
    pattern_type = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    severity = Column(Float, nullable=False)
    session_count = Column(Integer, nullable=False)
    confidence_score = Column(Float, nullable=False)
    pattern_metadata = Column("metadata", JSON, nullable=False, default=dict)
    dedup_key = Column(String(512), nullable=False)
    detected_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("site_id", "dedup_key", name="uq_patterns_site_dedup"),
        Index("ix_patterns_site_detected", "site_id", "detected_at"),
        Index("ix_patterns_site_severity", "site_id", "severity"),
        CheckConstraint(_in_clause("pattern_type", PATTERN_TYPES), name="ck_pattern_type"),
        CheckConstraint("severity >= 0 AND severity <= 1", name="ck_pattern_severity"),
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="ck_pattern_confidence"),
    )


# ─── 6. Recommendations ─────────────────────────────────────────────────────


class Recommendation(Base):
    __tablename__ = "recommendations"

    recommendation_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    business_id = Column(GUID(), ForeignKey("businesses.business_id"), nullable=False)
    site_id = Column(String(64), nullable=False)
    pattern_id = Column(GUID(), ForeignKey("patterns.pattern_id"))
    pattern_type = Column(String(30), nullable=False)
    dedup_key = Column(String(512), nullable=False)
    title = Column(String(255), nullable=False)
    problem_statement = Column(Text, nullable=False)
    action_steps = Column(JSON, nullable=False, default=list)
    expected_impact = Column(Text, nullable=False)
    impact_level = Column(String(10), nullable=False)
    confidence_level = Column(String(10), nullable=False)
    impact_score = Column(Float, nullable=False, default=0.0)
    peer_success_data = Column(Text)
    status = Column(String(20), nullable=False, default="NEW")
    implementation_notes = Column(String(500))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    planned_at = Column(DateTime)
    implemented_at = Column(DateTime)
    dismissed_at = Column(DateTime)

    __table_args__ = (
        Index("ix_recommendations_business_status", "business_id", "status"),
        Index("ix_recommendations_business_dedup", "business_id", "dedup_key"),
        CheckConstraint(_in_clause("status", RECOMMENDATION_STATUSES), name="ck_recommendation_status"),
        CheckConstraint(_in_clause("impact_level", LEVELS), name="ck_recommendation_impact"),
        CheckConstraint(_in_clause("confidence_level", LEVELS), name="ck_recommendation_confidence"),
    )

    business = relationship("Business", back_populates="recommendations")
