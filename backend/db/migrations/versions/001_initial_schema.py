"""
Initial schema - all 6 tables

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Peer groups
    op.create_table(
        "peer_groups",
        sa.Column("peer_group_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("criteria", sa.JSON, nullable=False, server_default="{}"),
        sa.Column("business_ids", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 2. Businesses
    op.create_table(
        "businesses",
        sa.Column("business_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("industry", sa.String(100), nullable=False),
        sa.Column("revenue_range", sa.String(50), nullable=False),
        sa.Column("product_types", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("site_id", sa.String(64), nullable=False, unique=True),
        sa.Column("peer_group_id", UUID(as_uuid=True), sa.ForeignKey("peer_groups.peer_group_id")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_businesses_owner", "businesses", ["owner_id"])
    op.create_index("ix_businesses_industry", "businesses", ["industry"])

    # 3. Tracking events
    op.create_table(
        "tracking_events",
        sa.Column("event_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("site_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(128), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("timestamp", sa.DateTime, nullable=False),
        sa.Column("data", sa.JSON, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_tracking_events_site_time", "tracking_events", ["site_id", "timestamp"])
    op.create_index("ix_tracking_events_site_type_time", "tracking_events", ["site_id", "event_type", "timestamp"])
    op.create_index("ix_tracking_events_session", "tracking_events", ["session_id"])

    # 4. Sessions (materialized from tracking events upstream)
    op.create_table(
        "sessions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("site_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(128), nullable=False),
        sa.Column("entry_page", sa.String(2048), nullable=False),
        sa.Column("exit_page", sa.String(2048)),
        sa.Column("duration", sa.Integer),
        sa.Column("page_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("bounced", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("converted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("journey_path", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("site_id", "session_id", name="uq_sessions_site_session"),
    )
    op.create_index("ix_sessions_site_created", "sessions", ["site_id", "created_at"])

    # 5. Patterns
    op.create_table(
        "patterns",
        sa.Column("pattern_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("site_id", sa.String(64), nullable=False),
        sa.Column("pattern_type", sa.String(30), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("severity", sa.Float, nullable=False),
        sa.Column("session_count", sa.Integer, nullable=False),
        sa.Column("confidence_score", sa.Float, nullable=False),
        sa.Column("metadata", sa.JSON, nullable=False, server_default="{}"),
        sa.Column("dedup_key", sa.String(512), nullable=False),
        sa.Column("detected_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("site_id", "dedup_key", name="uq_patterns_site_dedup"),
        sa.CheckConstraint(
            "pattern_type IN ('ABANDONMENT', 'HESITATION', 'LOW_ENGAGEMENT')", name="ck_pattern_type"
        ),
        sa.CheckConstraint("severity >= 0 AND severity <= 1", name="ck_pattern_severity"),
        sa.CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="ck_pattern_confidence"),
    )
    op.create_index("ix_patterns_site_detected", "patterns", ["site_id", "detected_at"])
    op.create_index("ix_patterns_site_severity", "patterns", ["site_id", "severity"])

    # 6. Recommendations
    op.create_table(
        "recommendations",
        sa.Column(
            "recommendation_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("business_id", UUID(as_uuid=True), sa.ForeignKey("businesses.business_id"), nullable=False),
        sa.Column("site_id", sa.String(64), nullable=False),
        sa.Column("pattern_id", UUID(as_uuid=True), sa.ForeignKey("patterns.pattern_id")),
        sa.Column("pattern_type", sa.String(30), nullable=False),
        sa.Column("dedup_key", sa.String(512), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("problem_statement", sa.Text, nullable=False),
        sa.Column("action_steps", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("expected_impact", sa.Text, nullable=False),
        sa.Column("impact_level", sa.String(10), nullable=False),
        sa.Column("confidence_level", sa.String(10), nullable=False),
        sa.Column("impact_score", sa.Float, nullable=False, server_default="0"),
        sa.Column("peer_success_data", sa.Text),
        sa.Column("status", sa.String(20), nullable=False, server_default="NEW"),
        sa.Column("implementation_notes", sa.String(500)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("planned_at", sa.DateTime),
        sa.Column("implemented_at", sa.DateTime),
        sa.Column("dismissed_at", sa.DateTime),
        sa.CheckConstraint(
            "status IN ('NEW', 'PLANNED', 'IMPLEMENTED', 'DISMISSED')", name="ck_recommendation_status"
        ),
        sa.CheckConstraint("impact_level IN ('LOW', 'MEDIUM', 'HIGH')", name="ck_recommendation_impact"),
        sa.CheckConstraint("confidence_level IN ('LOW', 'MEDIUM', 'HIGH')", name="ck_recommendation_confidence"),
    )
    op.create_index("ix_recommendations_business_status", "recommendations", ["business_id", "status"])
    op.create_index("ix_recommendations_business_dedup", "recommendations", ["business_id", "dedup_key"])


def downgrade() -> None:
    op.drop_table("recommendations")
    op.drop_table("patterns")
    op.drop_table("sessions")
    op.drop_table("tracking_events")
    op.drop_table("businesses")
    op.drop_table("peer_groups")
