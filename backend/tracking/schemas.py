"""
Wire schemas for the storefront tracking script.

The tracker posts ``{"events": [...]}`` with camelCase keys; both camelCase
and snake_case are accepted.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

EventType = Literal["pageview", "click", "form", "scroll", "time", "form_focus", "form_blur", "form_input"]


class EventData(BaseModel):
    """Open payload. Known keys are typed; anything else is kept as-is."""

    model_config = ConfigDict(extra="allow")

    url: str | None = None
    referrer: str | None = None
    title: str | None = None
    element: str | None = None
    field: str | None = None
    name: str | None = None
    depth: float | None = None
    duration: float | None = None


class EventBody(BaseModel):
    type: EventType
    timestamp: int = Field(gt=0, description="Client timestamp in epoch milliseconds")
    data: EventData = Field(default_factory=EventData)


class TrackingEventIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site_id: str = Field(alias="siteId", min_length=1, max_length=64)
    session_id: str = Field(alias="sessionId", min_length=1, max_length=128)
    event: EventBody

    def to_row(self) -> dict:
        """Flatten into a ``tracking_events`` row."""
        return {
            "site_id": self.site_id,
            "session_id": self.session_id,
            "event_type": self.event.type,
            "timestamp": datetime.fromtimestamp(self.event.timestamp / 1000, tz=timezone.utc).replace(tzinfo=None),
            "data": self.event.data.model_dump(exclude_none=True),
        }


class TrackingEventBatch(BaseModel):
    events: list[TrackingEventIn] = Field(min_length=1, max_length=1000)


class TrackResponse(BaseModel):
    success: bool
    buffered: bool = False
    error: str | None = None


class HealthCheck(BaseModel):
    status: Literal["pass", "warn", "fail"]
    detail: str | None = None


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    checks: dict[str, HealthCheck]
    buffer_size: int
    timestamp: datetime
