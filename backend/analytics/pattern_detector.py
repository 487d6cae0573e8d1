"""
Pattern Detector — finds statistically significant friction in a site's
visitor sessions.

Three families:
  1. Abandonment:     journey stages where >= 30% of visits go no further
  2. Hesitation:      form fields re-focused within a session by >= 20% of users
  3. Low engagement:  pages whose time-on-page is < 70% of the site average

Everything below the minimum sample size is dropped; a site with fewer than
100 sessions in the window yields no patterns at all.
"""

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

import pandas as pd
import structlog

from analytics.thresholds import (
    PATTERN_THRESHOLDS,
    AbandonmentMetadata,
    DateRange,
    EngagementMetadata,
    HesitationMetadata,
    PatternCandidate,
    calculate_confidence_score,
    calculate_severity,
    round_rate,
)
from db.models import TrackingEvent, VisitorSession, utcnow
from db.store import Store

logger = structlog.get_logger()


# ─── Abandonment ────────────────────────────────────────────────────────────


@dataclass
class TransitionTable:
    """Stage visit and continuation counts over a set of journeys.

    ``visits[page]`` counts every appearance of ``page`` in a journey and
    ``continued[page]`` the appearances followed by another page.
    ``depth_counts[i]`` is the number of journeys that reach position ``i``,
    which can only stay flat or shrink as ``i`` grows.
    """

    visits: Counter = field(default_factory=Counter)
    continued: Counter = field(default_factory=Counter)
    next_pages: dict[str, Counter] = field(default_factory=dict)
    depth_counts: list[int] = field(default_factory=list)

    def abandoned(self, stage: str) -> int:
        return self.visits[stage] - self.continued[stage]

    def abandonment_rate(self, stage: str) -> float:
        """Percent of visits to ``stage`` that ended the journey."""
        visits = self.visits[stage]
        if visits == 0:
            return 0.0
        return self.abandoned(stage) / visits * 100


def build_transition_table(journeys: Iterable[Sequence[str]]) -> TransitionTable:
    table = TransitionTable()
    for journey in journeys:
        for position, stage in enumerate(journey):
            table.visits[stage] += 1
            if position < len(journey) - 1:
                table.continued[stage] += 1
                table.next_pages.setdefault(stage, Counter())[journey[position + 1]] += 1

            if position == len(table.depth_counts):
                table.depth_counts.append(0)
            table.depth_counts[position] += 1
    return table


def detect_abandonment_patterns(
    site_id: str, sessions: Sequence[VisitorSession], detected_at: datetime
) -> list[PatternCandidate]:
    table = build_transition_table(s.journey_path or [] for s in sessions)
    total_sessions = len(sessions)
    patterns = []

    for stage, visits in table.visits.items():
        if visits < PATTERN_THRESHOLDS["min_sessions"]:
            continue

        rate = table.abandonment_rate(stage)
        if rate < PATTERN_THRESHOLDS["abandonment_rate"]:
            continue

        metadata = AbandonmentMetadata(
            stage=stage,
            drop_off_rate=round_rate(rate),
            affected_sessions=table.abandoned(stage),
            sample_size=visits,
        )
        patterns.append(
            PatternCandidate(
                site_id=site_id,
                metadata=metadata,
                severity=calculate_severity(rate / 100, visits, total_sessions),
                session_count=visits,
                confidence_score=calculate_confidence_score(visits),
                detected_at=detected_at,
            )
        )

    logger.debug("patterns.abandonment", site_id=site_id, found=len(patterns))
    return patterns


# ─── Hesitation ─────────────────────────────────────────────────────────────


def _event_field(event: TrackingEvent) -> str | None:
    data = event.data or {}
    return data.get("field") or data.get("name") or data.get("fieldName")


def _is_focus(event: TrackingEvent) -> bool:
    """The tracker sends ``form`` events with ``data.eventType``; older clients send ``form_focus``."""
    if event.event_type == "form_focus":
        return True
    return event.event_type == "form" and (event.data or {}).get("eventType") == "focus"


def detect_hesitation_patterns(
    site_id: str, form_events: Sequence[TrackingEvent], detected_at: datetime
) -> list[PatternCandidate]:
    records = [
        {
            "session_id": event.session_id,
            "field": name,
            "focus": 1 if _is_focus(event) else 0,
        }
        for event in form_events
        if (name := _event_field(event))
    ]
    if not records:
        return []

    # one row per (field, session) with that session's focus count
    focus = pd.DataFrame(records).groupby(["field", "session_id"])["focus"].sum().reset_index()
    focus["re_entered"] = focus["focus"] > 1

    patterns = []
    for name, group in focus.groupby("field"):
        sessions = len(group)
        if sessions < PATTERN_THRESHOLDS["min_sessions"]:
            continue

        re_entries = int(group["re_entered"].sum())
        rate = re_entries / sessions * 100
        if rate < PATTERN_THRESHOLDS["hesitation_rate"]:
            continue

        metadata = HesitationMetadata(
            field=str(name),
            re_entry_rate=round_rate(rate),
            affected_sessions=re_entries,
            sample_size=sessions,
            avg_re_entries=round_rate(float(group.loc[group["re_entered"], "focus"].mean() - 1)),
        )
        patterns.append(
            PatternCandidate(
                site_id=site_id,
                metadata=metadata,
                severity=calculate_severity(rate / 100, re_entries, sessions),
                session_count=sessions,
                confidence_score=calculate_confidence_score(sessions),
                detected_at=detected_at,
            )
        )

    logger.debug("patterns.hesitation", site_id=site_id, found=len(patterns))
    return patterns


# ─── Low Engagement ─────────────────────────────────────────────────────────


def page_time_frame(sessions: Sequence[VisitorSession]) -> pd.DataFrame:
    """One row per page visit with the session's approximate time per page."""
    rows = [
        {"page": page, "seconds": session.duration / session.page_count}
        for session in sessions
        if session.duration and session.page_count
        for page in (session.journey_path or [])
    ]
    return pd.DataFrame(rows, columns=["page", "seconds"])


def detect_low_engagement_patterns(
    site_id: str, sessions: Sequence[VisitorSession], detected_at: datetime
) -> list[PatternCandidate]:
    visits = page_time_frame(sessions)
    if visits.empty:
        return []

    site_average = float(visits["seconds"].mean())
    if site_average <= 0:
        return []
    threshold = site_average * PATTERN_THRESHOLDS["low_engagement_ratio"]

    per_page = visits.groupby("page")["seconds"].agg(["mean", "count"])
    patterns = []
    for page, row in per_page.iterrows():
        pageviews = int(row["count"])
        if pageviews < PATTERN_THRESHOLDS["min_pageviews_per_url"]:
            continue

        avg_time = float(row["mean"])
        if avg_time >= threshold:
            continue

        gap = (site_average - avg_time) / site_average * 100
        metadata = EngagementMetadata(
            page=str(page),
            time_on_page=round_rate(avg_time),
            site_average=round_rate(site_average),
            engagement_gap=round_rate(gap),
            affected_sessions=pageviews,
            sample_size=pageviews,
        )
        patterns.append(
            PatternCandidate(
                site_id=site_id,
                metadata=metadata,
                severity=calculate_severity(gap / 100, pageviews, len(sessions)),
                session_count=pageviews,
                confidence_score=calculate_confidence_score(pageviews),
                detected_at=detected_at,
            )
        )

    logger.debug("patterns.low_engagement", site_id=site_id, found=len(patterns))
    return patterns


# ─── Orchestration ──────────────────────────────────────────────────────────


async def detect_patterns(store: Store, site_id: str, window: DateRange) -> list[PatternCandidate]:
    """Run every detector over ``window`` and keep the significant results."""
    sessions = await store.get_sessions(site_id, window.start, window.end)
    if len(sessions) < PATTERN_THRESHOLDS["min_sessions"]:
        logger.info(
            "patterns.insufficient_data",
            site_id=site_id,
            sessions=len(sessions),
            required=PATTERN_THRESHOLDS["min_sessions"],
        )
        return []

    detected_at = utcnow()
    candidates = detect_abandonment_patterns(site_id, sessions, detected_at)

    try:
        form_events = await store.get_form_events(site_id, window.start, window.end)
    except Exception as exc:
        logger.error("patterns.form_events_unavailable", site_id=site_id, error=str(exc), exc_info=True)
        form_events = []
    candidates += detect_hesitation_patterns(site_id, form_events, detected_at)
    candidates += detect_low_engagement_patterns(site_id, sessions, detected_at)

    significant = [c for c in candidates if c.session_count >= PATTERN_THRESHOLDS["min_sessions"]]
    logger.info(
        "patterns.detected",
        site_id=site_id,
        sessions=len(sessions),
        significant=len(significant),
        below_threshold=len(candidates) - len(significant),
    )
    return significant


@dataclass
class StoreResult:
    created: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


async def store_patterns(store: Store, candidates: Sequence[PatternCandidate]) -> StoreResult:
    """Persist candidates, skipping ones already stored.

    Tries one bulk insert first; if that fails, falls back to inserting one
    at a time so a single bad row does not lose the rest.
    """
    result = StoreResult()
    if not candidates:
        return result

    rows = [candidate.to_row() for candidate in candidates]
    try:
        result.created = await store.insert_patterns(rows)
        await store.commit()
        result.skipped = len(rows) - result.created
        return result
    except Exception as exc:
        await store.rollback()
        logger.warning("patterns.bulk_insert_failed", rows=len(rows), error=str(exc))

    for row in rows:
        try:
            if await store.insert_pattern(row):
                result.created += 1
            else:
                result.skipped += 1
            await store.commit()
        except Exception as exc:
            await store.rollback()
            result.errors.append(f"{row['pattern_type']} {row['dedup_key']}: {exc}")
            logger.error("patterns.insert_failed", dedup_key=row["dedup_key"], error=str(exc))

    return result
