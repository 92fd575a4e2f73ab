"""Analytics API routes for draft review metrics."""

from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from draftdesk.core.config import settings
from draftdesk.core.db import engine as db_engine
from draftdesk.drafts.lifecycle import ensure_utc
from draftdesk.drafts.store import DraftStore, SqlDraftStore
from draftdesk.models.email_drafts import DRAFT_STATUSES, EmailDraft

analytics_router = APIRouter(prefix="/analytics", tags=["analytics"])

# Default review SLA in seconds (1 hour)
DEFAULT_SLA_THRESHOLD_SECONDS = 3600

# Drafts below this score are flagged for careful review in the UI
LOW_CONFIDENCE_THRESHOLD = 70


def get_draft_store() -> DraftStore:
    return SqlDraftStore(db_engine)


def parse_window(window: str) -> timedelta:
    """Parse window parameter into timedelta."""
    if window == "7d":
        return timedelta(days=7)
    elif window == "30d":
        return timedelta(days=30)
    else:
        raise ValueError(f"Invalid window: {window}. Must be '7d' or '30d'")


def _median(values: list[float]) -> float:
    if not values:
        return 0
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    return (ordered[middle - 1] + ordered[middle]) / 2


def _review_time(draft: EmailDraft) -> float | None:
    """Seconds from generation to the first human decision, if there was one."""
    decided_at = ensure_utc(draft.reviewed_at or draft.sent_at or draft.archived_at)
    created_at = ensure_utc(draft.created_at)
    if decided_at is None or created_at is None:
        return None
    seconds = (decided_at - created_at).total_seconds()
    return seconds if seconds >= 0 else None


def calculate_metrics(
    drafts: list[EmailDraft],
    sla_threshold_seconds: int = DEFAULT_SLA_THRESHOLD_SECONDS,
    max_free_regenerations: int = 3,
) -> dict[str, Any]:
    """Calculate review metrics from a set of drafts.

    Returns:
        Dictionary containing:
        - review_rate: per-status counts and percentages
        - confidence: {avg, median, min, max, low_confidence_count}
        - time_to_review: {avg, median, min, max, sla_met_count, sla_met_percentage}
        - regenerations: {total, drafts_regenerated, drafts_at_free_limit, avg_per_draft}
    """
    total_count = len(drafts)

    # 1. Review rate by status
    status_counts = {status: 0 for status in DRAFT_STATUSES}
    for draft in drafts:
        if draft.status in status_counts:
            status_counts[draft.status] += 1

    review_rate: dict[str, Any] = {"total": total_count, **status_counts}
    for status, count in status_counts.items():
        review_rate[f"{status}_rate"] = (count / total_count * 100) if total_count > 0 else 0

    # 2. Confidence distribution
    scores = [draft.confidence_score for draft in drafts]
    confidence = {
        "avg": sum(scores) / len(scores) if scores else 0,
        "median": _median(scores),
        "min": min(scores) if scores else 0,
        "max": max(scores) if scores else 0,
        "low_confidence_threshold": LOW_CONFIDENCE_THRESHOLD,
        "low_confidence_count": sum(1 for score in scores if score < LOW_CONFIDENCE_THRESHOLD),
    }

    # 3. Time to review
    review_times = [t for t in (_review_time(draft) for draft in drafts) if t is not None]
    sla_met_count = sum(1 for t in review_times if t <= sla_threshold_seconds)
    time_to_review = {
        "avg_seconds": sum(review_times) / len(review_times) if review_times else 0,
        "median_seconds": _median(review_times),
        "min_seconds": min(review_times) if review_times else 0,
        "max_seconds": max(review_times) if review_times else 0,
        "sla_threshold_seconds": sla_threshold_seconds,
        "sla_met_count": sla_met_count,
        "sla_met_percentage": (sla_met_count / len(review_times) * 100) if review_times else 0,
        "total_reviewed": len(review_times),
    }

    # 4. Regeneration usage
    counts = [draft.regeneration_count for draft in drafts]
    regenerations = {
        "total": sum(counts),
        "drafts_regenerated": sum(1 for c in counts if c > 0),
        "drafts_at_free_limit": sum(1 for c in counts if c >= max_free_regenerations),
        "avg_per_draft": sum(counts) / total_count if total_count > 0 else 0,
    }

    return {
        "review_rate": review_rate,
        "confidence": confidence,
        "time_to_review": time_to_review,
        "regenerations": regenerations,
    }


@analytics_router.get("/summary")
async def get_analytics_summary(
    window: Literal["7d", "30d"] = Query("7d", description="Time window for analytics"),
    sla_threshold_seconds: int = Query(
        DEFAULT_SLA_THRESHOLD_SECONDS,
        description="Review SLA in seconds (default: 3600 = 1 hour)",
        ge=1,
    ),
    store: DraftStore = Depends(get_draft_store),
) -> dict[str, Any]:
    """Get draft review metrics for the last 7 or 30 days.

    The ``trend`` block holds the same metrics for the window before, so the
    dashboard can show deltas.

    Example Response:
    {
      "window": "7d",
      "period_start": "2025-10-19T00:00:00+00:00",
      "period_end": "2025-10-26T00:00:00+00:00",
      "metrics": {
        "review_rate": {"total": 20, "pending": 5, "approved": 3, "sent": 10, ...},
        "confidence": {"avg": 81.5, "median": 85, "min": 55, "max": 95, ...},
        "time_to_review": {"avg_seconds": 1420.0, "sla_met_percentage": 80.0, ...},
        "regenerations": {"total": 14, "drafts_regenerated": 8, ...}
      },
      "trend": {"review_rate_previous": {...}, ...}
    }
    """
    try:
        window_delta = parse_window(window)
        period_end = datetime.now(timezone.utc)
        period_start = period_end - window_delta

        drafts = store.list_drafts_created_between(period_start)
        current_metrics = calculate_metrics(
            drafts, sla_threshold_seconds, settings.MAX_FREE_REGENERATIONS
        )

        previous_period_start = period_start - window_delta
        previous_drafts = store.list_drafts_created_between(previous_period_start, period_start)
        previous_metrics = calculate_metrics(
            previous_drafts, sla_threshold_seconds, settings.MAX_FREE_REGENERATIONS
        )

        return {
            "window": window,
            "period_start": period_start.isoformat(),
            "period_end": period_end.isoformat(),
            "metrics": current_metrics,
            "trend": {
                f"{name}_previous": value for name, value in previous_metrics.items()
            },
        }

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error calculating analytics: {str(e)}")
