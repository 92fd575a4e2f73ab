"""Unit tests for draft review analytics calculations."""

import pytest
from datetime import datetime, timedelta, timezone

from draftdesk.api.routes.analytics import (
    LOW_CONFIDENCE_THRESHOLD,
    calculate_metrics,
    parse_window,
)
from draftdesk.models.email_drafts import EmailDraft

NOW = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


def _draft(
    status: str = "pending",
    confidence: int = 80,
    regeneration_count: int = 0,
    reviewed_after: timedelta | None = None,
    sent_after: timedelta | None = None,
) -> EmailDraft:
    return EmailDraft(
        deal_id=1,
        inbound_email_id=1,
        ai_generated_body="Hi Sarah, body.",
        confidence_score=confidence,
        status=status,
        regeneration_count=regeneration_count,
        created_at=NOW,
        reviewed_at=NOW + reviewed_after if reviewed_after is not None else None,
        sent_at=NOW + sent_after if sent_after is not None else None,
    )


class TestParseWindow:
    """Test window parsing function."""

    def test_parse_window_7d(self):
        assert parse_window("7d") == timedelta(days=7)

    def test_parse_window_30d(self):
        assert parse_window("30d") == timedelta(days=30)

    def test_parse_window_invalid(self):
        with pytest.raises(ValueError, match="Invalid window"):
            parse_window("14d")


class TestCalculateMetrics:
    """Test metrics calculation logic."""

    def test_empty_drafts(self):
        result = calculate_metrics([])

        assert result["review_rate"]["total"] == 0
        assert result["review_rate"]["approved_rate"] == 0
        assert result["confidence"]["avg"] == 0
        assert result["time_to_review"]["total_reviewed"] == 0
        assert result["regenerations"]["avg_per_draft"] == 0

    def test_review_rate_all_statuses(self):
        drafts = [
            _draft("pending"),
            _draft("approved", reviewed_after=timedelta(minutes=5)),
            _draft("rejected", reviewed_after=timedelta(minutes=5)),
            _draft("sent", sent_after=timedelta(minutes=30)),
        ]

        rate = calculate_metrics(drafts)["review_rate"]

        assert rate["total"] == 4
        assert rate["pending"] == 1
        assert rate["approved"] == 1
        assert rate["rejected"] == 1
        assert rate["sent"] == 1
        assert rate["archived"] == 0
        assert rate["sent_rate"] == 25.0
        assert rate["archived_rate"] == 0

    def test_confidence_statistics(self):
        drafts = [_draft(confidence=c) for c in (55, 65, 80, 95)]

        confidence = calculate_metrics(drafts)["confidence"]

        assert confidence["avg"] == 73.75
        assert confidence["median"] == 72.5
        assert confidence["min"] == 55
        assert confidence["max"] == 95
        assert confidence["low_confidence_threshold"] == LOW_CONFIDENCE_THRESHOLD
        assert confidence["low_confidence_count"] == 2

    def test_confidence_median_odd_count(self):
        drafts = [_draft(confidence=c) for c in (95, 55, 80)]

        assert calculate_metrics(drafts)["confidence"]["median"] == 80

    def test_time_to_review_prefers_reviewed_at(self):
        drafts = [
            _draft("sent", reviewed_after=timedelta(minutes=10), sent_after=timedelta(hours=5)),
            _draft("sent", sent_after=timedelta(hours=2)),
            _draft("pending"),
        ]

        ttr = calculate_metrics(drafts, sla_threshold_seconds=3600)["time_to_review"]

        assert ttr["total_reviewed"] == 2
        assert ttr["min_seconds"] == 600
        assert ttr["max_seconds"] == 7200
        assert ttr["avg_seconds"] == 3900
        assert ttr["median_seconds"] == 3900
        assert ttr["sla_met_count"] == 1
        assert ttr["sla_met_percentage"] == 50.0

    def test_time_to_review_handles_naive_timestamps(self):
        draft = _draft("approved")
        draft.created_at = NOW.replace(tzinfo=None)
        draft.reviewed_at = (NOW + timedelta(minutes=1)).replace(tzinfo=None)

        ttr = calculate_metrics([draft])["time_to_review"]

        assert ttr["avg_seconds"] == 60

    def test_regeneration_usage(self):
        drafts = [_draft(regeneration_count=c) for c in (0, 1, 3, 4)]

        regenerations = calculate_metrics(drafts, max_free_regenerations=3)["regenerations"]

        assert regenerations["total"] == 8
        assert regenerations["drafts_regenerated"] == 3
        assert regenerations["drafts_at_free_limit"] == 2
        assert regenerations["avg_per_draft"] == 2.0
