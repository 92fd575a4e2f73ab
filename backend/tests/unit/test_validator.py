"""Unit tests for the fact-check pass."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from draftdesk.drafts.models import DealInfo, SpaceInfo, StructuredContext, ThreadEmail
from draftdesk.drafts.validator import DraftValidator, parse_validation_response
from draftdesk.integrations.completion_service import CompletionResult


@pytest.fixture
def context() -> StructuredContext:
    inbound = ThreadEmail(
        id=7,
        from_address="sarah@acmerobotics.com",
        to_address="agent@tandem.space",
        subject="Question",
        body="What does Mission Loft cost?",
        sent_at=datetime(2025, 1, 3, tzinfo=timezone.utc),
    )
    return StructuredContext(
        deal=DealInfo(
            seeker_name="Sarah Chen",
            seeker_email="sarah@acmerobotics.com",
            company_name="Acme Robotics",
            team_size=15,
            monthly_budget=15000,
        ),
        spaces=[SpaceInfo(
            id=1,
            name="Mission Loft",
            address="500 Valencia St",
            host_company="Brightwave",
            monthly_rate=12000,
        )],
        inbound_email=inbound,
    )


class TestParseValidationResponse:
    def test_passed(self):
        result = parse_validation_response("STATUS: PASSED\nISSUES:\n- None", tokens_used=55)

        assert result.status == "passed"
        assert result.issues == []
        assert result.confidence_adjustment == 0
        assert result.tokens_used == 55

    def test_warnings_with_issues(self):
        text = "STATUS: WARNINGS\nISSUES:\n- Mentions a rooftop deck\n- Price rounded to $12k"
        result = parse_validation_response(text)

        assert result.status == "warnings"
        assert result.issues == ["Mentions a rooftop deck", "Price rounded to $12k"]
        assert result.confidence_adjustment == -10

    def test_failed_case_insensitive(self):
        result = parse_validation_response("status: failed\nissues:\n- Wrong address")

        assert result.status == "failed"
        assert result.confidence_adjustment == -25
        assert result.issues == ["Wrong address"]

    def test_missing_status_counts_as_warnings(self):
        result = parse_validation_response("Looks mostly fine to me.")

        assert result.status == "warnings"
        assert result.confidence_adjustment == -10
        assert result.issues == []


@pytest.mark.asyncio
class TestDraftValidator:
    async def test_validate_sends_fact_check_prompt(self, context):
        completion = AsyncMock()
        completion.complete.return_value = CompletionResult(
            text="STATUS: PASSED\nISSUES:\n- None", tokens_used=90, model="gpt-4o-mini"
        )
        validator = DraftValidator(completion)

        result = await validator.validate("Mission Loft is $12000/month.", context)

        assert result.status == "passed"
        assert result.tokens_used == 90
        request = completion.complete.call_args.args[0]
        assert request.temperature == 0.1
        assert request.max_tokens == 300
        assert "Valid prices: $12000" in request.prompt
        assert "Mission Loft is $12000/month." in request.prompt

    async def test_model_error_yields_neutral_warning(self, context):
        completion = AsyncMock()
        completion.complete.side_effect = RuntimeError("rate limited")
        validator = DraftValidator(completion)

        result = await validator.validate("Any body", context)

        assert result.status == "warnings"
        assert result.issues == ["Validation check could not be completed"]
        assert result.confidence_adjustment == 0
