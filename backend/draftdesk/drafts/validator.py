"""Fact-check pass: a second model call that checks a draft against source data."""
import logging
import re
from datetime import datetime, timezone

from draftdesk.drafts.context_builder import build_validation_prompt
from draftdesk.drafts.models import StructuredContext, ValidationResult
from draftdesk.integrations.completion_service import CompletionRequest, CompletionService

logger = logging.getLogger(__name__)

VALIDATION_SYSTEM_PROMPT = (
    "You are a strict fact-checker. Your job is to catch any information in the "
    "draft that is not explicitly in the provided data."
)

CONFIDENCE_ADJUSTMENTS = {"passed": 0, "warnings": -10, "failed": -25}

_STATUS_RE = re.compile(r"STATUS:\s*(PASSED|WARNINGS|FAILED)", re.IGNORECASE)
_ISSUES_RE = re.compile(r"ISSUES:", re.IGNORECASE)


def parse_validation_response(text: str, tokens_used: int = 0) -> ValidationResult:
    """Parse the ``STATUS:`` / ``ISSUES:`` reply. A missing status counts as warnings."""
    status_match = _STATUS_RE.search(text)
    status = status_match.group(1).lower() if status_match else "warnings"

    issues_section = _ISSUES_RE.split(text, maxsplit=1)
    issues = []
    if len(issues_section) == 2:
        for line in issues_section[1].splitlines():
            line = line.strip()
            if not line.startswith("-"):
                continue
            issue = line[1:].strip()
            if issue and issue.lower() != "none":
                issues.append(issue)

    return ValidationResult(
        status=status,
        issues=issues,
        confidence_adjustment=CONFIDENCE_ADJUSTMENTS[status],
        checked_at=datetime.now(timezone.utc),
        tokens_used=tokens_used,
    )


class DraftValidator:
    def __init__(self, completion: CompletionService, temperature: float = 0.1, max_tokens: int = 300):
        self.completion = completion
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def validate(self, body: str, context: StructuredContext) -> ValidationResult:
        """Fact-check a draft.

        Never raises for model errors: the draft is still usable, so an
        unfinished check comes back as ``warnings`` with no confidence change.
        """
        try:
            result = await self.completion.complete(CompletionRequest(
                system=VALIDATION_SYSTEM_PROMPT,
                prompt=build_validation_prompt(body, context),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            ))
        except Exception as e:
            logger.warning(f"Draft validation failed: {e}. Continuing without fact-check.")
            return ValidationResult(
                status="warnings",
                issues=["Validation check could not be completed"],
                confidence_adjustment=0,
                checked_at=datetime.now(timezone.utc),
            )

        validation = parse_validation_response(result.text, tokens_used=result.tokens_used)

        logger.info(
            "Draft validated",
            extra={"status": validation.status, "issue_count": len(validation.issues)}
        )
        return validation
