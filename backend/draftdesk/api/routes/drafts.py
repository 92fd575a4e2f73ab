"""
Draft API Routes

Endpoints for the broker review workflow:
- Generate a draft for an inbound email (stored, or preview only)
- Edit, regenerate, switch versions, undo/redo
- Approve, reject, unapprove, archive
- Send (explicit confirmation required)

Reviewer identity comes from the optional ``x-reviewer`` header and falls back
to the configured default reviewer. Every request logs a correlation id taken
from ``x-correlation-id`` or generated.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from draftdesk.core.config import settings
from draftdesk.core.db import engine as db_engine
from draftdesk.drafts.errors import DraftServiceError, QuotaExceededError
from draftdesk.drafts.generator import DraftGenerator
from draftdesk.drafts.lifecycle import DraftLifecycleEngine
from draftdesk.drafts.store import DraftDetail, DraftListRow, SqlDraftStore
from draftdesk.drafts.validator import DraftValidator
from draftdesk.integrations.completion_service import OpenAICompletionService
from draftdesk.integrations.email_sender import ResendEmailSender
from draftdesk.models.email_drafts import EmailDraft
from draftdesk.models.emails import Email

logger = logging.getLogger(__name__)

drafts_router = APIRouter(prefix="/drafts", tags=["drafts"])


@lru_cache
def get_draft_engine() -> DraftLifecycleEngine:
    """Build the lifecycle engine and its collaborators from settings (once per process)."""
    completion = OpenAICompletionService(api_key=settings.OPENAI_API_KEY, model=settings.OPENAI_MODEL)
    validator = None
    if settings.DRAFT_VALIDATION_ENABLED:
        validator = DraftValidator(
            completion,
            temperature=settings.VALIDATION_TEMPERATURE,
            max_tokens=settings.VALIDATION_MAX_TOKENS,
        )

    generator = DraftGenerator(
        completion,
        validator=validator,
        agent_name=settings.AGENT_NAME,
        agent_company=settings.AGENT_COMPANY,
        temperature=settings.GENERATION_TEMPERATURE,
        max_tokens=settings.GENERATION_MAX_TOKENS,
    )
    sender = ResendEmailSender(
        api_key=settings.RESEND_API_KEY,
        api_url=settings.RESEND_API_URL,
        max_attempts=settings.SEND_MAX_ATTEMPTS,
        backoff_base_seconds=settings.SEND_BACKOFF_BASE_SECONDS,
    )

    return DraftLifecycleEngine(
        SqlDraftStore(db_engine),
        generator,
        sender,
        max_free_regenerations=settings.MAX_FREE_REGENERATIONS,
        cooldown_hours=settings.REGENERATION_COOLDOWN_HOURS,
        from_address=settings.EMAIL_FROM,
        agent_email=settings.AGENT_EMAIL,
        test_recipient=settings.EMAIL_TEST_RECIPIENT,
        default_reviewer=settings.DEFAULT_REVIEWER,
    )


def get_correlation_id(request: Request) -> str:
    """Extract or generate correlation ID for request tracking."""
    correlation_id = request.headers.get("x-correlation-id")
    if not correlation_id:
        correlation_id = str(uuid.uuid4())
    return correlation_id


def to_http_exception(error: DraftServiceError) -> HTTPException:
    headers = None
    if isinstance(error, QuotaExceededError):
        headers = {"Retry-After": str(error.hours_remaining * 3600)}
    return HTTPException(status_code=error.status_code, detail=error.message, headers=headers)


@contextmanager
def handle_draft_errors(action: str, draft_id: int | None, correlation_id: str):
    try:
        yield
    except DraftServiceError as e:
        logger.warning(
            f"Could not {action}: {e.message}",
            extra={
                "correlation_id": correlation_id,
                "draft_id": draft_id,
                "error_code": e.error_code,
            }
        )
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(
            f"Unexpected error while trying to {action}",
            extra={"correlation_id": correlation_id, "draft_id": draft_id}
        )
        raise HTTPException(status_code=500, detail=f"Unexpected error while trying to {action}") from e


# Request models

class CreateDraftRequest(BaseModel):
    deal_id: int = Field(..., description="Deal the inbound email belongs to")
    inbound_email_id: int = Field(..., description="Email to reply to")


class UpdateDraftRequest(BaseModel):
    edited_body: str = Field(..., description="Full replacement body (10-10,000 characters)")


class RegenerateDraftRequest(BaseModel):
    instruction: str = Field(..., description="What to change (10-500 characters)")


class SwitchVersionRequest(BaseModel):
    version: int = Field(..., ge=0, description="Version number to make current")


class ApproveDraftRequest(BaseModel):
    final_body: str | None = Field(None, description="Optional body to approve instead of the current one")


class RejectDraftRequest(BaseModel):
    reason: str | None = None


class ArchiveDraftRequest(BaseModel):
    reason: str | None = None


class SendDraftRequest(BaseModel):
    confirmed: bool = Field(False, description="Must be true; sending cannot be undone")


# Response models

class DraftResponse(BaseModel):
    id: int
    deal_id: int
    inbound_email_id: int
    ai_generated_body: str
    edited_body: str | None = None
    final_body: str | None = None
    confidence_score: int
    status: str
    reasoning: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    validation: dict[str, Any] | None = None
    regeneration_count: int
    last_regeneration_at: datetime | None = None
    versions_remaining: int
    current_version: int
    draft_versions: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    rejection_reason: str | None = None
    sent_at: datetime | None = None
    sent_email_id: int | None = None
    archived_at: datetime | None = None
    archived_by: str | None = None
    archive_reason: str | None = None


class DraftListItem(BaseModel):
    id: int
    deal_id: int
    inbound_email_id: int
    status: str
    confidence_score: int
    current_version: int
    regeneration_count: int
    created_at: datetime
    company_name: str
    seeker_name: str
    inbound_from: str
    inbound_subject: str
    inbound_sent_at: datetime


class DraftListResponse(BaseModel):
    drafts: list[DraftListItem]
    count: int
    limit: int
    offset: int


class DealSummary(BaseModel):
    id: int
    seeker_name: str
    seeker_email: str
    company_name: str
    team_size: int
    monthly_budget: int
    stage: str


class EmailResponse(BaseModel):
    id: int
    deal_id: int
    from_address: str
    to_address: str
    subject: str
    body: str
    sent_at: datetime
    ai_generated: bool
    ai_metadata: dict[str, Any] | None = None


class DraftDetailResponse(BaseModel):
    draft: DraftResponse
    deal: DealSummary
    inbound_email: EmailResponse


class RegenerateDraftResponse(BaseModel):
    draft: DraftResponse
    new_version: dict[str, Any]
    versions_remaining: int


class PreviewDraftResponse(BaseModel):
    body: str
    confidence: int
    reasoning: dict[str, Any]
    metadata: dict[str, Any]
    validation: dict[str, Any] | None = None


class SendDraftResponse(BaseModel):
    draft: DraftResponse
    email: EmailResponse
    message_id: str | None = None


def draft_to_response(draft: EmailDraft, max_free_regenerations: int) -> DraftResponse:
    data = draft.model_dump(exclude={"metadata_"})
    return DraftResponse(
        **data,
        metadata=draft.metadata_,
        versions_remaining=max(0, max_free_regenerations - draft.regeneration_count),
    )


def email_to_response(email: Email) -> EmailResponse:
    return EmailResponse(**email.model_dump())


def detail_to_response(detail: DraftDetail, max_free_regenerations: int) -> DraftDetailResponse:
    return DraftDetailResponse(
        draft=draft_to_response(detail.draft, max_free_regenerations),
        deal=DealSummary(**detail.deal.model_dump()),
        inbound_email=email_to_response(detail.inbound_email),
    )


def row_to_item(row: DraftListRow) -> DraftListItem:
    draft = row.draft
    return DraftListItem(
        id=draft.id,
        deal_id=draft.deal_id,
        inbound_email_id=draft.inbound_email_id,
        status=draft.status,
        confidence_score=draft.confidence_score,
        current_version=draft.current_version,
        regeneration_count=draft.regeneration_count,
        created_at=draft.created_at,
        company_name=row.company_name,
        seeker_name=row.seeker_name,
        inbound_from=row.inbound_from,
        inbound_subject=row.inbound_subject,
        inbound_sent_at=row.inbound_sent_at,
    )


# Routes

@drafts_router.post("", response_model=DraftResponse, status_code=201)
async def create_draft(
    request_body: CreateDraftRequest,
    request: Request,
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    """
    Generate a reply draft for an inbound email.

    Loads the deal, its shortlisted spaces and the thread, runs the generation
    workflow (draft, analyze, optional fact-check) and stores the result as
    version 0 in ``pending`` status.

    Errors:
        404: Deal or inbound email not found (or email belongs to another deal)
        502: Language model failed; nothing is stored
    """
    correlation_id = get_correlation_id(request)
    logger.info(
        "Draft generation requested",
        extra={
            "correlation_id": correlation_id,
            "deal_id": request_body.deal_id,
            "inbound_email_id": request_body.inbound_email_id,
        }
    )

    with handle_draft_errors("generate draft", None, correlation_id):
        draft = await engine.create(request_body.deal_id, request_body.inbound_email_id)

    return draft_to_response(draft, engine.max_free_regenerations)


@drafts_router.post("/preview", response_model=PreviewDraftResponse)
async def preview_draft(
    request_body: CreateDraftRequest,
    request: Request,
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    """
    Generate a reply draft without saving it.

    Runs the same workflow as draft creation. Nothing is written, so the
    result has no id, no versions and no review status.

    Errors:
        404: Deal or inbound email not found (or email belongs to another deal)
        502: Language model failed
    """
    correlation_id = get_correlation_id(request)

    with handle_draft_errors("preview draft", None, correlation_id):
        generated = await engine.preview(request_body.deal_id, request_body.inbound_email_id)

    return PreviewDraftResponse(**generated.model_dump(mode="json"))


@drafts_router.get("", response_model=DraftListResponse)
async def list_drafts(
    request: Request,
    deal_id: int | None = Query(None, description="Only drafts for this deal"),
    status: str | None = Query(None, description="pending, approved, rejected, sent or archived"),
    limit: int = Query(50, description="Page size (1-100)"),
    offset: int = Query(0, description="Rows to skip"),
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    """List drafts, lowest confidence first, then newest first."""
    correlation_id = get_correlation_id(request)

    with handle_draft_errors("list drafts", None, correlation_id):
        rows = engine.list(deal_id=deal_id, status=status, limit=limit, offset=offset)

    items = [row_to_item(row) for row in rows]
    return DraftListResponse(drafts=items, count=len(items), limit=limit, offset=offset)


@drafts_router.get("/{draft_id}", response_model=DraftDetailResponse)
async def get_draft(
    draft_id: int,
    request: Request,
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    correlation_id = get_correlation_id(request)

    with handle_draft_errors("load draft", draft_id, correlation_id):
        detail = engine.get_by_id(draft_id)

    return detail_to_response(detail, engine.max_free_regenerations)


@drafts_router.patch("/{draft_id}", response_model=DraftResponse)
async def update_draft(
    draft_id: int,
    request_body: UpdateDraftRequest,
    request: Request,
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    """Save a manual edit. Edits are always allowed, even when regenerations are used up."""
    correlation_id = get_correlation_id(request)

    with handle_draft_errors("edit draft", draft_id, correlation_id):
        draft = engine.update(draft_id, request_body.edited_body)

    return draft_to_response(draft, engine.max_free_regenerations)


@drafts_router.post("/{draft_id}/regenerate", response_model=RegenerateDraftResponse)
async def regenerate_draft(
    draft_id: int,
    request_body: RegenerateDraftRequest,
    request: Request,
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    """
    Refine the draft with an instruction and store the result as a new version.

    Errors:
        429: Free regenerations used up and cooldown not over (``Retry-After`` set)
        409: Draft already sent, rejected or archived
        502: Language model failed; the draft is unchanged
    """
    correlation_id = get_correlation_id(request)
    logger.info(
        "Draft regeneration requested",
        extra={
            "correlation_id": correlation_id,
            "draft_id": draft_id,
            "instruction_length": len(request_body.instruction),
        }
    )

    with handle_draft_errors("regenerate draft", draft_id, correlation_id):
        outcome = await engine.regenerate(draft_id, request_body.instruction)

    return RegenerateDraftResponse(
        draft=draft_to_response(outcome.draft, engine.max_free_regenerations),
        new_version=outcome.new_version.model_dump(mode="json"),
        versions_remaining=outcome.versions_remaining,
    )


@drafts_router.post("/{draft_id}/switch-version", response_model=DraftResponse)
async def switch_draft_version(
    draft_id: int,
    request_body: SwitchVersionRequest,
    request: Request,
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    correlation_id = get_correlation_id(request)

    with handle_draft_errors("switch version", draft_id, correlation_id):
        draft = engine.switch_version(draft_id, request_body.version)

    return draft_to_response(draft, engine.max_free_regenerations)


@drafts_router.post("/{draft_id}/undo", response_model=DraftResponse)
async def undo_draft_version(
    draft_id: int,
    request: Request,
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    correlation_id = get_correlation_id(request)

    with handle_draft_errors("undo", draft_id, correlation_id):
        draft = engine.undo(draft_id)

    return draft_to_response(draft, engine.max_free_regenerations)


@drafts_router.post("/{draft_id}/redo", response_model=DraftResponse)
async def redo_draft_version(
    draft_id: int,
    request: Request,
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    correlation_id = get_correlation_id(request)

    with handle_draft_errors("redo", draft_id, correlation_id):
        draft = engine.redo(draft_id)

    return draft_to_response(draft, engine.max_free_regenerations)


@drafts_router.post("/{draft_id}/approve", response_model=DraftResponse)
async def approve_draft(
    draft_id: int,
    request: Request,
    request_body: ApproveDraftRequest | None = None,
    x_reviewer: str | None = Header(None),
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    correlation_id = get_correlation_id(request)
    final_body = request_body.final_body if request_body else None

    with handle_draft_errors("approve draft", draft_id, correlation_id):
        draft = engine.approve(draft_id, final_body=final_body, reviewer=x_reviewer)

    logger.info("Draft approved via API", extra={"correlation_id": correlation_id, "draft_id": draft_id})
    return draft_to_response(draft, engine.max_free_regenerations)


@drafts_router.post("/{draft_id}/reject", response_model=DraftResponse)
async def reject_draft(
    draft_id: int,
    request: Request,
    request_body: RejectDraftRequest | None = None,
    x_reviewer: str | None = Header(None),
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    correlation_id = get_correlation_id(request)
    reason = request_body.reason if request_body else None

    with handle_draft_errors("reject draft", draft_id, correlation_id):
        draft = engine.reject(draft_id, reason=reason, reviewer=x_reviewer)

    return draft_to_response(draft, engine.max_free_regenerations)


@drafts_router.post("/{draft_id}/unapprove", response_model=DraftResponse)
async def unapprove_draft(
    draft_id: int,
    request: Request,
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    correlation_id = get_correlation_id(request)

    with handle_draft_errors("unapprove draft", draft_id, correlation_id):
        draft = engine.unapprove(draft_id)

    return draft_to_response(draft, engine.max_free_regenerations)


@drafts_router.post("/{draft_id}/archive", response_model=DraftResponse)
async def archive_draft(
    draft_id: int,
    request: Request,
    request_body: ArchiveDraftRequest | None = None,
    x_reviewer: str | None = Header(None),
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    correlation_id = get_correlation_id(request)
    reason = request_body.reason if request_body else None

    with handle_draft_errors("archive draft", draft_id, correlation_id):
        draft = engine.archive(draft_id, reason=reason, archived_by=x_reviewer)

    return draft_to_response(draft, engine.max_free_regenerations)


@drafts_router.post("/{draft_id}/send", response_model=SendDraftResponse)
async def send_draft(
    draft_id: int,
    request_body: SendDraftRequest,
    request: Request,
    engine: DraftLifecycleEngine = Depends(get_draft_engine),
):
    """
    Send the current body to the seeker and record it in the deal thread.

    Errors:
        422: ``confirmed`` is not true
        409: Draft is not pending or approved
        502: Email provider failed after retries; the draft stays unsent
    """
    correlation_id = get_correlation_id(request)
    logger.info("Draft send requested", extra={"correlation_id": correlation_id, "draft_id": draft_id})

    with handle_draft_errors("send draft", draft_id, correlation_id):
        outcome = await engine.send(draft_id, request_body.confirmed)

    return SendDraftResponse(
        draft=draft_to_response(outcome.draft, engine.max_free_regenerations),
        email=email_to_response(outcome.email),
        message_id=outcome.message_id,
    )
