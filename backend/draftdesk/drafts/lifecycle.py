"""
Draft lifecycle engine.

Owns one draft from first generation to send:
- creation (seeds version 0)
- human edits (not versioned)
- regeneration: 3 free refinements, then one per 24 h cooldown
- version switching with linear undo/redo over the history
- review transitions: approve, reject, unapprove, archive, send

State machine (draft.status):
    pending  -> approved | rejected | archived | sent
    approved -> pending (unapprove) | archived | sent
    rejected -> archived
    archived, sent: terminal

Every write goes through a conditional store update, so a request that lost
a race against another one fails instead of overwriting it. Sends are also
serialized per draft, since delivery happens before the write.
"""
import asyncio
import logging
import math
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from draftdesk.core.tracing import mask_email, redact_pii
from draftdesk.drafts.context_builder import build_structured_context
from draftdesk.drafts.errors import (
    InvalidStateError,
    NotFoundError,
    QuotaExceededError,
    SendFailedError,
    ValidationInputError,
)
from draftdesk.drafts.generator import DraftGenerator
from draftdesk.drafts.models import DraftVersion, GeneratedDraft, StructuredContext
from draftdesk.drafts.store import DraftDetail, DraftListRow, DraftStore
from draftdesk.integrations.email_sender import EmailSender, OutboundMessage
from draftdesk.models.email_drafts import DRAFT_STATUSES, DraftStatus, EmailDraft
from draftdesk.models.emails import Email

logger = logging.getLogger(__name__)

MIN_BODY_CHARS = 10
MAX_BODY_CHARS = 10_000
MIN_INSTRUCTION_CHARS = 10
MAX_INSTRUCTION_CHARS = 500
MAX_LIST_LIMIT = 100

DEFAULT_ARCHIVE_REASON = "No reason provided"

EDITABLE_STATUSES = ("pending", "approved")
SENDABLE_STATUSES = ("pending", "approved")
ARCHIVABLE_STATUSES = ("pending", "approved", "rejected")
VERSIONABLE_STATUSES = ("pending", "approved", "rejected", "archived")


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive timestamps (SQLite drops tzinfo) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_length(value: str | None, field: str, minimum: int, maximum: int) -> str:
    if value is None or not (minimum <= len(value) <= maximum):
        raise ValidationInputError(
            f"{field} must be between {minimum} and {maximum} characters"
        )
    return value


@dataclass
class RegenerationOutcome:
    draft: EmailDraft
    new_version: DraftVersion
    versions_remaining: int


@dataclass
class SendOutcome:
    draft: EmailDraft
    email: Email
    message_id: str | None


class DraftLifecycleEngine:
    def __init__(
        self,
        store: DraftStore,
        generator: DraftGenerator,
        sender: EmailSender,
        *,
        max_free_regenerations: int = 3,
        cooldown_hours: int = 24,
        from_address: str = "Alex from Tandem <onboarding@resend.dev>",
        agent_email: str = "agent@tandem.space",
        test_recipient: str | None = None,
        default_reviewer: str = "Jenny",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.generator = generator
        self.sender = sender
        self.max_free_regenerations = max_free_regenerations
        self.cooldown_hours = cooldown_hours
        self.from_address = from_address
        self.agent_email = agent_email
        self.test_recipient = test_recipient
        self.default_reviewer = default_reviewer
        self.clock = clock
        self._send_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    # Helpers

    def _send_lock(self, draft_id: int) -> asyncio.Lock:
        lock = self._send_locks.get(draft_id)
        if lock is None:
            lock = asyncio.Lock()
            self._send_locks[draft_id] = lock
        return lock

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    def _load(self, draft_id: int) -> EmailDraft:
        draft = self.store.get_draft(draft_id)
        if draft is None:
            raise NotFoundError(f"Draft {draft_id} not found")
        return draft

    def _build_context(self, deal_id: int, inbound_email_id: int) -> StructuredContext:
        deal = self.store.get_deal(deal_id)
        if deal is None:
            raise NotFoundError(f"Deal {deal_id} not found")

        inbound_email = self.store.get_email(inbound_email_id)
        if inbound_email is None or inbound_email.deal_id != deal_id:
            raise NotFoundError(f"Inbound email {inbound_email_id} not found for deal {deal_id}")

        return build_structured_context(
            deal=deal,
            spaces=self.store.get_spaces_for_deal(deal_id),
            email_thread=self.store.get_email_thread(deal_id),
            inbound_email=inbound_email,
        )

    @staticmethod
    def _snapshot(version: int, generated: GeneratedDraft, prompt: str | None, now: datetime) -> DraftVersion:
        return DraftVersion(
            version=version,
            body=generated.body,
            prompt=prompt,
            confidence=generated.confidence,
            reasoning=generated.reasoning,
            metadata=generated.metadata,
            validation=generated.validation,
            created_at=now,
        )

    @staticmethod
    def _live_fields(version: DraftVersion) -> dict:
        """Draft columns that mirror the selected version."""
        return {
            "final_body": version.body,
            "confidence_score": version.confidence,
            "reasoning": version.reasoning.model_dump(mode="json"),
            "metadata_": version.metadata.model_dump(mode="json"),
            "validation": version.validation.model_dump(mode="json") if version.validation else None,
        }

    def _conflict(self, draft_id: int, action: str) -> InvalidStateError:
        current = self.store.get_draft(draft_id)
        status = current.status if current else "missing"
        return InvalidStateError(
            f"Draft {draft_id} changed while trying to {action} (now {status}). Reload and try again."
        )

    # Queries

    def get_by_id(self, draft_id: int) -> DraftDetail:
        detail = self.store.get_draft_detail(draft_id)
        if detail is None:
            raise NotFoundError(f"Draft {draft_id} not found")
        return detail

    def list(
        self,
        deal_id: int | None = None,
        status: DraftStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DraftListRow]:
        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise ValidationInputError(f"limit must be between 1 and {MAX_LIST_LIMIT}")
        if offset < 0:
            raise ValidationInputError("offset must not be negative")
        if status is not None and status not in DRAFT_STATUSES:
            raise ValidationInputError(f"Unknown draft status: {status}")

        return self.store.list_drafts(deal_id=deal_id, status=status, limit=limit, offset=offset)

    # Generation

    async def create(self, deal_id: int, inbound_email_id: int) -> EmailDraft:
        """Generate the first reply to an inbound email and persist it as version 0.

        Nothing is written if generation fails.
        """
        context = self._build_context(deal_id, inbound_email_id)
        generated = await self.generator.generate(context)

        now = self._now()
        original = self._snapshot(0, generated, None, now)

        draft = EmailDraft(
            deal_id=deal_id,
            inbound_email_id=inbound_email_id,
            ai_generated_body=generated.body,
            status="pending",
            regeneration_count=0,
            current_version=0,
            draft_versions=[original.model_dump(mode="json")],
            created_at=now,
            **self._live_fields(original),
        )
        draft = self.store.insert_draft(draft)

        logger.info(
            "Draft created",
            extra={
                "draft_id": draft.id,
                "deal_id": deal_id,
                "confidence": draft.confidence_score,
                "model": generated.metadata.model,
            }
        )
        return draft

    async def preview(self, deal_id: int, inbound_email_id: int) -> GeneratedDraft:
        """Generate a reply without storing it."""
        context = self._build_context(deal_id, inbound_email_id)
        generated = await self.generator.generate(context)
        logger.info(
            "Draft previewed",
            extra={"deal_id": deal_id, "confidence": generated.confidence, "model": generated.metadata.model}
        )
        return generated

    def check_regeneration_quota(self, draft: EmailDraft) -> None:
        """Free regenerations first, then one per cooldown window.

        Raises QuotaExceededError carrying the whole hours left to wait.
        """
        if draft.regeneration_count < self.max_free_regenerations:
            return

        last_regeneration_at = ensure_utc(draft.last_regeneration_at)
        if last_regeneration_at is None:
            raise QuotaExceededError(self.cooldown_hours)

        elapsed_hours = (self._now() - last_regeneration_at).total_seconds() / 3600
        if elapsed_hours < self.cooldown_hours:
            hours_remaining = min(self.cooldown_hours, math.ceil(self.cooldown_hours - elapsed_hours))
            raise QuotaExceededError(hours_remaining)

    async def regenerate(self, draft_id: int, instruction: str) -> RegenerationOutcome:
        """Refine the current draft with an instruction and append the result as a new version."""
        _check_length(instruction, "Instruction", MIN_INSTRUCTION_CHARS, MAX_INSTRUCTION_CHARS)

        draft = self._load(draft_id)
        self.check_regeneration_quota(draft)

        if draft.status == "sent":
            raise InvalidStateError("Cannot regenerate a draft that has already been sent")
        if draft.status not in EDITABLE_STATUSES:
            raise InvalidStateError(f"Cannot regenerate a {draft.status} draft")

        context = self._build_context(draft.deal_id, draft.inbound_email_id)
        previous_body = draft.final_body or draft.edited_body or draft.ai_generated_body

        logger.info(
            "Regenerating draft",
            extra={
                "draft_id": draft_id,
                "from_version": draft.current_version,
                "regeneration_count": draft.regeneration_count,
                "instruction_preview": redact_pii(instruction, 50),
            }
        )

        generated = await self.generator.refine(
            context, previous_body, instruction, draft.current_version
        )

        now = self._now()
        next_version = draft.regeneration_count + 1
        new_version = self._snapshot(next_version, generated, instruction, now)

        updated = self.store.update_draft(
            draft_id,
            {
                "regeneration_count": next_version,
                "last_regeneration_at": now,
                "current_version": next_version,
                "draft_versions": [*draft.draft_versions, new_version.model_dump(mode="json")],
                **self._live_fields(new_version),
            },
            allowed_statuses=EDITABLE_STATUSES,
            expected_regeneration_count=draft.regeneration_count,
        )
        if updated is None:
            raise self._conflict(draft_id, "regenerate")

        versions_remaining = max(0, self.max_free_regenerations - updated.regeneration_count)
        logger.info(
            "Draft regenerated",
            extra={
                "draft_id": draft_id,
                "version": next_version,
                "confidence": updated.confidence_score,
                "versions_remaining": versions_remaining,
            }
        )
        return RegenerationOutcome(
            draft=updated,
            new_version=new_version,
            versions_remaining=versions_remaining,
        )

    # Versions

    def switch_version(self, draft_id: int, target_version: int) -> EmailDraft:
        """Make an existing version the live one. Later versions are kept."""
        draft = self._load(draft_id)
        if draft.status == "sent":
            raise InvalidStateError("Cannot change the version of a draft that has already been sent")

        snapshot = next(
            (v for v in draft.draft_versions if v.get("version") == target_version),
            None,
        )
        if snapshot is None:
            raise NotFoundError(f"Version {target_version} not found")

        version = DraftVersion.model_validate(snapshot)
        updated = self.store.update_draft(
            draft_id,
            {"current_version": target_version, **self._live_fields(version)},
            allowed_statuses=VERSIONABLE_STATUSES,
        )
        if updated is None:
            raise self._conflict(draft_id, "switch versions")

        logger.info(
            "Switched draft version",
            extra={"draft_id": draft_id, "from_version": draft.current_version, "to_version": target_version}
        )
        return updated

    def _step(self, draft_id: int, offset: int) -> EmailDraft:
        draft = self._load(draft_id)
        numbers = sorted({v["version"] for v in draft.draft_versions})
        position = numbers.index(draft.current_version) + offset
        if not 0 <= position < len(numbers):
            edge = "oldest" if offset < 0 else "newest"
            raise InvalidStateError(f"Already at the {edge} version")
        return self.switch_version(draft_id, numbers[position])

    def undo(self, draft_id: int) -> EmailDraft:
        return self._step(draft_id, -1)

    def redo(self, draft_id: int) -> EmailDraft:
        return self._step(draft_id, 1)

    # Human edits and review

    def update(self, draft_id: int, edited_body: str) -> EmailDraft:
        """Save a human edit. Edits replace the live body but are not versioned."""
        _check_length(edited_body, "Body", MIN_BODY_CHARS, MAX_BODY_CHARS)

        draft = self._load(draft_id)
        if draft.status == "sent":
            raise InvalidStateError("Cannot edit a draft that has already been sent")
        if draft.status not in EDITABLE_STATUSES:
            raise InvalidStateError(f"Cannot edit a {draft.status} draft")

        updated = self.store.update_draft(
            draft_id,
            {"edited_body": edited_body, "final_body": edited_body},
            allowed_statuses=EDITABLE_STATUSES,
        )
        if updated is None:
            raise self._conflict(draft_id, "edit")
        return updated

    def approve(self, draft_id: int, final_body: str | None = None, reviewer: str | None = None) -> EmailDraft:
        draft = self._load(draft_id)
        if draft.status != "pending":
            raise InvalidStateError(f"Only pending drafts can be approved (draft is {draft.status})")

        values = {
            "status": "approved",
            "reviewed_at": self._now(),
            "reviewed_by": reviewer or self.default_reviewer,
        }
        if final_body:
            _check_length(final_body, "Body", MIN_BODY_CHARS, MAX_BODY_CHARS)
            values["edited_body"] = final_body
            values["final_body"] = final_body

        updated = self.store.update_draft(draft_id, values, allowed_statuses=("pending",))
        if updated is None:
            raise self._conflict(draft_id, "approve")

        logger.info("Draft approved", extra={"draft_id": draft_id, "reviewer": values["reviewed_by"]})
        return updated

    def reject(self, draft_id: int, reason: str | None = None, reviewer: str | None = None) -> EmailDraft:
        draft = self._load(draft_id)
        if draft.status != "pending":
            raise InvalidStateError(f"Only pending drafts can be rejected (draft is {draft.status})")

        updated = self.store.update_draft(
            draft_id,
            {
                "status": "rejected",
                "reviewed_at": self._now(),
                "reviewed_by": reviewer or self.default_reviewer,
                "rejection_reason": reason,
            },
            allowed_statuses=("pending",),
        )
        if updated is None:
            raise self._conflict(draft_id, "reject")

        logger.info("Draft rejected", extra={"draft_id": draft_id})
        return updated

    def unapprove(self, draft_id: int) -> EmailDraft:
        """Send an approved draft back to pending review."""
        draft = self._load(draft_id)
        if draft.status != "approved":
            raise InvalidStateError(f"Only approved drafts can be unapproved (draft is {draft.status})")

        updated = self.store.update_draft(
            draft_id,
            {"status": "pending", "reviewed_at": None, "reviewed_by": None},
            allowed_statuses=("approved",),
        )
        if updated is None:
            raise self._conflict(draft_id, "unapprove")

        logger.info("Draft unapproved", extra={"draft_id": draft_id})
        return updated

    def archive(self, draft_id: int, reason: str | None = None, archived_by: str | None = None) -> EmailDraft:
        draft = self._load(draft_id)
        if draft.status == "sent":
            raise InvalidStateError("Cannot archive a draft that has already been sent")
        if draft.status == "archived":
            raise InvalidStateError("Draft is already archived")

        updated = self.store.update_draft(
            draft_id,
            {
                "status": "archived",
                "archived_at": self._now(),
                "archived_by": archived_by or self.default_reviewer,
                "archive_reason": reason or DEFAULT_ARCHIVE_REASON,
            },
            allowed_statuses=ARCHIVABLE_STATUSES,
        )
        if updated is None:
            raise self._conflict(draft_id, "archive")

        logger.info("Draft archived", extra={"draft_id": draft_id})
        return updated

    # Sending

    async def send(self, draft_id: int, confirmed: bool) -> SendOutcome:
        """Deliver the live body and record the outbound email.

        The draft is only marked sent after the provider accepted the message;
        on failure nothing is written.
        """
        if confirmed is not True:
            raise ValidationInputError("Sending requires explicit confirmation")

        async with self._send_lock(draft_id):
            return await self._deliver(draft_id)

    async def _deliver(self, draft_id: int) -> SendOutcome:
        detail = self.get_by_id(draft_id)
        draft, deal, inbound = detail.draft, detail.deal, detail.inbound_email

        if draft.status == "sent":
            raise InvalidStateError("Draft has already been sent")
        if draft.status not in SENDABLE_STATUSES:
            raise InvalidStateError(f"Cannot send a {draft.status} draft")

        body = draft.final_body or draft.ai_generated_body
        subject = inbound.subject if inbound.subject.lower().startswith("re:") else f"Re: {inbound.subject}"
        recipient = self.test_recipient or deal.seeker_email

        result = await self.sender.send(OutboundMessage(
            to=recipient,
            from_address=self.from_address,
            subject=subject,
            body=body,
            draft_id=draft_id,
        ))
        if not result.success:
            logger.error(
                "Draft send failed",
                extra={"draft_id": draft_id, "recipient": mask_email(recipient), "error": result.error}
            )
            raise SendFailedError(f"Failed to send email: {result.error}")

        email = Email(
            deal_id=deal.id,
            from_address=self.agent_email,
            to_address=deal.seeker_email,
            subject=subject,
            body=body,
            sent_at=result.sent_at,
            ai_generated=True,
            ai_metadata={
                "confidence": draft.confidence_score,
                "reasoning": draft.reasoning,
                "draft_id": draft_id,
                "message_id": result.message_id,
            },
        )
        recorded = self.store.record_send(
            draft_id,
            email,
            {"status": "sent", "sent_at": result.sent_at},
            allowed_statuses=SENDABLE_STATUSES,
        )
        if recorded is None:
            logger.error(
                "Email delivered but draft changed before it could be marked sent",
                extra={"draft_id": draft_id, "message_id": result.message_id}
            )
            raise self._conflict(draft_id, "send")

        sent_draft, sent_email = recorded
        logger.info(
            "Draft sent",
            extra={"draft_id": draft_id, "email_id": sent_email.id, "message_id": result.message_id}
        )
        return SendOutcome(draft=sent_draft, email=sent_email, message_id=result.message_id)
