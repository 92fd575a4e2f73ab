"""Database model for AI-assisted reply drafts and their version history."""

from datetime import datetime, timezone
from typing import Literal, get_args
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel, Column, JSON, String

DraftStatus = Literal["pending", "approved", "rejected", "sent", "archived"]

DRAFT_STATUSES: tuple[str, ...] = get_args(DraftStatus)


class EmailDraft(SQLModel, table=True):
    """One AI-assisted reply to an inbound email.

    ``ai_generated_body`` is the original generation and never changes.
    ``final_body`` is whatever the broker would send right now: the selected
    version's body, or a human edit made after that version was selected.

    ``draft_versions`` holds one snapshot per generation (``version`` 0 is the
    original, 1..n are regenerations) serialized from ``DraftVersion``;
    ``current_version`` always names one of them.
    """

    __tablename__ = "email_drafts"

    id: int | None = Field(default=None, primary_key=True)

    deal_id: int = Field(foreign_key="deals.id", index=True)
    inbound_email_id: int = Field(foreign_key="emails.id")

    # Content
    ai_generated_body: str
    edited_body: str | None = None
    final_body: str | None = None

    confidence_score: int

    status: str = Field(default="pending", sa_column=Column(String(50), index=True, nullable=False))

    # Structured documents (see draftdesk.drafts.models)
    reasoning: dict | None = Field(default=None, sa_column=Column(JSON))
    metadata_: dict | None = Field(default=None, sa_column=Column("metadata", JSON))
    validation: dict | None = Field(default=None, sa_column=Column(JSON))

    # Versioning
    regeneration_count: int = Field(default=0)
    last_regeneration_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    current_version: int = Field(default=0)
    draft_versions: list[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    # Audit
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),
    )
    reviewed_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    reviewed_by: str | None = Field(default=None, max_length=255)
    rejection_reason: str | None = None
    sent_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    sent_email_id: int | None = Field(default=None, foreign_key="emails.id")
    archived_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    archived_by: str | None = Field(default=None, max_length=255)
    archive_reason: str | None = None
