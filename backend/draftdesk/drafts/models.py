"""Pydantic models for draft context, reasoning and version snapshots.

These are the shapes stored in the JSON columns of ``email_drafts`` and
passed between the context builder, generator, validator and lifecycle
engine.
"""
from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, Field


# Context

class DealInfo(BaseModel):
    seeker_name: str
    seeker_email: str
    company_name: str
    team_size: int
    monthly_budget: int
    requirements: dict[str, Any] = Field(default_factory=dict)


class SpaceInfo(BaseModel):
    id: int
    name: str
    address: str
    neighborhood: str | None = None
    host_company: str
    host_context: str | None = None
    amenities: dict[str, Any] = Field(default_factory=dict)
    availability: dict[str, list[str]] = Field(default_factory=dict)
    monthly_rate: int
    detailed_amenities: dict[str, Any] | None = None


class ThreadEmail(BaseModel):
    id: int
    from_address: str
    to_address: str
    subject: str
    body: str
    sent_at: datetime


class StructuredContext(BaseModel):
    """Normalized view of everything the drafter is allowed to rely on."""
    deal: DealInfo
    spaces: list[SpaceInfo] = Field(default_factory=list)
    email_history: list[ThreadEmail] = Field(default_factory=list)
    inbound_email: ThreadEmail


# Reasoning

class QuestionAddressed(BaseModel):
    question: str
    answer: str
    source_email_id: int | None = None
    source_text: str | None = None


class DataSource(BaseModel):
    """A source document consulted for the draft, keyed ``space-{id}`` / ``email-{id}``."""
    source_type: Literal["space", "deal", "email"]
    source_id: int
    source_name: str
    source_title: str
    source_subtitle: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    data_points_used: list[str] = Field(default_factory=list)


class CrmLookup(BaseModel):
    space_id: int
    space_name: str
    address: str
    details: dict[str, Any] = Field(default_factory=dict)
    excluded: bool = False
    excluded_reason: str | None = None


class SpaceSlotCheck(BaseModel):
    space_name: str
    available: bool
    slots: list[str] = Field(default_factory=list)


class CalendarCheck(BaseModel):
    day: str
    spaces: list[SpaceSlotCheck] = Field(default_factory=list)


class TourRoute(BaseModel):
    recommended: str
    route: str
    stops: list[str]
    total_minutes: int
    total_time: str


class ValidationResult(BaseModel):
    """Verdict of the fact-check pass."""
    status: Literal["passed", "warnings", "failed"]
    issues: list[str] = Field(default_factory=list)
    confidence_adjustment: int = 0
    checked_at: datetime
    tokens_used: int = 0


class Reasoning(BaseModel):
    questions_addressed: list[QuestionAddressed] = Field(default_factory=list)
    data_used: list[DataSource] = Field(default_factory=list)
    scheduling_logic: list[str] | None = None
    crm_lookups: list[CrmLookup] = Field(default_factory=list)
    calendar_checks: list[CalendarCheck] = Field(default_factory=list)
    tour_route: TourRoute | None = None
    needs_human_review: list[str] = Field(default_factory=list)
    validation: ValidationResult | None = None


# Generation output and history

class GenerationMetadata(BaseModel):
    model: str
    tokens_used: int
    generated_at: datetime
    validation_tokens_used: int | None = None


class GeneratedDraft(BaseModel):
    body: str
    confidence: int
    reasoning: Reasoning
    metadata: GenerationMetadata
    validation: ValidationResult | None = None


class DraftVersion(BaseModel):
    """Immutable snapshot of one generation. Version 0 has no prompt."""
    version: int
    body: str
    prompt: str | None = None
    confidence: int
    reasoning: Reasoning
    metadata: GenerationMetadata
    validation: ValidationResult | None = None
    created_at: datetime
