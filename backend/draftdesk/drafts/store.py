"""Persistence for the draft lifecycle engine.

The engine only knows the ``DraftStore`` protocol. ``SqlDraftStore`` backs it
with SQLModel; every draft mutation is a conditional UPDATE (status and, for
regenerations, the observed regeneration count) so two racing requests cannot
both win.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Protocol

from sqlalchemy import Engine, update
from sqlmodel import Session, select

from draftdesk.models.deals import Deal, DealSpace, Space
from draftdesk.models.email_drafts import DraftStatus, EmailDraft
from draftdesk.models.emails import Email

logger = logging.getLogger(__name__)


@dataclass
class DraftListRow:
    draft: EmailDraft
    company_name: str
    seeker_name: str
    inbound_from: str
    inbound_subject: str
    inbound_sent_at: datetime


@dataclass
class DraftDetail:
    draft: EmailDraft
    deal: Deal
    inbound_email: Email


class DraftStore(Protocol):
    def get_deal(self, deal_id: int) -> Deal | None: ...

    def get_spaces_for_deal(self, deal_id: int) -> list[Space]: ...

    def get_email_thread(self, deal_id: int) -> list[Email]: ...

    def get_email(self, email_id: int) -> Email | None: ...

    def insert_draft(self, draft: EmailDraft) -> EmailDraft: ...

    def get_draft(self, draft_id: int) -> EmailDraft | None: ...

    def update_draft(
        self,
        draft_id: int,
        values: dict[str, Any],
        allowed_statuses: Iterable[str] | None = None,
        expected_regeneration_count: int | None = None,
    ) -> EmailDraft | None: ...

    def record_send(
        self,
        draft_id: int,
        email: Email,
        values: dict[str, Any],
        allowed_statuses: Iterable[str],
    ) -> tuple[EmailDraft, Email] | None: ...

    def list_drafts(
        self,
        deal_id: int | None = None,
        status: DraftStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DraftListRow]: ...

    def get_draft_detail(self, draft_id: int) -> DraftDetail | None: ...

    def list_drafts_created_between(
        self, start: datetime, end: datetime | None = None
    ) -> list[EmailDraft]: ...


def _conditional_update(
    draft_id: int,
    values: dict[str, Any],
    allowed_statuses: Iterable[str] | None,
    expected_regeneration_count: int | None,
):
    statement = update(EmailDraft).where(EmailDraft.id == draft_id)
    if allowed_statuses is not None:
        statement = statement.where(EmailDraft.status.in_(list(allowed_statuses)))
    if expected_regeneration_count is not None:
        statement = statement.where(EmailDraft.regeneration_count == expected_regeneration_count)
    return statement.values({getattr(EmailDraft, key): value for key, value in values.items()})


class SqlDraftStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    # Deals, spaces, emails

    def get_deal(self, deal_id: int) -> Deal | None:
        with Session(self.engine) as session:
            return session.get(Deal, deal_id)

    def get_spaces_for_deal(self, deal_id: int) -> list[Space]:
        with Session(self.engine) as session:
            statement = (
                select(Space)
                .join(DealSpace, DealSpace.space_id == Space.id)
                .where(DealSpace.deal_id == deal_id)
                .order_by(DealSpace.id)
            )
            return list(session.exec(statement).all())

    def get_email_thread(self, deal_id: int) -> list[Email]:
        with Session(self.engine) as session:
            statement = select(Email).where(Email.deal_id == deal_id).order_by(Email.sent_at, Email.id)
            return list(session.exec(statement).all())

    def get_email(self, email_id: int) -> Email | None:
        with Session(self.engine) as session:
            return session.get(Email, email_id)

    # Drafts

    def insert_draft(self, draft: EmailDraft) -> EmailDraft:
        with Session(self.engine) as session:
            session.add(draft)
            session.commit()
            session.refresh(draft)
            logger.info(f"Inserted draft {draft.id} for deal {draft.deal_id}")
            return draft

    def get_draft(self, draft_id: int) -> EmailDraft | None:
        with Session(self.engine) as session:
            return session.get(EmailDraft, draft_id)

    def update_draft(
        self,
        draft_id: int,
        values: dict[str, Any],
        allowed_statuses: Iterable[str] | None = None,
        expected_regeneration_count: int | None = None,
    ) -> EmailDraft | None:
        """Apply ``values`` only if the draft still matches the preconditions.

        Returns the refreshed draft, or None when no row matched.
        """
        with Session(self.engine) as session:
            result = session.exec(_conditional_update(
                draft_id, values, allowed_statuses, expected_regeneration_count
            ))
            if result.rowcount == 0:
                session.rollback()
                logger.warning(
                    "Conditional draft update matched no rows",
                    extra={"draft_id": draft_id, "fields": sorted(values)}
                )
                return None

            session.commit()
            return session.get(EmailDraft, draft_id)

    def record_send(
        self,
        draft_id: int,
        email: Email,
        values: dict[str, Any],
        allowed_statuses: Iterable[str],
    ) -> tuple[EmailDraft, Email] | None:
        """Insert the outbound email and mark the draft sent in one transaction."""
        with Session(self.engine) as session:
            session.add(email)
            session.flush()

            result = session.exec(_conditional_update(
                draft_id, {**values, "sent_email_id": email.id}, allowed_statuses, None
            ))
            if result.rowcount == 0:
                session.rollback()
                return None

            session.commit()
            session.refresh(email)
            return session.get(EmailDraft, draft_id), email

    def list_drafts(
        self,
        deal_id: int | None = None,
        status: DraftStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DraftListRow]:
        with Session(self.engine) as session:
            statement = (
                select(EmailDraft, Deal, Email)
                .join(Deal, EmailDraft.deal_id == Deal.id)
                .join(Email, EmailDraft.inbound_email_id == Email.id)
            )
            if deal_id is not None:
                statement = statement.where(EmailDraft.deal_id == deal_id)
            if status is not None:
                statement = statement.where(EmailDraft.status == status)

            # Low confidence first: those need review most
            statement = (
                statement
                .order_by(EmailDraft.confidence_score.asc(), EmailDraft.created_at.desc(), EmailDraft.id.desc())
                .offset(offset)
                .limit(limit)
            )

            return [
                DraftListRow(
                    draft=draft,
                    company_name=deal.company_name,
                    seeker_name=deal.seeker_name,
                    inbound_from=inbound.from_address,
                    inbound_subject=inbound.subject,
                    inbound_sent_at=inbound.sent_at,
                )
                for draft, deal, inbound in session.exec(statement).all()
            ]

    def get_draft_detail(self, draft_id: int) -> DraftDetail | None:
        with Session(self.engine) as session:
            statement = (
                select(EmailDraft, Deal, Email)
                .join(Deal, EmailDraft.deal_id == Deal.id)
                .join(Email, EmailDraft.inbound_email_id == Email.id)
                .where(EmailDraft.id == draft_id)
            )
            row = session.exec(statement).first()
            if row is None:
                return None
            draft, deal, inbound = row
            return DraftDetail(draft=draft, deal=deal, inbound_email=inbound)

    def list_drafts_created_between(
        self, start: datetime, end: datetime | None = None
    ) -> list[EmailDraft]:
        with Session(self.engine) as session:
            statement = select(EmailDraft).where(EmailDraft.created_at >= start)
            if end is not None:
                statement = statement.where(EmailDraft.created_at < end)
            return list(session.exec(statement).all())
