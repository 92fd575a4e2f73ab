"""Read-only deal endpoints: the deal, its shortlisted spaces and its email thread."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from draftdesk.core.db import get_session
from draftdesk.models.deals import Deal, DealSpace, Space
from draftdesk.models.emails import Email

deals_router = APIRouter(prefix="/deals", tags=["deals"])


def _get_deal_or_404(session: Session, deal_id: int) -> Deal:
    deal = session.get(Deal, deal_id)
    if deal is None:
        raise HTTPException(status_code=404, detail=f"Deal {deal_id} not found")
    return deal


@deals_router.get("/{deal_id}", response_model=Deal)
async def get_deal(deal_id: int, session: Session = Depends(get_session)):
    return _get_deal_or_404(session, deal_id)


@deals_router.get("/{deal_id}/spaces", response_model=list[Space])
async def get_deal_spaces(deal_id: int, session: Session = Depends(get_session)):
    """Spaces shortlisted for the deal, in the order they were added."""
    _get_deal_or_404(session, deal_id)

    statement = (
        select(Space)
        .join(DealSpace, DealSpace.space_id == Space.id)
        .where(DealSpace.deal_id == deal_id)
        .order_by(DealSpace.id)
    )
    return session.exec(statement).all()


@deals_router.get("/{deal_id}/emails", response_model=list[Email])
async def get_deal_emails(deal_id: int, session: Session = Depends(get_session)):
    """The deal's thread, oldest message first."""
    _get_deal_or_404(session, deal_id)

    statement = select(Email).where(Email.deal_id == deal_id).order_by(Email.sent_at, Email.id)
    return session.exec(statement).all()
