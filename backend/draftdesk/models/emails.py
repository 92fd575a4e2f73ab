"""Database model for the email thread attached to a deal."""

from datetime import datetime, timezone
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel, Column, JSON


class Email(SQLModel, table=True):
    """One message in a deal's thread, inbound from the seeker or sent by the agent.

    Outbound rows created by a draft send carry ``ai_generated=True`` and an
    ``ai_metadata`` document with the draft's confidence and reasoning.
    """

    __tablename__ = "emails"

    id: int | None = Field(default=None, primary_key=True)
    deal_id: int = Field(foreign_key="deals.id", index=True)

    from_address: str = Field(sa_column_kwargs={"name": "from"}, max_length=255)
    to_address: str = Field(sa_column_kwargs={"name": "to"}, max_length=255)
    subject: str
    body: str

    sent_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),
    )

    ai_generated: bool = Field(default=False)
    ai_metadata: dict | None = Field(default=None, sa_column=Column(JSON))
