"""Database models for brokerage deals and the candidate spaces shown to them."""

from datetime import datetime, timezone
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel, Column, JSON


class Deal(SQLModel, table=True):
    """A seeker company looking for office space, tracked through touring stages."""

    __tablename__ = "deals"

    id: int | None = Field(default=None, primary_key=True)

    seeker_name: str = Field(max_length=255)
    seeker_email: str = Field(max_length=255)
    company_name: str = Field(max_length=255)
    team_size: int
    monthly_budget: int

    # e.g. {"dogFriendly": true, "parking": false, "location": "San Francisco"}
    requirements: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    stage: str = Field(max_length=50)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),
    )


class Space(SQLModel, table=True):
    """A listed office space offered by a host company."""

    __tablename__ = "spaces"

    id: int | None = Field(default=None, primary_key=True)

    name: str = Field(max_length=255)
    address: str
    neighborhood: str | None = Field(default=None, max_length=100)
    host_company: str = Field(max_length=255)
    host_email: str = Field(max_length=255)
    host_context: str | None = None

    # Flat yes/no amenities: {"parking": true, "dogFriendly": false, "afterHours": true}
    amenities: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    # Tour windows per weekday: {"tuesday": ["2pm", "4pm"], "wednesday": ["11am"]}
    availability: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    monthly_rate: int

    # CRM detail: parking, dogPolicy, access, meetingRooms, rentInclusions, hostStatus
    detailed_amenities: dict | None = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),
    )


class DealSpace(SQLModel, table=True):
    """Link table: a space shortlisted for a deal."""

    __tablename__ = "deal_spaces"

    id: int | None = Field(default=None, primary_key=True)
    deal_id: int = Field(foreign_key="deals.id", index=True)
    space_id: int = Field(foreign_key="spaces.id")
    status: str = Field(max_length=50)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),
    )
