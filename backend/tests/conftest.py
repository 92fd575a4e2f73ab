"""Pytest configuration and shared fixtures."""

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing app
os.environ.update({
    "DATABASE_URL": "sqlite://",
    "OPENAI_API_KEY": "sk-test-key",
    "RESEND_API_KEY": "re_test_key",
    "DRAFT_VALIDATION_ENABLED": "false",
    "OTEL_TRACES_EXPORTER": "none",
})

from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from draftdesk.core import db  # noqa: E402,F401  (registers tables)
from draftdesk.drafts.generator import DraftGenerator  # noqa: E402
from draftdesk.drafts.lifecycle import DraftLifecycleEngine  # noqa: E402
from draftdesk.drafts.store import SqlDraftStore  # noqa: E402
from draftdesk.integrations.completion_service import CompletionRequest, CompletionResult  # noqa: E402
from draftdesk.integrations.email_sender import OutboundMessage, SendResult  # noqa: E402
from draftdesk.models.deals import Deal, DealSpace, Space  # noqa: E402
from draftdesk.models.emails import Email  # noqa: E402

# Mentions all three seeded spaces, parking, 24/7 access, a tour, a clock time,
# a greeting and a signoff.
DEFAULT_DRAFT_BODY = """Hi Sarah,

Great questions! Mission Loft has parking for your team and 24/7 access.
SoMa Hub and Hayes Studio are both close by as well.

We could tour Mission Loft on Tuesday at 2pm, then SoMa Hub at 3pm.

Best,
Alex"""

INBOUND_BODY = """Hi Alex,

Thanks for the shortlist. Does Mission Loft have parking? Could we tour on Tuesday afternoon?

Sarah"""

T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class FakeCompletionService:
    """Returns queued responses (or a default draft) and records every request."""

    def __init__(self, responses: list[str] | None = None, model: str = "gpt-4o-mini-test"):
        self.responses = list(responses or [])
        self.model = model
        self.requests: list[CompletionRequest] = []
        self.error: Exception | None = None

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        text = self.responses.pop(0) if self.responses else DEFAULT_DRAFT_BODY
        return CompletionResult(text=text, tokens_used=321, model=self.model)


class FakeEmailSender:
    def __init__(self):
        self.messages: list[OutboundMessage] = []
        self.fail_with: str | None = None

    async def send(self, message: OutboundMessage) -> SendResult:
        self.messages.append(message)
        sent_at = datetime(2025, 1, 7, 18, 0, tzinfo=timezone.utc)
        if self.fail_with:
            return SendResult(success=False, error=self.fail_with, sent_at=sent_at)
        return SendResult(success=True, message_id=f"msg-{len(self.messages)}", sent_at=sent_at)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SeedData:
    deal_id: int
    other_deal_id: int
    space_ids: list[int] = field(default_factory=list)
    earlier_email_id: int = 0
    inbound_email_id: int = 0
    other_deal_email_id: int = 0


@pytest.fixture
def test_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def seeded(test_engine) -> SeedData:
    """One deal with three shortlisted spaces and a two-message thread, plus an unrelated deal."""
    with Session(test_engine) as session:
        deal = Deal(
            seeker_name="Sarah Chen",
            seeker_email="sarah@acmerobotics.com",
            company_name="Acme Robotics",
            team_size=15,
            monthly_budget=15000,
            requirements={"parking": True, "dogFriendly": True, "location": "San Francisco"},
            stage="touring",
        )
        other_deal = Deal(
            seeker_name="Marco Diaz",
            seeker_email="marco@example.com",
            company_name="Other Co",
            team_size=4,
            monthly_budget=5000,
            requirements={},
            stage="qualifying",
        )
        session.add(deal)
        session.add(other_deal)
        session.flush()

        spaces = [
            Space(
                name="Mission Loft",
                address="500 Valencia St",
                neighborhood="Mission",
                host_company="Brightwave",
                host_email="host@brightwave.io",
                host_context="Series B climate startup",
                amenities={"parking": True, "dogFriendly": True, "afterHours": True},
                availability={"tuesday": ["2pm", "4pm"], "wednesday": ["11am"]},
                monthly_rate=12000,
                detailed_amenities={
                    "parking": {"spots": 4},
                    "dogPolicy": {"allowed": True},
                    "access": "24/7 keycard",
                },
            ),
            Space(
                name="SoMa Hub",
                address="88 Townsend St",
                neighborhood="SoMa",
                host_company="Gridline",
                host_email="ops@gridline.com",
                amenities={"parking": False, "dogFriendly": False, "afterHours": True},
                availability={"tuesday": ["3pm"], "thursday": ["10am"]},
                monthly_rate=9500,
                detailed_amenities={"dogPolicy": {"allowed": False, "reason": "Lease restriction"}},
            ),
            Space(
                name="Hayes Studio",
                address="301 Hayes St",
                neighborhood="Hayes Valley",
                host_company="Northpaw",
                host_email="hello@northpaw.co",
                amenities={"parking": False, "dogFriendly": True, "afterHours": False},
                availability={"wednesday": ["1pm"]},
                monthly_rate=8000,
            ),
        ]
        for space in spaces:
            session.add(space)
        session.flush()

        for space in spaces:
            session.add(DealSpace(deal_id=deal.id, space_id=space.id, status="shortlisted"))

        earlier = Email(
            deal_id=deal.id,
            from_address="agent@tandem.space",
            to_address="sarah@acmerobotics.com",
            subject="Spaces for Acme Robotics",
            body="Hi Sarah, here are three spaces that match your requirements.",
            sent_at=datetime(2025, 1, 2, 15, 0, tzinfo=timezone.utc),
        )
        inbound = Email(
            deal_id=deal.id,
            from_address="sarah@acmerobotics.com",
            to_address="agent@tandem.space",
            subject="Spaces for Acme Robotics",
            body=INBOUND_BODY,
            sent_at=datetime(2025, 1, 3, 10, 30, tzinfo=timezone.utc),
        )
        unrelated = Email(
            deal_id=other_deal.id,
            from_address="marco@example.com",
            to_address="agent@tandem.space",
            subject="Question",
            body="Is the space still available?",
            sent_at=datetime(2025, 1, 3, 11, 0, tzinfo=timezone.utc),
        )
        session.add(earlier)
        session.add(inbound)
        session.add(unrelated)
        session.commit()

        return SeedData(
            deal_id=deal.id,
            other_deal_id=other_deal.id,
            space_ids=[space.id for space in spaces],
            earlier_email_id=earlier.id,
            inbound_email_id=inbound.id,
            other_deal_email_id=unrelated.id,
        )


@pytest.fixture
def store(test_engine) -> SqlDraftStore:
    return SqlDraftStore(test_engine)


@pytest.fixture
def completion() -> FakeCompletionService:
    return FakeCompletionService()


@pytest.fixture
def sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def generator(completion: FakeCompletionService) -> DraftGenerator:
    return DraftGenerator(completion)


@pytest.fixture
def draft_engine(store, generator, sender, clock) -> DraftLifecycleEngine:
    return DraftLifecycleEngine(
        store,
        generator,
        sender,
        from_address="Alex from Tandem <onboarding@resend.dev>",
        agent_email="agent@tandem.space",
        default_reviewer="Jenny",
        clock=clock,
    )


@pytest.fixture
def client(test_engine, store, draft_engine) -> Generator[TestClient, None, None]:
    """FastAPI test client wired to the in-memory database and fake collaborators."""
    from draftdesk.api.routes.analytics import get_draft_store
    from draftdesk.api.routes.drafts import get_draft_engine
    from draftdesk.core.db import get_session
    from draftdesk.main import app

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_draft_engine] = lambda: draft_engine
    app.dependency_overrides[get_draft_store] = lambda: store
    app.dependency_overrides[get_session] = override_session

    yield TestClient(app)

    app.dependency_overrides.clear()
