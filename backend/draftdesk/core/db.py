from sqlmodel import Session, create_engine, SQLModel

from draftdesk.models import deals, emails, email_drafts  # noqa: F401  (register tables)
from draftdesk.core.config import settings

connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)


def get_session():
    """FastAPI dependency to get database session."""
    with Session(engine) as session:
        yield session


def init_db():
    SQLModel.metadata.create_all(engine)
