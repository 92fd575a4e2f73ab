import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware
from sqlmodel import Session, text

from draftdesk.core.config import settings
from draftdesk.api.api_router import api_router
from draftdesk.core.db import engine, init_db
from draftdesk.core.tracing import setup_tracing

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_tracing()
    init_db()

    yield

    # Shutdown


app = FastAPI(
    title=settings.APP_NAME,
    lifespan=lifespan,
)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALL_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_PREFIX)


@app.get("/healthz")
async def health_check():
    """Health check endpoint that verifies database connectivity."""
    health_status = {
        "status": "healthy",
        "services": {
            "database": "unknown",
        }
    }

    try:
        with Session(engine) as session:
            session.exec(text("SELECT 1"))
            health_status["services"]["database"] = "healthy"
    except Exception as e:
        health_status["services"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    return health_status
