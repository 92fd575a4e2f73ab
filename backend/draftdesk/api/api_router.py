from fastapi import APIRouter
from draftdesk.api.routes.analytics import analytics_router
from draftdesk.api.routes.deals import deals_router
from draftdesk.api.routes.drafts import drafts_router

api_router = APIRouter()

api_router.include_router(drafts_router)
api_router.include_router(deals_router)
api_router.include_router(analytics_router)
