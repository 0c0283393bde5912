"""Version 1 API router."""
from fastapi import APIRouter

from agenda.api.v1.endpoints import billing, limits, webhooks


api_router = APIRouter()
api_router.include_router(billing.router)
api_router.include_router(limits.router)
api_router.include_router(webhooks.router)
