"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter

from campaign_engine.api.v1.endpoints import processing_queue, provider_health, webhooks

api_router = APIRouter()

api_router.include_router(webhooks.router)
api_router.include_router(provider_health.router)
api_router.include_router(processing_queue.router)
