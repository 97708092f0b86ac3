"""
Health Check Endpoint
Liveness for container health checks and monitoring
"""
from typing import Dict

from fastapi import APIRouter, status

from campaign_engine.utils.time_utils import to_iso, utcnow

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> Dict[str, str]:
    return {
        "status": "healthy",
        "timestamp": to_iso(utcnow()),
        "service": "campaign-engine"
    }
