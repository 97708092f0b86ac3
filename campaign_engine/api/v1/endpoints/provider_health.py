"""
Provider Health Endpoints
Current voice provider health and a manual check trigger
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from campaign_engine.api.v1.dependencies import get_container, require_health_token
from campaign_engine.core.container import EngineContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/provider-health", tags=["provider-health"])


@router.get("")
async def get_provider_health(
    container: EngineContainer = Depends(get_container)
) -> Dict[str, Any]:
    """Latest recorded health: provider, status, response_time_ms, last_checked, consecutive_failures."""
    return await container.health_monitor.current_status()


@router.post("", dependencies=[Depends(require_health_token)])
async def run_provider_health_check(
    container: EngineContainer = Depends(get_container)
) -> Dict[str, Any]:
    """Run one health check synchronously. Requires the shared bearer token."""
    record = await container.health_monitor.check()
    logger.info(f"Manual health check completed: {record.status.value}")
    return {
        "success": True,
        "message": "Health check completed",
        "status": record.status.value,
    }
