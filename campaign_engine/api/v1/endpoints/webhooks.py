"""
Webhooks API Endpoints
Receives call lifecycle events from the voice provider
"""
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request

from campaign_engine.api.v1.dependencies import get_container
from campaign_engine.core.container import EngineContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/voice")
async def voice_webhook(
    request: Request,
    container: EngineContainer = Depends(get_container)
) -> Dict[str, Any]:
    """
    Handle a voice provider webhook (call-started, call-ended, hang).

    Unknown event types are acknowledged and ignored. Redelivered events
    for a finalized call are acknowledged without side effects.
    """
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be an object")

    try:
        result = await container.call_result_handler.handle(payload)
    except Exception as e:
        logger.error(f"Error processing voice webhook: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to process webhook", "details": str(e)}
        )

    return {
        "message": "Webhook processed successfully",
        "type": result.event_type,
        "callId": result.call_id,
        "duplicate": result.duplicate,
        "aiProcessingQueued": result.ai_processing_queued,
    }
