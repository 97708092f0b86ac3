"""
Processing Queue Endpoints
Manual poll trigger and failed-item requeue for AI analysis
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from campaign_engine.api.v1.dependencies import get_container
from campaign_engine.core.container import EngineContainer

router = APIRouter(prefix="/processing-queue", tags=["processing-queue"])


@router.post("/process")
async def process_queue(
    container: EngineContainer = Depends(get_container)
) -> Dict[str, Any]:
    report = await container.processing_queue.process_pending()
    if not report.processed and not report.skipped:
        return {"message": "No jobs to process", "processed": 0}
    return {
        "message": "Queue processed",
        "processed": report.processed,
        "successful": report.successful,
        "failed": report.failed,
    }


@router.post("/{item_id}/requeue")
async def requeue_item(
    item_id: str,
    container: EngineContainer = Depends(get_container)
) -> Dict[str, Any]:
    """Move a failed item back to pending."""
    if not await container.processing_queue.requeue(item_id):
        raise HTTPException(status_code=409, detail="Item not found or not in failed state")
    return {"success": True, "item_id": item_id, "status": "pending"}
