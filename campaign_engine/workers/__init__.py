"""
Workers Package
Periodic background workers for campaign execution
"""
from campaign_engine.workers.base import PeriodicWorker
from campaign_engine.workers.campaign_worker import CampaignWorker
from campaign_engine.workers.health_worker import HealthWorker
from campaign_engine.workers.processing_worker import ProcessingWorker
from campaign_engine.workers.sequence_worker import SequenceWorker

__all__ = [
    "PeriodicWorker",
    "CampaignWorker",
    "SequenceWorker",
    "ProcessingWorker",
    "HealthWorker",
]
