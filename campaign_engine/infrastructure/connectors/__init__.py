"""
Connector Infrastructure Package
HTTP channels into the platform's internal functions
"""
from campaign_engine.infrastructure.connectors.internal_http import InternalApiChannels

__all__ = [
    "InternalApiChannels",
]
