"""
Voice Provider Interface
Abstract base class for hosted voice-assistant providers (Vapi and similar)
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import BaseModel


class CallCustomer(BaseModel):
    """Who the provider should dial"""
    number: str
    name: Optional[str] = None
    external_id: Optional[str] = None


class PlaceCallResponse(BaseModel):
    """Provider acknowledgement of a place-call request"""
    id: str
    status: Optional[str] = None


class VoiceProviderClient(ABC):
    """Abstract base class for voice providers"""

    @abstractmethod
    async def place_call(
        self,
        assistant_id: Optional[str],
        phone_number_id: Optional[str],
        customer: CallCustomer,
        metadata: Optional[Dict[str, Any]] = None
    ) -> PlaceCallResponse:
        """
        Request one outbound call.

        Raises:
            ConfigurationError: Missing/invalid credentials (401/403)
            TransientProviderError: Network failure or 5xx
            DispatchError: Any other non-2xx response
        """
        pass

    @abstractmethod
    async def get_call(self, call_id: str) -> Dict[str, Any]:
        """Fetch the provider's record of a call"""
        pass

    @abstractmethod
    async def ping(self) -> None:
        """
        Cheapest authenticated request the provider supports.

        Raises:
            HealthCheckError: On error or non-2xx
        """
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Release resources"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
