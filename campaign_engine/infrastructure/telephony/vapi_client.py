"""
Vapi Voice Provider Client
Outbound call placement and health probing over the Vapi REST API
"""
import logging
from typing import Any, Dict, Optional

import httpx

from campaign_engine.core.exceptions import (
    ConfigurationError,
    DispatchError,
    HealthCheckError,
    TransientProviderError,
)
from campaign_engine.domain.interfaces.voice_provider import (
    CallCustomer,
    PlaceCallResponse,
    VoiceProviderClient,
)

logger = logging.getLogger(__name__)


class VapiClient(VoiceProviderClient):
    """
    Vapi API client.

    Error mapping for place_call:
    - missing key, 401, 403 -> ConfigurationError
    - network error, 5xx    -> TransientProviderError
    - other non-2xx         -> DispatchError
    """

    DEFAULT_BASE_URL = "https://api.vapi.ai"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._api_key = api_key
        self._base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._timeout = timeout_seconds
        self._client = http_client

    @property
    def name(self) -> str:
        return "vapi"

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def place_call(
        self,
        assistant_id: Optional[str],
        phone_number_id: Optional[str],
        customer: CallCustomer,
        metadata: Optional[Dict[str, Any]] = None
    ) -> PlaceCallResponse:
        if not self._api_key:
            raise ConfigurationError("VAPI_PRIVATE_API_KEY not configured")

        payload: Dict[str, Any] = {
            "assistantId": assistant_id,
            "phoneNumberId": phone_number_id,
            "customer": {
                "number": customer.number,
                "name": customer.name,
                "externalId": customer.external_id,
            },
        }
        if metadata:
            payload["metadata"] = metadata

        try:
            response = await self._http().post(
                f"{self._base_url}/call",
                json=payload,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise TransientProviderError(f"Vapi request failed: {e}", original_error=e)

        if response.status_code in (401, 403):
            raise ConfigurationError(
                f"Vapi rejected credentials (HTTP {response.status_code})",
                {"status_code": response.status_code},
            )
        if response.status_code >= 500:
            raise TransientProviderError(
                f"Vapi server error (HTTP {response.status_code})",
                status_code=response.status_code,
                body=response.text,
            )
        if not response.is_success:
            raise DispatchError(
                f"Vapi API error (HTTP {response.status_code})",
                status_code=response.status_code,
                body=response.text,
            )

        data = response.json()
        logger.debug(f"Vapi accepted call {data.get('id')} for {customer.number}")
        return PlaceCallResponse(id=data["id"], status=data.get("status"))

    async def get_call(self, call_id: str) -> Dict[str, Any]:
        if not self._api_key:
            raise ConfigurationError("VAPI_PRIVATE_API_KEY not configured")

        try:
            response = await self._http().get(f"{self._base_url}/call/{call_id}", headers=self._headers())
        except httpx.HTTPError as e:
            raise TransientProviderError(f"Vapi request failed: {e}", original_error=e)

        if not response.is_success:
            raise DispatchError(
                f"Failed to fetch call {call_id} (HTTP {response.status_code})",
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()

    async def ping(self) -> None:
        """GET /assistant?limit=1"""
        if not self._api_key:
            raise HealthCheckError("VAPI_PRIVATE_API_KEY not configured")

        try:
            response = await self._http().get(
                f"{self._base_url}/assistant",
                params={"limit": 1},
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise HealthCheckError(f"Vapi health check failed: {e}")

        if not response.is_success:
            raise HealthCheckError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )

    async def cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
