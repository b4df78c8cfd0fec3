"""Secretary of State registry lookup client"""

from datetime import date

import httpx

from waterfall_gateway.config import settings
from waterfall_gateway.domain.exceptions import ExternalCallFailure
from waterfall_gateway.domain.models import RegistryLookupResult
from waterfall_gateway.infrastructure.clients.base import VerificationServiceClient


class BusinessRegistryClient(VerificationServiceClient):
    """Cheapest waterfall step: is the business registered, and since when"""

    service_name = "business_registry"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url or settings.registry_api_base, timeout=timeout, transport=transport)

    async def lookup_business(self, business_name: str, state: str | None = None) -> RegistryLookupResult:
        """
        Raises:
            ExternalCallFailure: On transport errors or malformed registry data
        """
        data = await self._post("/registry/lookup", {"business_name": business_name, "state": state})
        try:
            registered = data.get("registration_date")
            return RegistryLookupResult(
                success=True,
                found=bool(data["found"]),
                status=data.get("status"),
                registration_date=date.fromisoformat(registered) if registered else None,
                matched_name=data.get("business_name"),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise ExternalCallFailure(self.service_name, f"invalid registry data: {e}") from e
