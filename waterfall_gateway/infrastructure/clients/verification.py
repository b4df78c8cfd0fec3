"""Business identity verification client (most expensive step)"""

import httpx

from waterfall_gateway.config import settings
from waterfall_gateway.domain.models import BusinessVerificationResult
from waterfall_gateway.infrastructure.clients.base import VerificationServiceClient


class BusinessVerificationClient(VerificationServiceClient):
    service_name = "business_verification"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url or settings.verification_api_base, timeout=timeout, transport=transport)

    async def verify_business(self, business_name: str, state: str | None = None) -> BusinessVerificationResult:
        data = await self._post("/business/verify", {"business_name": business_name, "state": state})
        return BusinessVerificationResult(
            success=True,
            verified=bool(data.get("verified", False)),
            details=data.get("details") or {},
        )
