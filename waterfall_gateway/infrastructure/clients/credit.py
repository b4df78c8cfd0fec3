"""Soft-pull credit check client"""

import httpx

from waterfall_gateway.config import settings
from waterfall_gateway.domain.exceptions import ExternalCallFailure
from waterfall_gateway.domain.models import ApplicationData, CreditCheckResult
from waterfall_gateway.infrastructure.clients.base import VerificationServiceClient


class CreditCheckClient(VerificationServiceClient):
    service_name = "credit_check"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url or settings.credit_api_base, timeout=timeout, transport=transport)

    async def check_credit(self, application: ApplicationData) -> CreditCheckResult:
        """
        Raises:
            ExternalCallFailure: On transport errors or a non-numeric score
        """
        data = await self._post(
            "/credit/check",
            {
                "business_name": application.business_name,
                "state": application.state,
                "tax_id": application.tax_id,
            },
        )
        try:
            score = data.get("score")
            return CreditCheckResult(
                success=True,
                score=int(score) if score is not None else None,
                report=data.get("report") or {},
            )
        except (ValueError, TypeError) as e:
            raise ExternalCallFailure(self.service_name, f"invalid credit data: {e}") from e
