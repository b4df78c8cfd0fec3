"""Shared HTTP plumbing for the paid verification services"""

from typing import Any, Dict

import httpx

from waterfall_gateway.config import settings
from waterfall_gateway.domain.exceptions import ExternalCallFailure
from waterfall_gateway.infrastructure.observability.metrics import external_call_latency_histogram


class VerificationServiceClient:
    """
    POSTs JSON to one verification service and returns the decoded body.

    Subclasses set service_name and turn the body into a domain result.
    """

    service_name = "verification_service"

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.api_key = api_key if api_key is not None else settings.verification_api_key
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Raises:
            ExternalCallFailure: On timeout, HTTP errors, invalid JSON, or a body without success=true
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with external_call_latency_histogram.labels(service=self.service_name).time():
                    response = await client.post(f"{self.base_url}{path}", json=payload, headers=self._headers())
                response.raise_for_status()
                data = response.json()

            except httpx.TimeoutException as e:
                raise ExternalCallFailure(self.service_name, f"timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ExternalCallFailure(self.service_name, f"HTTP {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise ExternalCallFailure(self.service_name, f"request failed: {e}") from e
            except ValueError as e:
                raise ExternalCallFailure(self.service_name, f"invalid JSON: {e}") from e

        if not isinstance(data, dict) or data.get("success") is not True:
            raise ExternalCallFailure(self.service_name, "response did not report success")
        return data
