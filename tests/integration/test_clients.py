"""Integration tests for the verification HTTP clients"""

import json
from datetime import date

import httpx
import pytest

from waterfall_gateway.domain.exceptions import ExternalCallFailure
from waterfall_gateway.domain.models import ApplicationData
from waterfall_gateway.infrastructure.clients.credit import CreditCheckClient
from waterfall_gateway.infrastructure.clients.registry import BusinessRegistryClient
from waterfall_gateway.infrastructure.clients.verification import BusinessVerificationClient


def transport_returning(status_code: int = 200, body=None, seen: list | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if isinstance(body, (dict, list)):
            return httpx.Response(status_code, json=body)
        return httpx.Response(status_code, text=body or "")

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_registry_lookup_parses_response():
    seen = []
    transport = transport_returning(
        body={
            "success": True,
            "found": True,
            "status": "Active",
            "registration_date": "2018-03-01",
            "business_name": "ACME WIDGETS LLC",
        },
        seen=seen,
    )
    client = BusinessRegistryClient(base_url="http://registry.test", transport=transport)

    result = await client.lookup_business("Acme Widgets", "OH")

    assert result.success is True
    assert result.found is True
    assert result.registration_date == date(2018, 3, 1)
    assert result.matched_name == "ACME WIDGETS LLC"
    assert seen[0].url == "http://registry.test/registry/lookup"
    assert json.loads(seen[0].content) == {"business_name": "Acme Widgets", "state": "OH"}


@pytest.mark.asyncio
async def test_registry_lookup_not_found():
    transport = transport_returning(body={"success": True, "found": False})
    client = BusinessRegistryClient(base_url="http://registry.test", transport=transport)

    result = await client.lookup_business("Ghost Co")

    assert result.found is False
    assert result.registration_date is None


@pytest.mark.asyncio
async def test_registry_lookup_rejects_bad_date():
    transport = transport_returning(body={"success": True, "found": True, "registration_date": "03/01/2018"})
    client = BusinessRegistryClient(base_url="http://registry.test", transport=transport)

    with pytest.raises(ExternalCallFailure, match="invalid registry data"):
        await client.lookup_business("Acme Widgets")


@pytest.mark.asyncio
async def test_credit_check_sends_api_key():
    seen = []
    transport = transport_returning(body={"success": True, "score": "712", "report": {"tradelines": 3}}, seen=seen)
    client = CreditCheckClient(base_url="http://credit.test", transport=transport)
    client.api_key = "secret-key"

    result = await client.check_credit(ApplicationData(business_name="Acme Widgets", tax_id="12-3456789"))

    assert result.score == 712
    assert result.report == {"tradelines": 3}
    assert seen[0].headers["Authorization"] == "Bearer secret-key"
    assert json.loads(seen[0].content)["tax_id"] == "12-3456789"


@pytest.mark.asyncio
async def test_verification_result():
    transport = transport_returning(body={"success": True, "verified": True, "details": {"match": "exact"}})
    client = BusinessVerificationClient(base_url="http://verify.test", transport=transport)

    result = await client.verify_business("Acme Widgets", "OH")

    assert result.verified is True
    assert result.details == {"match": "exact"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code,body,reason",
    [
        (503, {"error": "unavailable"}, "HTTP 503"),
        (200, "<html>not json</html>", "invalid JSON"),
        (200, {"verified": True}, "did not report success"),
        (200, {"success": False, "verified": True}, "did not report success"),
        (200, ["not", "an", "object"], "did not report success"),
    ],
)
async def test_failures_raise_external_call_failure(status_code, body, reason):
    client = BusinessVerificationClient(base_url="http://verify.test", transport=transport_returning(status_code, body))

    with pytest.raises(ExternalCallFailure, match=reason) as exc_info:
        await client.verify_business("Acme Widgets")

    assert exc_info.value.service == "business_verification"


@pytest.mark.asyncio
async def test_timeout_raises_external_call_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = CreditCheckClient(base_url="http://credit.test", timeout=0.5, transport=httpx.MockTransport(handler))

    with pytest.raises(ExternalCallFailure, match="timeout after 0.5s"):
        await client.check_credit(ApplicationData(business_name="Acme Widgets"))


@pytest.mark.asyncio
async def test_connection_error_raises_external_call_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = BusinessRegistryClient(base_url="http://registry.test", transport=httpx.MockTransport(handler))

    with pytest.raises(ExternalCallFailure, match="request failed"):
        await client.lookup_business("Acme Widgets")
