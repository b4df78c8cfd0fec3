"""Integration tests for API endpoints"""

from fastapi.testclient import TestClient

from waterfall_gateway.api.dependencies import get_credit_client, get_registry_client, get_verification_client
from waterfall_gateway.api.main import create_app
from waterfall_gateway.domain.budget import BudgetLedger
from waterfall_gateway.domain.exceptions import ExternalCallFailure


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["daily_budget_remaining"] == 200.0


def test_metrics_endpoint(client: TestClient, healthy_statement_text: str):
    """Test Prometheus metrics endpoint"""
    client.post("/v1/analysis", json={"statements": [healthy_statement_text]})

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "waterfall_analysis_total" in response.text
    assert "http_request_duration_seconds" in response.text


def test_request_id_header(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert client.get("/health").headers["X-Request-ID"]


def test_analysis_full_waterfall(client: TestClient, fake_service, healthy_statement_text: str):
    """Test POST /v1/analysis for a strong applicant"""
    response = client.post(
        "/v1/analysis",
        json={
            "statements": [healthy_statement_text],
            "application": {
                "business_name": "Acme Widgets LLC",
                "state": "OH",
                "business_start_date": "2018-01-15",
            },
            "as_of": "2024-06-15",
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["executive_summary"]["recommendation"] == "APPROVE"
    assert data["executive_summary"]["grade"] == "A+"
    assert data["executive_summary"]["risk_level"] == "VERY_LOW"
    assert data["external_apis_called"] == ["business_registry", "credit_check", "business_verification"]
    assert data["cost_analysis"]["total_cost"] == 45.0
    assert data["cost_analysis"]["budget_utilization"] == 90.0
    assert data["risk_analysis"][0]["transaction_count"] == 14
    assert data["criteria"]["should_proceed"] is True
    assert len(fake_service.calls) == 3


def test_analysis_spends_from_shared_ledger(client: TestClient, budget_ledger: BudgetLedger, healthy_statement_text: str):
    body = {"statements": [healthy_statement_text], "application": {"business_name": "Acme Widgets LLC"}}

    for _ in range(4):
        assert client.post("/v1/analysis", json=body).status_code == 200

    # 4 x $45 = $180; the fifth run can only afford the $5 and $15 checks
    data = client.post("/v1/analysis", json=body).json()

    assert data["cost_analysis"]["total_cost"] == 20.0
    assert [s["reason"] for s in data["skipped_checks"]] == ["DAILY_BUDGET_EXHAUSTED"]
    assert budget_ledger.remaining == 0.0


def test_analysis_risky_statement(client: TestClient, fake_service, risky_statement_text: str):
    response = client.post(
        "/v1/analysis",
        json={"statements": [risky_statement_text], "application": {"business_name": "Corner Deli Inc"}},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["executive_summary"]["recommendation"] == "DECLINE"
    assert data["external_apis_called"] == []
    assert data["cost_analysis"]["cost_savings"] == 45.0
    assert {s["reason"] for s in data["skipped_checks"]} == {"CRITERIA_NOT_MET"}
    high_nsf = next(a for a in data["alerts"] if a["code"] == "HIGH_NSF_COUNT")
    assert high_nsf["severity"] == "HIGH"
    assert high_nsf["data"] == {"nsf_count": 3, "threshold": 3}
    assert fake_service.calls == []


def test_analysis_with_caller_registry_data(client: TestClient, healthy_statement_text: str):
    response = client.post(
        "/v1/analysis",
        json={
            "statements": [healthy_statement_text],
            "application": {"state": "OH"},
            "registry_data": {"found": True, "status": "Revoked"},
        },
    )

    data = response.json()
    assert [a["code"] for a in data["alerts"]] == ["BUSINESS_INACTIVE_STATUS"]
    assert data["executive_summary"]["recommendation"] == "REVIEW"


def test_analysis_rejects_non_statement(client: TestClient):
    response = client.post("/v1/analysis", json={"statements": ["Thanks for your order! Your package ships soon."]})

    assert response.status_code == 422
    assert "did not resemble a bank statement" in response.json()["detail"]


def test_analysis_validates_request_body(client: TestClient):
    assert client.post("/v1/analysis", json={"statements": []}).status_code == 422
    assert client.post("/v1/analysis", json={}).status_code == 422


def test_external_failure_does_not_fail_request(fake_service_factory, healthy_statement_text: str):
    app = create_app(BudgetLedger(200.0))
    failing = fake_service_factory(error=ExternalCallFailure("business_registry", "HTTP 502"))
    working = fake_service_factory()
    app.dependency_overrides[get_registry_client] = lambda: failing
    app.dependency_overrides[get_credit_client] = lambda: working
    app.dependency_overrides[get_verification_client] = lambda: working
    client = TestClient(app)

    response = client.post(
        "/v1/analysis",
        json={"statements": [healthy_statement_text], "application": {"business_name": "Acme Widgets LLC"}},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["skipped_checks"] == [
        {"service": "business_registry", "reason": "CALL_FAILED", "detail": "business_registry: HTTP 502"}
    ]
    assert data["cost_analysis"]["total_cost"] == 40.0
    assert data["executive_summary"]["confidence_level"] == "HIGH"
