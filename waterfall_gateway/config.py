"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Service
    service_name: str = "waterfall-gateway"
    log_level: str = "INFO"

    # External verification services
    registry_api_base: str = "http://localhost:8101"
    credit_api_base: str = "http://localhost:8102"
    verification_api_base: str = "http://localhost:8103"
    verification_api_key: str | None = None

    # HTTP Client
    http_timeout_seconds: float = 5.0
    external_call_timeout_seconds: float = 10.0  # Hard ceiling per phase-3 call, timeouts count as failures

    # Budgets (USD)
    daily_budget: float = 200.0
    per_analysis_budget: float = 50.0

    # Service prices (USD) and internal-score gates, cheapest first
    registry_lookup_cost: float = 5.0
    credit_check_cost: float = 15.0
    business_verification_cost: float = 25.0
    registry_lookup_min_score: int = 550
    credit_check_min_score: int = 650
    business_verification_min_score: int = 700

    # Phase 2 criteria
    criteria_min_internal_score: int = 550
    criteria_min_transaction_count: int = 10
    criteria_min_statement_days: int = 28
    criteria_min_average_balance: float = 1000.0
    criteria_max_risk_level: str = "MEDIUM"
    criteria_max_nsf_count: int = 3
    criteria_pass_threshold: float = 0.70

    # Phase 4 consolidation
    max_score_adjustment: int = 50


settings = Settings()
