"""
App configuration — credentials and tuning from environment (no hardcoded secrets).

Load from .env via pydantic_settings. In production, set ENVIRONMENT=production
so required secrets are validated at startup.
"""
from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings from environment. No defaults for secrets in production."""

    database_url: str = "sqlite:///./erp_mirror.db"  # Use postgresql://... for production
    db_pool_size: int = 5
    db_max_overflow: int = 0
    redis_url: str = ""  # empty: token cache and tenant locks stay in-process
    environment: str = "development"  # development | production (production validates secrets)
    log_level: str = "INFO"

    # Remote ERP gateway
    erp_production_url: str = "https://api.sankhya.com.br"
    erp_sandbox_url: str = "https://api.sandbox.sankhya.com.br"
    erp_auth_timeout_seconds: float = 20.0  # must stay below token_lock_ttl_seconds
    erp_request_timeout_seconds: float = 60.0

    # Bearer token lifecycle
    token_ttl_seconds: int = 20 * 60
    token_safety_margin_seconds: int = 120
    token_lock_ttl_seconds: int = 30
    token_lock_wait_seconds: float = 25.0
    token_lock_poll_seconds: float = 0.5
    auth_max_retries: int = 3
    auth_retry_delay_seconds: float = 1.0

    # Paginated loading
    fetch_page_delay_seconds: float = 0.5
    fetch_renewal_delay_seconds: float = 1.0
    fetch_max_renewals_per_page: int = 3
    fetch_request_retries: int = 3
    fetch_retry_delay_seconds: float = 2.0

    # Reconciliation
    reconcile_batch_size: int = 100

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_poll_seconds: int = 60
    table_max_attempts: int = 3
    table_retry_backoff_seconds: float = 2.0
    default_sync_interval_minutes: int = 120

    # Operational API
    admin_api_key: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @model_validator(mode="after")
    def validate_token_lock_ttl(self):
        """The tenant lock must outlive the auth call it guards."""
        if self.erp_auth_timeout_seconds >= self.token_lock_ttl_seconds:
            raise ValueError("ERP_AUTH_TIMEOUT_SECONDS must be lower than TOKEN_LOCK_TTL_SECONDS")
        return self

    @model_validator(mode="after")
    def validate_production_secrets(self):
        """Fail fast in production if required credentials are missing."""
        if self.environment != "production":
            return self
        if not self.admin_api_key:
            raise ValueError("In production, ADMIN_API_KEY must be set in .env")
        if self.database_url.startswith("sqlite"):
            raise ValueError("In production, DATABASE_URL must point to a server database")
        return self


settings = Settings()
