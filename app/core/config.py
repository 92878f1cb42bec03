"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


DEFAULT_TIERS_CONFIG = """
{
  "free": {
    "name": "Free",
    "entitlements": {"notifications_per_day": 5, "features": ["BASIC_WEBPUSH", "COMMUNITY_SUPPORT"]}
  },
  "premium": {
    "name": "Premium",
    "pricing": {
      "monthly": {"price_cents": 1000, "currency": "USD"},
      "quarterly": {"price_cents": 2500, "currency": "USD"},
      "yearly": {"price_cents": 9000, "currency": "USD"}
    },
    "entitlements": {
      "notifications_per_day": 50,
      "features": ["BASIC_WEBPUSH", "COMMUNITY_SUPPORT", "ADVANCED_FILTERING", "PRIORITY_SUPPORT", "CUSTOM_TEMPLATES"]
    }
  },
  "premium_plus": {
    "name": "Premium+",
    "pricing": {
      "monthly": {"price_cents": 2000, "currency": "USD"},
      "quarterly": {"price_cents": 5000, "currency": "USD"},
      "yearly": {"price_cents": 18000, "currency": "USD"}
    },
    "entitlements": {
      "notifications_per_day": 500,
      "features": [
        "BASIC_WEBPUSH", "COMMUNITY_SUPPORT", "ADVANCED_FILTERING", "PRIORITY_SUPPORT",
        "CUSTOM_TEMPLATES", "API_ACCESS", "WEBHOOK", "ANALYTICS"
      ]
    }
  }
}
"""


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Connection strings have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # CORS: comma-separated (e.g. http://localhost:3000,https://app.example.com). Empty = default list in code.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # STORAGE BACKEND
    # ===========================================
    storage_backend: str = "sql"  # sql | redis
    redis_key_prefix: str = "premium"

    # ===========================================
    # LIGHTNING (rate oracle, invoices, settlement status)
    # ===========================================
    lightning_api_base: str = "https://pay.ariton.app"
    settlement_invoice_description: str = "NostriaPremium"
    sats_per_btc: int = 100_000_000

    # ===========================================
    # BILLING
    # ===========================================
    invoice_ttl_seconds: int = 15 * 60
    tiers_config: str = DEFAULT_TIERS_CONFIG
    # Non-production only: pending invoices older than N seconds count as settled.
    dev_auto_payment_after_seconds: int | None = None

    # ===========================================
    # GRANT REPAIR (celery beat)
    # ===========================================
    grant_repair_interval_minutes: int = 10
    grant_repair_grace_seconds: int = 60
    grant_repair_batch_size: int = 100

    # ===========================================
    # ADMIN API
    # ===========================================
    admin_api_key: str | None = None

    # Payment endpoints rate limit (per client IP)
    payment_rate_limit_requests: int = 30
    payment_rate_limit_window_seconds: int = 60

    # ===========================================
    # INTERNAL SERVICES
    # ===========================================
    http_client_timeout: float = 10.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in ("sql", "redis"):
            raise ValueError("storage_backend must be 'sql' or 'redis'")
        return value

    @field_validator("invoice_ttl_seconds")
    @classmethod
    def validate_invoice_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("invoice_ttl_seconds must be positive")
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
