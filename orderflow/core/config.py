from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except Exception:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")

    # Persistence: "mongo" in deployments, "memory" for local runs and tests
    storage_backend: str = Field(default="mongo", alias="STORAGE_BACKEND")
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="orderflow", alias="MONGODB_DB_NAME")

    # Redis (ARQ worker queue)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Shopify
    shopify_webhook_secret: str = Field(default="", alias="SHOPIFY_WEBHOOK_SECRET")

    # Qikink
    qikink_api_base: str = Field(default="https://api.qikink.com/v1", alias="QIKINK_API_BASE")
    qikink_api_key: str = Field(default="", alias="QIKINK_API_KEY")
    qikink_merchant_id: str = Field(default="", alias="QIKINK_MERCHANT_ID")
    qikink_webhook_secret: str = Field(default="", alias="QIKINK_WEBHOOK_SECRET")
    qikink_timeout_seconds: float = Field(default=15.0, alias="QIKINK_TIMEOUT_SECONDS")
    qikink_sync_max_tries: int = Field(default=5, alias="QIKINK_SYNC_MAX_TRIES")

    # Razorpay
    razorpay_key_id: str = Field(default="", alias="RAZORPAY_KEY_ID")
    razorpay_key_secret: str = Field(default="", alias="RAZORPAY_KEY_SECRET")
    razorpay_webhook_secret: str = Field(default="", alias="RAZORPAY_WEBHOOK_SECRET")

    # Legacy Printful/Printify webhook
    print_webhook_secret: str = Field(default="", alias="PRINT_WEBHOOK_SECRET")

    # SMTP (order notifications)
    smtp_host: str = Field(default="", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_user: str = Field(default="", alias="SMTP_USER")
    smtp_password: str = Field(default="", alias="SMTP_PASSWORD")
    smtp_from: str = Field(default="", alias="SMTP_FROM")

    # Reconciliation
    reconcile_max_retries: int = Field(default=5, alias="RECONCILE_MAX_RETRIES")
    fingerprint_history: int = Field(default=100, alias="FINGERPRINT_HISTORY")
    webhook_event_ttl_seconds: int = Field(default=7 * 24 * 3600, alias="WEBHOOK_EVENT_TTL_SECONDS")
    email_max_tries: int = Field(default=5, alias="EMAIL_MAX_TRIES")
    retry_poll_seconds: float = Field(default=30.0, alias="RETRY_POLL_SECONDS")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def qikink_signing_secret(self) -> str:
        """Dedicated webhook secret, else the API key Qikink signs with by default."""
        return self.qikink_webhook_secret or self.qikink_api_key


@lru_cache
def get_settings() -> Settings:
    return Settings()
