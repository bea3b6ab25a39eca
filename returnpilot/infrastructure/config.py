"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # API
    api_version: str = "0.1.0"
    debug: bool = False
    cors_origins: list[str] = ["*"]

    # Storage: "memory" or "sql"
    store_backend: str = "memory"
    database_url: str = "postgresql+asyncpg://returnpilot:returnpilot_dev_password@db:5432/returnpilot"

    # Commerce platform (Shopify Admin REST)
    shopify_store: str | None = None
    shopify_access_token: str | None = None
    shopify_api_version: str = "2024-01"

    # Shipping aggregator (Shiprocket)
    shiprocket_email: str | None = None
    shiprocket_password: str | None = None
    shiprocket_base_url: str = "https://apiv2.shiprocket.in/v1/external"
    shiprocket_token_ttl_hours: int = 240
    shiprocket_pickup_location: str = "warehouse 1"

    # Return destination warehouse
    warehouse_name: str = "BURB MANUFACTURES PVT LTD"
    warehouse_address: str = "VILLAGE - BAIRAWAS, NEAR GOVT. SCHOOL"
    warehouse_city: str = "MAHENDERGARH"
    warehouse_state: str = "Haryana"
    warehouse_pincode: str = "123028"
    warehouse_country: str = "IN"
    warehouse_email: str = "returns@offcomfort.com"
    warehouse_phone: str = "9138514222"

    # Payment gateway (Razorpay)
    razorpay_key_id: str | None = None
    razorpay_key_secret: str | None = None
    razorpay_webhook_secret: str | None = None
    razorpay_base_url: str = "https://api.razorpay.com/v1"

    # Business rules
    processing_fee_amount: int = 10000
    fee_waiver_reasons: list[str] = Field(
        default_factory=lambda: ["defective", "damaged", "wrong_item"]
    )
    eligibility_window_days: int = 60

    # Reconciliation
    sync_interval_seconds: int = 0
    side_effect_claim_ttl_seconds: int = 300

    # Admin console
    admin_password: str = "dev-admin-password-change-in-production"
    admin_token_secret: str = "dev-admin-token-secret-change-in-production"
    admin_token_ttl_hours: int = 12

    # Outbound HTTP
    http_timeout_seconds: float = 15.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def commerce_configured(self) -> bool:
        return bool(self.shopify_store and self.shopify_access_token)

    @property
    def shipping_configured(self) -> bool:
        return bool(self.shiprocket_email and self.shiprocket_password)

    @property
    def payment_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)


settings = Settings()
