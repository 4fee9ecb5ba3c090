"""Application configuration using pydantic-settings.

Read everything through ``settings``, never os.getenv(). Integration
credentials (Stripe, Shopify, Google Maps) default to empty strings so the
service starts in development without them; the affected features report
"not configured".
"""

import warnings
from decimal import Decimal
from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "change-me-in-production"
LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./data/storefront.db"

    # Security
    secret_key: str = DEFAULT_SECRET_KEY
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 240

    # Admin console login (bcrypt hash of the admin password)
    admin_email: str = "admin@example.com"
    admin_password_hash: str = ""

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # ==========================================================================
    # Stripe
    # ==========================================================================
    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_currency: str = "usd"

    # ==========================================================================
    # Shopify Admin API
    # ==========================================================================
    shopify_store_domain: str = ""
    shopify_access_token: str = ""
    shopify_api_version: str = "2025-01"
    shopify_products_per_collection: int = 50
    catalog_cache_ttl_seconds: int = 300

    # ==========================================================================
    # Delivery pricing
    # ==========================================================================
    google_maps_api_key: str = ""
    store_address: str = "7600 North Lamar Blvd Austin, TX 78752"
    sales_tax_rate: Decimal = Decimal("0.0825")
    standard_delivery_fee: Decimal = Decimal("20.00")
    free_delivery_threshold: Decimal = Decimal("200")
    delivery_percentage_rate: Decimal = Decimal("0.10")

    # Shopper session state
    session_cookie_name: str = "storefront_session"
    session_state_ttl_days: int = 30
    last_order_ttl_days: int = 30

    @field_validator("shopify_store_domain")
    @classmethod
    def normalize_store_domain(cls, v: str) -> str:
        """Accept ``https://party.myshopify.com/`` as well as the bare host."""
        return v.strip().removeprefix("https://").removeprefix("http://").rstrip("/")

    @model_validator(mode="after")
    def check_production_secrets(self) -> "Settings":
        """Refuse to run outside debug with a guessable JWT key or unsigned webhooks."""
        weak_key = self.secret_key == DEFAULT_SECRET_KEY or len(self.secret_key) < 32
        if weak_key and self.debug:
            warnings.warn("SECRET_KEY is the default or shorter than 32 characters", UserWarning, stacklevel=2)
        elif weak_key:
            raise ValueError("SECRET_KEY must be set to at least 32 characters when DEBUG is off")
        if not self.debug and self.stripe_secret_key and not self.stripe_webhook_secret:
            raise ValueError("STRIPE_WEBHOOK_SECRET is required when Stripe is enabled and DEBUG is off")
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Storefront origins allowed to call the API; local origins are dropped in production."""
        if self.cors_origins == "*":
            return ["*"]
        origins = [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        if self.debug:
            return origins
        return [o for o in origins if not any(host in o for host in LOCAL_HOSTS)]

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def shopify_configured(self) -> bool:
        return bool(self.shopify_store_domain and self.shopify_access_token)

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True
    # Set when running behind the reverse proxy so X-Forwarded-For is honored
    trust_forwarded_for: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
