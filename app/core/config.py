from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Shopify app credentials
    shopify_api_key: str = ""
    shopify_api_secret: str = ""
    shopify_scopes: str = "write_script_tags,read_script_tags"
    shopify_api_version: str = "2024-10"
    oauth_online: bool = False  # offline tokens survive the merchant logging out
    oauth_state_ttl_seconds: int = 600

    # Server
    base_url: str = "http://localhost:8000"
    environment: str = "development"
    version: str = "2.0.0"

    # Storage backends
    settings_backend: Literal["supabase", "memory", "metafield"] = "supabase"
    session_backend: Literal["supabase", "memory"] = "supabase"
    oauth_state_backend: Literal["redis", "memory"] = "redis"

    # Supabase
    supabase_url: str = ""
    supabase_secret_key: str = ""

    # Redis (OAuth state nonces)
    redis_url: str = "redis://localhost:6379/0"

    # Billing
    billing_required: bool = False
    billing_plan_name: str = "Free Delivery Bar"
    billing_price: float = 4.99
    billing_trial_days: int = 7
    billing_test: bool = True

    # App proxy
    verify_app_proxy_signature: bool = True

    # Cart banner runtime (embedded into the storefront script)
    cart_snapshot_max_age_hours: float = 24
    cart_debounce_ms: int = 300
    cart_read_timeout_ms: int = 5000
    cart_poll_interval_ms: int = 10000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def scopes(self) -> list[str]:
        return [s.strip() for s in self.shopify_scopes.split(",") if s.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def get_public_base_url() -> str:
    """Public base URL of the app, without a trailing slash."""
    return settings.base_url.rstrip("/")


def get_callback_url() -> str:
    """OAuth redirect URI registered with Shopify."""
    return f"{get_public_base_url()}/auth/callback"
