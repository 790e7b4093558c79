"""
Pushwire configuration.
All secrets/tunables come from environment variables.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # --- App ---
    app_name: str = "Pushwire"
    debug: bool = False
    base_url: str = "https://pushwire.dev"

    # --- Database ---
    # In-memory by default: state lives as long as the process does.
    database_url: str = "sqlite+aiosqlite:///:memory:"

    # --- Web Push (VAPID) ---
    vapid_public_key: str = ""
    vapid_private_key: str = ""  # empty = ephemeral key pair generated on first use
    vapid_subject: str = "mailto:ops@pushwire.dev"

    # --- Delivery ---
    push_ttl_seconds: int = 86400
    delivery_timeout_seconds: float = 10.0  # per recipient
    delivery_concurrency: int = 100

    # --- Geo enrichment ---
    geo_lookup_url: str = ""  # e.g. "https://ipapi.co"; empty disables the lookup
    geo_lookup_timeout_seconds: float = 2.0

    # --- Rate limits ---
    rate_limit_per_ip_per_minute: int = 60
    rate_limit_per_api_key_per_minute: int = 120

    # --- Notification defaults ---
    default_icon: str = "/icon.png"
    default_click_url: str = "/"

    # --- CORS ---
    # Subscribe and click endpoints are called from customer sites.
    cors_allow_origins: list[str] = ["*"]

    model_config = {"env_prefix": "PW_", "env_file": ".env"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
