"""
Configuration management for the order tracking coordinator.

Loads settings from .env via pydantic-settings.

Notes:
    - Endpoint paths are templates formatted with the order id.
    - validate_production_settings() enforces https upstreams and strict CORS
      in production.
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Order API ───────────────────────────────────────────────────
    api_base_url: str = "http://localhost:4000/api"
    http_timeout_seconds: float = 15.0

    order_path: str = "/orders/{order_id}"
    custom_order_path: str = "/custom/orders/{order_id}"
    cancel_path: str = "/orders/{order_id}/cancel"
    payment_intent_path: str = "/orders/pay/create"
    payment_verify_path: str = "/orders/pay/verify"
    custom_payment_intent_path: str = "/custom/pay"
    custom_payment_verify_path: str = "/custom/pay/verify"

    # ── Realtime channel (Socket.IO) ────────────────────────────────
    realtime_url: str = "http://localhost:4000"
    realtime_connect_timeout_seconds: float = 10.0

    # ── Sync policy ─────────────────────────────────────────────────
    poll_interval_seconds: float = 30.0
    max_fetch_retries: int = 3

    # ── Payment gateway ─────────────────────────────────────────────
    gateway_script_url: str = "https://checkout.razorpay.com/v1/checkout.js"
    gateway_key_id: str = ""             # used when the intent omits keyId
    gateway_currency: str = "INR"
    checkout_brand_name: str = "Copad"
    checkout_theme_color: str = "#2563eb"

    # ── Order actions ───────────────────────────────────────────────
    support_chat_url: str = "https://wa.me/910000000000"
    receipts_dir: str = "data/receipts"

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup. Raises ValueError in production when an
        upstream is plain http, CORS is open, or no gateway key is set.
        """
        if self.environment == "production":
            if not self.api_base_url.startswith("https://"):
                raise ValueError("API_BASE_URL must use https in production.")
            if not self.realtime_url.startswith("https://"):
                raise ValueError("REALTIME_URL must use https in production.")
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.gateway_key_id:
                raise ValueError(
                    "GATEWAY_KEY_ID must be set in production. "
                    "It is the fallback checkout key when an intent omits keyId."
                )
            logger.info("Production settings validated")
        else:
            warnings = []
            if not self.api_base_url.startswith("https://"):
                warnings.append(f"API_BASE_URL is not https ({self.api_base_url})")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            if not self.gateway_key_id:
                warnings.append("GATEWAY_KEY_ID not set (intents must carry keyId)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
