"""
Storefront service configuration.
"""
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


def find_env_file() -> str:
    """Find .env file - check local dir, then project root."""
    local_env = Path(".env")
    root_env = Path("../.env")

    if local_env.exists():
        return str(local_env)
    elif root_env.exists():
        return str(root_env)
    return ".env"  # default


class Settings(BaseSettings):
    """Service settings from environment variables."""

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    currency: str = "usd"
    allowed_shipping_countries: str = "US"

    # Blob storage for uploaded and stylized images
    blob_read_write_token: str = ""
    blob_api_url: str = "https://blob.vercel-storage.com"

    # Stylization sidecar - turns a photo into an engraving preview
    stylizer_service_url: str = "http://stylizer:8080"
    stylizer_timeout: float = 120.0  # image models can be slow

    # Outbound HTTP (image fetches, blob uploads)
    http_timeout: float = 30.0

    # Mail
    gmail_user: str = ""
    gmail_app_password: str = ""
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    mail_from_name: str = "NITTANY CRAFT"
    notification_emails: str = ""  # comma-separated internal recipients

    # Pricing
    test_mode_price: Decimal = Decimal("0.51")
    metadata_value_limit: int = 500  # Stripe limit per metadata value
    default_return_origin: str = "https://your-domain.vercel.app"

    # Catalog
    fixed_product_name: str = "Old Main Classic"
    fixed_product_description: str = "Signature Penn State landmark laser engraving"
    fixed_product_price: Decimal = Decimal("50.00")
    custom_product_name: str = "Custom Laser Engraving"
    custom_product_description: str = "Custom photo laser-engraved on wood"
    custom_product_price: Decimal = Decimal("55.00")

    # Logging
    log_level: str = "info"
    log_path: str = ""  # e.g. /app/logs/storefront.log

    # Version
    version: str = "1.0.0"

    model_config = SettingsConfigDict(
        env_file=find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def notification_recipients(self) -> list[str]:
        """Internal operations recipients. An empty list is a valid state."""
        return [e.strip() for e in self.notification_emails.split(",") if e.strip()]

    @property
    def shipping_countries(self) -> list[str]:
        return [c.strip().upper() for c in self.allowed_shipping_countries.split(",") if c.strip()]

    @property
    def is_stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def is_webhook_configured(self) -> bool:
        return bool(self.stripe_secret_key and self.stripe_webhook_secret)

    @property
    def is_blob_configured(self) -> bool:
        return bool(self.blob_read_write_token)

    @property
    def is_mail_configured(self) -> bool:
        return bool(self.gmail_user and self.gmail_app_password)

    def require_stripe(self):
        if not self.is_stripe_configured:
            raise ConfigurationError("STRIPE_SECRET_KEY not configured")

    def require_webhook_secret(self):
        if not self.is_webhook_configured:
            raise ConfigurationError("Stripe not configured")

    def require_blob_token(self):
        if not self.is_blob_configured:
            raise ConfigurationError(
                "Blob storage not configured. Add BLOB_READ_WRITE_TOKEN to environment variables."
            )

    def require_mail(self):
        if not self.is_mail_configured:
            raise ConfigurationError("Email service not configured")

    def get_config_summary(self) -> dict:
        """Get a summary of configuration (without sensitive data)."""
        return {
            "stripe_configured": self.is_stripe_configured,
            "webhook_configured": self.is_webhook_configured,
            "blob_configured": self.is_blob_configured,
            "mail_configured": self.is_mail_configured,
            "notification_recipients": len(self.notification_recipients),
            "stylizer_service_url": self.stylizer_service_url,
            "currency": self.currency,
            "version": self.version,
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
