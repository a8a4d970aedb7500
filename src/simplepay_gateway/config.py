"""Configuration management for the SimplePay gateway adapter."""

from dataclasses import dataclass

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SANDBOX_API_URL = "https://sandbox.simplepay.hu/payment/v2"
LIVE_API_URL = "https://secure.simplepay.hu/payment/v2"


class SimplePaySettings(BaseModel):
    """Processor account settings (env: SIMPLEPAY__<FIELD>)."""

    merchant_id: str = Field(default="", description="SimplePay merchant account ID")
    secret_key: str = Field(default="", description="SimplePay merchant secret key")
    sandbox: bool = Field(default=True, description="Use the sandbox environment")
    debug: bool = Field(default=False, description="Verbose gateway logging")
    timeout_seconds: float = Field(default=60.0, description="Processor request timeout")
    sdk_version: str = Field(
        default="SimplePayGateway_1.0.0",
        description="SDK version tag sent with every request",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    service_name: str = Field(default="simplepay-gateway", description="Service name")

    # Host platform pages
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL the processor redirects browsers back to",
    )
    success_page_url: str = Field(
        default="http://localhost:8000/donation/success",
        description="Default page after a successful payment",
    )
    failure_page_url: str = Field(
        default="http://localhost:8000/donation/failed",
        description="Default page after a failed, cancelled or timed out payment",
    )

    # Processor
    simplepay: SimplePaySettings = Field(default_factory=SimplePaySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )


@dataclass(frozen=True)
class GatewayConfig:
    """
    Immutable processor configuration passed into each component.

    Components never read the global settings object directly, so tests and
    multi-merchant hosts can build as many configs as they need.
    """

    merchant_id: str
    secret_key: str
    sandbox: bool = True
    debug: bool = False
    timeout_seconds: float = 60.0
    sdk_version: str = "SimplePayGateway_1.0.0"

    @property
    def api_base_url(self) -> str:
        """Processor API base URL for the selected environment."""
        return SANDBOX_API_URL if self.sandbox else LIVE_API_URL

    @classmethod
    def from_settings(cls, source: "Settings | None" = None) -> "GatewayConfig":
        """Build a config from application settings (defaults to the global instance)."""
        source = source or settings
        return cls(
            merchant_id=source.simplepay.merchant_id,
            secret_key=source.simplepay.secret_key,
            sandbox=source.simplepay.sandbox,
            debug=source.simplepay.debug,
            timeout_seconds=source.simplepay.timeout_seconds,
            sdk_version=source.simplepay.sdk_version,
        )


# Global settings instance
settings = Settings()
