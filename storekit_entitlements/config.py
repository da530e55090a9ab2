"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SUPPORTED_JWS_ALGORITHMS = ("ES256", "RS256", "HS256")


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service identity
    service_name: str = "storekit-entitlements"
    api_title: str = "StoreKit Entitlements"
    api_version: str = "0.1.0"
    api_description: str = "In-app purchase entitlement manager"
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Store emulator transport
    store_base_url: str = "http://127.0.0.1:8080"
    store_request_timeout: float = 30.0
    store_api_key_id: str = ""  # Key ID for store API bearer tokens
    store_api_issuer_id: str = ""  # Issuer ID for store API bearer tokens
    store_api_private_key: str = ""  # Signing key (.p8 contents, base64 or plain)
    store_api_algorithm: str = "ES256"

    # Signed transaction verification - NO DEFAULT KEY
    bundle_id: str = "com.myapp.storekitdemo"
    verification_key: str = ""  # Public key (PEM) or shared secret for HS256
    verification_algorithm: str = "ES256"

    # Entitlement policy
    coin_grant_amount: int = 100
    optimistic_intro_eligibility: bool = True  # Undetermined eligibility shows the offer
    listener_retry_delay_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        Unverifiable transactions must never grant anything, so the
        process refuses to start without a verification key.
        """
        errors: list[str] = []

        if not self.verification_key:
            errors.append("VERIFICATION_KEY is required but empty or missing")

        if self.verification_algorithm.upper() not in _SUPPORTED_JWS_ALGORITHMS:
            errors.append(
                f"VERIFICATION_ALGORITHM must be one of {', '.join(_SUPPORTED_JWS_ALGORITHMS)}, "
                f"got: {self.verification_algorithm}"
            )

        if not self.bundle_id:
            errors.append("BUNDLE_ID is required but empty or missing")

        if self.coin_grant_amount <= 0:
            errors.append(f"COIN_GRANT_AMOUNT must be positive, got: {self.coin_grant_amount}")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
