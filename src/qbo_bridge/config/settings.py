"""Configuration settings for the QBO bridge."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # QuickBooks Online API
    qbo_api_url: str = Field(
        default="https://quickbooks.api.intuit.com", validation_alias="QBO_API_URL"
    )
    qbo_minor_version: int = Field(default=75, validation_alias="QBO_MINOR_VERSION")
    qbo_timeout: float = Field(default=60.0, validation_alias="QBO_TIMEOUT")
    qbo_max_retries: int = Field(default=3, validation_alias="QBO_MAX_RETRIES")
    qbo_retry_base_delay: float = Field(
        default=1.0, validation_alias="QBO_RETRY_BASE_DELAY"
    )

    # OAuth2 app credentials
    qbo_client_id: str = Field(default="", validation_alias="CLIENT_ID")
    qbo_client_secret: SecretStr = Field(
        default=SecretStr(""), validation_alias="CLIENT_SECRET"
    )
    qbo_auth_url: str = Field(
        default="https://appcenter.intuit.com/connect/oauth2",
        validation_alias="QBO_AUTH_URL",
    )
    qbo_token_url: str = Field(
        default="https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer",
        validation_alias="QBO_TOKEN_URL",
    )
    qbo_scope: str = Field(
        default="com.intuit.quickbooks.accounting openid profile email phone address",
        validation_alias="QBO_SCOPE",
    )
    public_url: str = Field(default="", validation_alias="PUBLIC_URL")

    # Pre-authorized connections (MAIN / FROM / TO)
    main_access_token: str = Field(default="", validation_alias="QBO_MAIN_ACCESS_TOKEN")
    main_refresh_token: str = Field(default="", validation_alias="QBO_MAIN_REFRESH_TOKEN")
    main_realm_id: str = Field(default="", validation_alias="QBO_MAIN_REALM_ID")
    from_access_token: str = Field(default="", validation_alias="QBO_FROM_ACCESS_TOKEN")
    from_refresh_token: str = Field(default="", validation_alias="QBO_FROM_REFRESH_TOKEN")
    from_realm_id: str = Field(default="", validation_alias="QBO_FROM_REALM_ID")
    to_access_token: str = Field(default="", validation_alias="QBO_TO_ACCESS_TOKEN")
    to_refresh_token: str = Field(default="", validation_alias="QBO_TO_REFRESH_TOKEN")
    to_realm_id: str = Field(default="", validation_alias="QBO_TO_REALM_ID")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
