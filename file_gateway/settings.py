from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .access import AccessPolicy, parse_domains


class GatewaySettings(BaseSettings):
    """Configuration for the backends the gateway reads from."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    bucket_endpoint: str | None = Field(
        default=None,
        validation_alias="FILE_GATEWAY_BUCKET_ENDPOINT",
    )
    bucket_name: str | None = Field(
        default=None,
        validation_alias="FILE_GATEWAY_BUCKET_NAME",
    )
    bucket_access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "FILE_GATEWAY_BUCKET_ACCESS_KEY",
            "AWS_ACCESS_KEY_ID",
        ),
    )
    bucket_secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "FILE_GATEWAY_BUCKET_SECRET_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    bucket_region: str = Field(
        default="auto",
        validation_alias="FILE_GATEWAY_BUCKET_REGION",
    )
    telegram_api: str = Field(
        default="https://api.telegram.org",
        validation_alias="FILE_GATEWAY_TELEGRAM_API",
    )
    telegram_bot_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "FILE_GATEWAY_TG_BOT_TOKEN",
            "TG_BOT_TOKEN",
        ),
    )
    chunk_max_attempts: int = Field(
        default=3,
        validation_alias="FILE_GATEWAY_CHUNK_MAX_ATTEMPTS",
    )
    chunk_retry_delay: float = Field(
        default=0.5,
        validation_alias="FILE_GATEWAY_CHUNK_RETRY_DELAY",
    )
    static_base_url: str | None = Field(
        default=None,
        validation_alias="FILE_GATEWAY_STATIC_BASE_URL",
    )
    kv_api_base: str = Field(
        default="https://api.cloudflare.com/client/v4",
        validation_alias="FILE_GATEWAY_KV_API_BASE",
    )
    kv_account_id: str | None = Field(
        default=None,
        validation_alias="FILE_GATEWAY_KV_ACCOUNT_ID",
    )
    kv_namespace_id: str | None = Field(
        default=None,
        validation_alias="FILE_GATEWAY_KV_NAMESPACE_ID",
    )
    kv_api_token: str | None = Field(
        default=None,
        validation_alias="FILE_GATEWAY_KV_API_TOKEN",
    )

    @property
    def bucket_enabled(self) -> bool:
        """Check if the gateway-owned bucket store is configured."""
        return bool(self.bucket_name)

    @property
    def kv_enabled(self) -> bool:
        """Check if the remote metadata store is configured."""
        return bool(self.kv_account_id and self.kv_namespace_id and self.kv_api_token)


class AccessSettings(BaseSettings):
    """Site-wide access policy."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    allowed_domains: str = Field(
        default="",
        validation_alias="FILE_GATEWAY_ALLOWED_DOMAINS",
    )
    whitelist_mode: bool = Field(
        default=False,
        validation_alias="FILE_GATEWAY_WHITELIST_MODE",
    )

    def to_policy(self) -> AccessPolicy:
        return AccessPolicy(
            allowed_domains=parse_domains(self.allowed_domains),
            whitelist_mode=self.whitelist_mode,
        )


def load_gateway_settings_from_env() -> GatewaySettings:
    """Load backend settings from environment variables.

    Returns:
        GatewaySettings instance populated from environment variables.
    """
    return GatewaySettings()


def load_access_settings_from_env() -> AccessSettings:
    """Load the access policy settings from environment variables.

    Returns:
        AccessSettings instance populated from environment variables.
    """
    return AccessSettings()


def load_access_policy() -> AccessPolicy:
    return load_access_settings_from_env().to_policy()
