"""Configuration management for Spigot using Pydantic Settings."""

from decimal import Decimal
from typing import Annotated

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class SpigotConfig(BaseSettings):
    """Spigot service configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # Network
    rpc_endpoint: str = Field(alias="SPIGOT_RPC_ENDPOINT")
    block_explorer_url: str | None = Field(default=None, alias="SPIGOT_BLOCK_EXPLORER_URL")
    rpc_timeout_seconds: float = Field(default=30.0, alias="SPIGOT_RPC_TIMEOUT_SECONDS", gt=0)

    # Wallet
    wallet_private_key: SecretStr | None = Field(default=None, alias="SPIGOT_WALLET_PRIVATE_KEY")
    wallet_private_key_file: str | None = Field(
        default=None, alias="SPIGOT_WALLET_PRIVATE_KEY_FILE"
    )

    # Grant policy
    grant_amount: Decimal = Field(default=Decimal("1"), alias="SPIGOT_GRANT_AMOUNT", gt=0)
    window_hours: float = Field(default=24.0, alias="SPIGOT_WINDOW_HOURS", gt=0)
    window_cap: Decimal = Field(default=Decimal("1"), alias="SPIGOT_WINDOW_CAP", gt=0)

    # Dispatch queue
    max_queue_depth: int = Field(default=100, alias="SPIGOT_MAX_QUEUE_DEPTH", gt=0)
    submit_timeout_seconds: float = Field(default=30.0, alias="SPIGOT_SUBMIT_TIMEOUT_SECONDS", gt=0)
    max_submit_attempts: int = Field(default=5, alias="SPIGOT_MAX_SUBMIT_ATTEMPTS", ge=1)
    backoff_base_seconds: float = Field(default=1.0, alias="SPIGOT_BACKOFF_BASE_SECONDS", ge=0)
    backoff_multiplier: float = Field(default=2.0, alias="SPIGOT_BACKOFF_MULTIPLIER", ge=1)
    backoff_max_seconds: float = Field(default=60.0, alias="SPIGOT_BACKOFF_MAX_SECONDS", ge=0)
    confirm_timeout_seconds: float = Field(
        default=300.0, alias="SPIGOT_CONFIRM_TIMEOUT_SECONDS", gt=0
    )
    confirm_poll_seconds: float = Field(default=5.0, alias="SPIGOT_CONFIRM_POLL_SECONDS", gt=0)

    # Operators
    operator_user_ids: Annotated[list[str], NoDecode] = Field(
        default_factory=list, alias="SPIGOT_OPERATOR_USER_IDS"
    )
    alert_channel: str | None = Field(default=None, alias="SPIGOT_ALERT_CHANNEL")

    # Slack
    slack_bot_token: SecretStr | None = Field(default=None, alias="SLACK_BOT_TOKEN")
    slack_app_token: SecretStr | None = Field(default=None, alias="SLACK_APP_TOKEN")

    # Redis
    redis_url: str | None = Field(default="redis://localhost:6379", alias="REDIS_URL")

    # Observability
    metrics_port: int = Field(default=8080, alias="SPIGOT_METRICS_PORT", ge=1, le=65535)
    log_level: str = Field(default="INFO", alias="SPIGOT_LOG_LEVEL")
    log_format: str = Field(default="json", alias="SPIGOT_LOG_FORMAT")

    @field_validator("operator_user_ids", mode="before")
    @classmethod
    def _split_operator_ids(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @model_validator(mode="after")
    def _check_cap_covers_grant(self) -> "SpigotConfig":
        if self.window_cap < self.grant_amount:
            raise ValueError("SPIGOT_WINDOW_CAP must be at least SPIGOT_GRANT_AMOUNT")
        return self

    @property
    def window_seconds(self) -> float:
        return self.window_hours * 3600
