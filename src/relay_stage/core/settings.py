"""Runtime configuration for the Relay service.

Every option is read from an upper-case environment variable (or ``.env``)
through pydantic-settings; ``settings`` is the process-wide instance.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Relay configuration. Only ``SECRET_KEY`` has no default."""

    # Service
    app_name: str = Field(default="Relay Stage", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="DEBUG")

    # Bearer tokens
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Durable message store
    database_url: str = Field(default="sqlite:///./relay.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Broadcast store
    broadcast_backend: Literal["memory", "redis"] = Field(
        default="memory",
        alias="BROADCAST_BACKEND",
    )
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    broadcast_key_prefix: str = Field(default="relay:", alias="BROADCAST_KEY_PREFIX")

    # Push gateway; unset URL disables delivery
    push_gateway_url: str | None = Field(default=None, alias="PUSH_GATEWAY_URL")
    push_gateway_api_key: str | None = Field(default=None, alias="PUSH_GATEWAY_API_KEY")
    push_timeout_seconds: float = Field(default=5.0, alias="PUSH_TIMEOUT_SECONDS")

    # Side effects after a message is persisted
    side_effect_timeout_seconds: float = Field(
        default=10.0,
        alias="SIDE_EFFECT_TIMEOUT_SECONDS",
    )
    delivery_await_side_effects: bool = Field(
        default=True,
        alias="DELIVERY_AWAIT_SIDE_EFFECTS",
    )
    unread_counter_atomic: bool = Field(default=False, alias="UNREAD_COUNTER_ATOMIC")

    # Violations
    violation_block_threshold: int = Field(default=3, alias="VIOLATION_BLOCK_THRESHOLD")
    violation_warning_threshold: int = Field(default=2, alias="VIOLATION_WARNING_THRESHOLD")

    # Message bodies
    message_max_length: int = Field(default=1000, alias="MESSAGE_MAX_LENGTH")
    attachment_max_bytes: int = Field(default=50 * 1024 * 1024, alias="ATTACHMENT_MAX_BYTES")

    # Browser clients
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the test database URL when testing mode is switched on."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def push_enabled(self) -> bool:
        return bool(self.push_gateway_url)


settings = Settings()  # type: ignore[call-arg]
