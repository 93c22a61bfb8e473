from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Literal
from urllib.parse import quote_plus

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from studio.core.constants import DEFAULT_ENV_FILE, SECRETS_DIR, SERVICE_NAME


class Environment(StrEnum):
    """Deployment environments supported by the service."""

    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


class DatabaseSettings(BaseModel):
    """Database connectivity configuration."""

    model_config = ConfigDict(extra="ignore")

    url: str | None = None
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: SecretStr = SecretStr("postgres")
    name: str = SERVICE_NAME
    echo: bool = False
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout_seconds: float = Field(default=30.0, gt=0)

    @property
    def is_sqlite(self) -> bool:
        return self.dsn.startswith("sqlite")

    @computed_field
    @property
    def dsn(self) -> str:
        """Assemble the SQLAlchemy async DSN."""
        if self.url is not None:
            return self.url

        password = quote_plus(self.password.get_secret_value())
        return (
            f"postgresql+asyncpg://{self.user}:{password}"
            f"@{self.host}:{self.port}/{self.name}"
        )


class RedisSettings(BaseSettings):
    """Redis connection configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS__", extra="ignore")

    url: str = "redis://localhost:6379/0"


class TaskSettings(BaseModel):
    """Behaviour of the task lifecycle engine."""

    model_config = ConfigDict(extra="ignore")

    cas_max_attempts: int = Field(default=3, ge=1, le=20)
    default_status: Literal["Pending", "Queued"] = "Queued"


class WebSocketSettings(BaseModel):
    """Timing for the project task event stream."""

    model_config = ConfigDict(extra="ignore")

    heartbeat_interval_seconds: float = Field(default=15.0, gt=0)
    inactivity_timeout_seconds: float = Field(default=60.0, gt=0)


class PrometheusSettings(BaseSettings):
    """Prometheus metrics configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PROMETHEUS__",
        extra="ignore",
        case_sensitive=False,
    )

    enabled: bool = True
    metrics_path: str = "/metrics"
    should_group_status_codes: bool = True
    should_ignore_untemplated: bool = True
    should_group_untemplated: bool = True
    should_round_latency_decimals: bool = False
    should_respect_env_var: bool = True
    excluded_handlers: list[str] = Field(
        default_factory=lambda: ["/metrics", "/health", "/docs", "/redoc"]
    )


class SentrySettings(BaseSettings):
    """Sentry error tracking configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SENTRY__",
        extra="ignore",
        case_sensitive=False,
    )

    enabled: bool = True
    dsn: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "SENTRY_DSN",
            "sentry__dsn",
        ),
    )
    environment: str | None = None
    release: str | None = None
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    traces_sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    send_default_pii: bool = False


class Settings(BaseSettings):
    """Application settings loaded from the environment or secret stores."""

    model_config = SettingsConfigDict(
        env_file=DEFAULT_ENV_FILE,
        env_nested_delimiter="__",
        secrets_dir=SECRETS_DIR,
        extra="ignore",
        validate_default=True,
        case_sensitive=False,
    )

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    log_level: str = "INFO"

    project_name: str = "Studio Task Service"
    project_description: str = (
        "Tracks generation tasks, cascades failures through dependants and "
        "materialises generations on completion."
    )
    project_version: str = "0.1.0"
    docs_url: str | None = "/docs"
    redoc_url: str | None = "/redoc"
    openapi_url: str = "/openapi.json"

    cors_allow_origins: list[str] = Field(default_factory=list)

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    tasks: TaskSettings = Field(default_factory=TaskSettings)
    websocket: WebSocketSettings = Field(default_factory=WebSocketSettings)
    prometheus: PrometheusSettings = Field(default_factory=PrometheusSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    @model_validator(mode="after")
    def _normalize(self) -> Settings:
        self.log_level = self.log_level.upper()

        if self.environment in {Environment.DEVELOPMENT, Environment.TEST}:
            self.debug = True

        return self

    @computed_field
    @property
    def is_testing(self) -> bool:
        return self.environment is Environment.TEST

    @computed_field
    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()
