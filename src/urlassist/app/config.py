"""Application configuration using pydantic-settings.

Configuration hierarchy:
- ServerConfig: Listener address
- RoutesConfig: Location of the route table document
- ProxyConfig: Backend transport (TLS verification, timeouts, body cap)
- StaticConfig: Public asset directory and redirect aliases
- LoggingConfig: Logging behavior
- MetricsConfig: Prometheus metrics
- Settings: Main config aggregating all sub-configs

Example: PROXY_VERIFY_BACKEND_TLS=true URLASSIST_CONFIG=./config.json
"""

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=3000, description="Server port")


class RoutesConfig(BaseSettings):
    """Route table source.

    The legacy CONFIG variable is honoured for existing deployments.
    """

    model_config = SettingsConfigDict(env_prefix="ROUTES_", populate_by_name=True)

    file: str = Field(
        default="/app/config.json",
        validation_alias=AliasChoices("URLASSIST_CONFIG", "CONFIG", "ROUTES_FILE"),
    )


class ProxyConfig(BaseSettings):
    """Backend transport configuration.

    verify_backend_tls is off by default: lab backends typically present
    self-signed certificates. Turning it off disables certificate and
    hostname checks for every backend.
    """

    model_config = SettingsConfigDict(env_prefix="PROXY_")

    verify_backend_tls: bool = Field(default=False)

    # Per-exchange timeouts; expiry is reported as 502
    timeout_connect: float = Field(default=10.0)  # seconds
    timeout_read: float = Field(default=30.0)  # seconds (per read, not total)
    timeout_write: float = Field(default=30.0)  # seconds

    max_body_bytes: int = Field(default=10 * 1024 * 1024)  # 10MB


class StaticConfig(BaseSettings):
    """Static asset configuration."""

    model_config = SettingsConfigDict(env_prefix="STATIC_")

    public_dir: str = Field(default="public")
    redirects: dict[str, str] = Field(
        default={"/": "/ua.html", "/ua": "/ua.html"},
    )


class LoggingConfig(BaseSettings):
    """Logging configuration.

    format is "text" for a terminal or "json" for a log collector.
    rate_limit_per_minute caps repeats of one log call (errors excepted).
    Requests slower than slow_threshold_ms get an extra warning line.
    """

    model_config = SettingsConfigDict(env_prefix="LOGGING_")

    level: str = Field(default="INFO")
    format: str = Field(default="text")
    schema_version: str = Field(default="1.0")
    service_name: str = Field(default="urlassist")
    slow_threshold_ms: float = Field(default=1000.0)
    rate_limit_per_minute: int = Field(default=100)


class MetricsConfig(BaseSettings):
    """Prometheus metrics configuration."""

    model_config = SettingsConfigDict(env_prefix="METRICS_")

    enabled: bool = Field(default=True)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="URLASSIST_",
        env_nested_delimiter="__",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    routes: RoutesConfig = Field(default_factory=RoutesConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    static: StaticConfig = Field(default_factory=StaticConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


@lru_cache
def get_settings() -> Settings:
    return Settings()
