"""Centralized settings using pydantic-settings.

This module provides a single source of truth for the controller and agent
configuration loaded from environment variables. Uses pydantic for automatic
validation, type coercion, and documentation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kubevirtbmc.constants import (
    DEFAULT_AGENT_IMAGE_NAME,
    DEFAULT_AGENT_IMAGE_TAG,
    DEFAULT_AGENT_SERVICE_ACCOUNT,
    DEFAULT_BMC_NAMESPACE,
    DEFAULT_CACHE_SYNC_TIMEOUT,
    DEFAULT_REQUEUE_BASE_DELAY,
    DEFAULT_REQUEUE_MAX_DELAY,
    DEFAULT_WATCH_TIMEOUT,
    FALLBACK_PASSWORD,
    FALLBACK_USERNAME,
)


class Settings(BaseSettings):
    """Controller configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Log health probe and metrics scrape requests",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="KUBEVIRTBMC_OPERATOR_NAMESPACES",
        description="Comma-separated list of namespaces to watch (empty = all namespaces)",
    )

    # Agent workload
    bmc_namespace: str = Field(
        default=DEFAULT_BMC_NAMESPACE,
        validation_alias="BMC_NAMESPACE",
        description="Namespace where agent pods and services are created",
    )
    agent_image_name: str = Field(
        default=DEFAULT_AGENT_IMAGE_NAME,
        validation_alias="AGENT_IMAGE_NAME",
        description="Container image repository of the virtbmc agent",
    )
    agent_image_tag: str = Field(
        default=DEFAULT_AGENT_IMAGE_TAG,
        validation_alias="AGENT_IMAGE_TAG",
        description="Container image tag of the virtbmc agent",
    )
    agent_service_account: str = Field(
        default=DEFAULT_AGENT_SERVICE_ACCOUNT,
        validation_alias="AGENT_SERVICE_ACCOUNT",
        description="Service account the agent pods run as",
    )

    # Reconciliation behavior
    max_concurrent_reconciles: int = Field(
        default=4,
        ge=1,
        validation_alias="MAX_CONCURRENT_RECONCILES",
        description="Number of reconcile workers processing the work queue",
    )
    requeue_base_delay_seconds: float = Field(
        default=DEFAULT_REQUEUE_BASE_DELAY,
        gt=0,
        validation_alias="REQUEUE_BASE_DELAY_SECONDS",
        description="Initial delay before a failed or requeued key is retried",
    )
    requeue_max_delay_seconds: float = Field(
        default=DEFAULT_REQUEUE_MAX_DELAY,
        gt=0,
        validation_alias="REQUEUE_MAX_DELAY_SECONDS",
        description="Upper bound for the per-key exponential retry backoff",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        return None

    @property
    def agent_image(self) -> str:
        """Full agent image reference."""
        return f"{self.agent_image_name}:{self.agent_image_tag}"


class AgentSettings(BaseSettings):
    """virtbmc agent configuration loaded from environment variables.

    Launch arguments (address, ports, secret reference, target VM) come from
    the command line the controller writes into the pod; everything else is
    tunable here.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="AGENT_LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="AGENT_JSON_LOGS",
        description="Enable JSON formatted logging",
    )
    cache_sync_timeout_seconds: float = Field(
        default=DEFAULT_CACHE_SYNC_TIMEOUT,
        gt=0,
        validation_alias="AGENT_CACHE_SYNC_TIMEOUT_SECONDS",
        description="How long startup waits for the secret watch to sync",
    )
    watch_timeout_seconds: int = Field(
        default=DEFAULT_WATCH_TIMEOUT,
        gt=0,
        validation_alias="AGENT_WATCH_TIMEOUT_SECONDS",
        description="Server-side timeout of each secret watch request",
    )
    allow_fallback_credentials: bool = Field(
        default=True,
        validation_alias="AGENT_ALLOW_FALLBACK_CREDENTIALS",
        description="Accept the hard-coded fallback username/password pair",
    )
    fallback_username: str = Field(
        default=FALLBACK_USERNAME,
        validation_alias="AGENT_FALLBACK_USERNAME",
        description="Username of the fallback credential pair",
    )
    fallback_password: str = Field(
        default=FALLBACK_PASSWORD,
        validation_alias="AGENT_FALLBACK_PASSWORD",
        description="Password of the fallback credential pair",
    )
    metrics_port: int = Field(
        default=0,
        ge=0,
        validation_alias="AGENT_METRICS_PORT",
        description="Port for the agent metrics endpoint (0 = disabled)",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="AGENT_METRICS_HOST",
        description="Host address to bind the agent metrics server",
    )


# Global settings instances - initialized once at module import
settings = Settings()
agent_settings = AgentSettings()
