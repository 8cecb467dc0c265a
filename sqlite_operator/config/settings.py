"""
Operator configuration using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main operator settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="SQLite Operator", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment (development/staging/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    # Health probe server
    host: str = Field(default="0.0.0.0", description="Probe server host")
    port: int = Field(default=8081, ge=1, le=65535, description="Probe server port")

    # Kubernetes
    kubeconfig_path: Optional[str] = Field(
        default=None, description="Path to kubeconfig file (None for default location)"
    )
    k8s_in_cluster: bool = Field(default=False, description="Running inside Kubernetes cluster")
    watch_namespace: Optional[str] = Field(
        default=None, description="Restrict watches to one namespace (None for all namespaces)"
    )
    watch_timeout_seconds: int = Field(
        default=300, ge=10, le=3600, description="Server-side timeout for a single watch request"
    )

    # Workload
    sqlite_image: str = Field(default="keinos/sqlite3:latest", description="Container image for the workload")

    # Dispatch
    max_concurrent_reconciles: int = Field(
        default=4, ge=1, le=64, description="Number of instances reconciled in parallel"
    )
    requeue_base_delay: float = Field(
        default=0.5, gt=0, description="Initial requeue delay after a failed pass, in seconds"
    )
    requeue_max_delay: float = Field(
        default=300.0, gt=0, description="Maximum requeue delay after repeated failures, in seconds"
    )

    # Sentry
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    sentry_traces_sample_rate: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Sentry traces sample rate"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = ["development", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


# Global settings instance
settings = Settings()
