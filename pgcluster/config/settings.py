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
    app_name: str = Field(default="PostgreSQL Cluster Operator", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment (development/staging/production/testing)")
    log_level: str = Field(default="INFO", description="Logging level")

    # Kubernetes
    kubeconfig_path: Optional[str] = Field(
        default=None, description="Path to kubeconfig file (None for in-cluster)"
    )
    k8s_in_cluster: bool = Field(default=False, description="Running inside Kubernetes cluster")
    k8s_request_timeout_seconds: float = Field(
        default=10.0, gt=0, le=120, description="Timeout applied to every Kubernetes API call"
    )
    watch_namespace: Optional[str] = Field(
        default=None, description="Namespace to reconcile (None for all namespaces)"
    )

    # Cluster custom resource
    cluster_crd_group: str = Field(default="postgresql.dbaas.io", description="Cluster CRD API group")
    cluster_crd_version: str = Field(default="v1alpha1", description="Cluster CRD API version")
    cluster_crd_plural: str = Field(default="clusters", description="Cluster CRD plural name")
    cluster_label_key: str = Field(
        default="postgresql", description="Pod label carrying the owning cluster name"
    )
    postgres_container_name: str = Field(
        default="postgres", description="Name of the container running PostgreSQL in each pod"
    )

    # PostgreSQL probing
    postgres_port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port on each pod")
    app_user: str = Field(default="app", description="Application role used for liveness pings")
    app_password: Optional[str] = Field(default=None, description="Application role password")
    app_database: str = Field(default="app", description="Application database")
    superuser: str = Field(default="postgres", description="Privileged role used for status queries")
    superuser_password: Optional[str] = Field(default=None, description="Privileged role password")
    superuser_database: str = Field(default="postgres", description="Database used for status queries")
    probe_timeout_seconds: float = Field(
        default=5.0, gt=0, le=60, description="Connect and query timeout for member probes"
    )

    # Reconciler
    reconcile_interval: int = Field(default=30, ge=1, le=300, description="Reconciliation interval in seconds")
    reconcile_error_backoff: int = Field(
        default=60, ge=1, le=600, description="Pause after a failed reconciliation pass in seconds"
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
        valid_envs = ["development", "staging", "production", "testing"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == "development"


# Global settings instance
settings = Settings()
