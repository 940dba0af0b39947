"""
Centralized configuration for rbac-why.

Uses Pydantic BaseSettings for environment variable integration
and validation.

Configuration sources (in order of precedence):
1. Explicit constructor arguments (CLI flags)
2. Environment variables (RBACWHY_*)
3. .env file
4. Default values

Example:
    from rbacwhy.config import get_config

    config = get_config()
    print(config.request_timeout_seconds)

    # Override at runtime
    config = get_config(context="staging")
"""

from __future__ import annotations

import os
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RBACWhyConfig(BaseSettings):
    """
    Central configuration for rbac-why.

    All settings can be overridden via environment variables
    prefixed with RBACWHY_.

    Example:
        export RBACWHY_CONTEXT=prod-eu
        export RBACWHY_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="RBACWHY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service_name: str = Field(
        default="rbac-why",
        description="Service name for audit span attribution",
    )

    # Kubernetes
    kubeconfig: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file (KUBECONFIG / ~/.kube/config if not set)",
    )
    context: Optional[str] = Field(
        default=None,
        description="Kubeconfig context to use (current-context if not set)",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Deadline for each list/get call against the API server",
    )
    cache_ttl_seconds: int = Field(
        default=0,
        ge=0,
        description="Cache RBAC listings for this long (0 disables caching)",
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        description="Threads used when checking many permissions at once",
    )

    # AWS (EKS) identity
    aws_profile: Optional[str] = Field(
        default=None,
        description="AWS profile for EKS identity lookups",
    )

    # Output
    output: Literal["text", "json", "yaml", "dot", "mermaid"] = Field(
        default="text",
        description="Default output format",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="warning",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log output format (json for log shippers, text for console)",
    )

    # OTLP export for audit spans
    otlp_endpoint: str = Field(
        default="localhost:4317",
        description="OTLP gRPC endpoint for audit span export",
    )
    otlp_insecure: bool = Field(
        default=True,
        description="Use insecure connection to OTLP endpoint",
    )

    @field_validator("kubeconfig")
    @classmethod
    def expand_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand ~ and environment variables in paths."""
        if v is None:
            return v
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("otlp_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Strip the protocol prefix (the exporter adds its own)."""
        if v.startswith("http://"):
            v = v[7:]
        elif v.startswith("https://"):
            v = v[8:]
        return v


# Global singleton
_config: Optional[RBACWhyConfig] = None


def get_config(**overrides) -> RBACWhyConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided. Overrides whose
    value is None are ignored so CLI flags can be passed through as-is.
    """
    global _config

    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides or _config is None:
        _config = RBACWhyConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
