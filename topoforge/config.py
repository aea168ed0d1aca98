"""Runtime configuration — env-driven.

Centralized config using pydantic-settings for environment variable
support. Reads from .env file and TOPOFORGE_* environment variables.
Per-deployment inputs live in a TOML file and are loaded with
``load_deployment_config``.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from topoforge.models.deployment import DeploymentConfig


class ProdConfig(BaseSettings):
    """Runtime configuration with environment variable overrides.

    All settings can be overridden via TOPOFORGE_* environment variables
    or a .env file in the working directory.

    Examples
    --------
    Override via environment::

        export TOPOFORGE_ENVIRONMENT=staging
        export TOPOFORGE_LOG_LEVEL=DEBUG
        export TOPOFORGE_REGISTRY_PATH=/data/registry

    Or via .env file::

        TOPOFORGE_REGION=eu-west-1
        TOPOFORGE_PUBLISH_WORKERS=4
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TOPOFORGE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Network defaults
    region: str = "us-east-1"
    cidr_block: str = "10.0.0.0/16"
    zone_count: int = 3
    single_egress: bool = True

    # Local publish backends
    registry_path: Path = Path(".topoforge/registry")
    bucket_path: Path = Path(".topoforge/buckets")
    registry_name: str = "local/backend"
    bucket_name: str = "frontend"
    publish_workers: int = 2
    # None rejects unmapped extensions instead of falling back
    content_type_fallback: str | None = "application/octet-stream"

    # Edge and service lifecycle
    domain_suffix: str = "cloudfront.net"
    health_poll_interval: float = 10.0
    drain_grace_period: float = 30.0

    @field_validator("content_type_fallback", mode="before")
    @classmethod
    def _empty_fallback_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in ("", "none"):
            return None
        return value

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    def deployment_defaults(self) -> dict[str, Any]:
        """Settings that seed a ``DeploymentConfig`` when a file omits them."""
        return {
            "region": self.region,
            "cidr_block": self.cidr_block,
            "zone_count": self.zone_count,
            "single_egress": self.single_egress,
            "domain_suffix": self.domain_suffix,
        }


def load_deployment_config(
    path: Path, *, defaults: dict[str, Any] | None = None
) -> DeploymentConfig:
    """Read a ``DeploymentConfig`` from TOML.

    The settings may sit at the top level or under ``[tool.topoforge]``.
    Values in the file win over ``defaults``.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    pydantic.ValidationError
        If the file does not describe a valid configuration.
    """
    with Path(path).open("rb") as fh:
        data = tomllib.load(fh)
    table = data.get("tool", {}).get("topoforge", data)
    return DeploymentConfig.model_validate({**(defaults or {}), **table})


# Module-level singleton, import as `from topoforge.config import config`
config = ProdConfig()
