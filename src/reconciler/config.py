"""Configuration management using YAML and Pydantic."""

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from reconciler.exceptions import ConfigurationError
from utils import safe_identifier

DEFAULT_QUEUES = ["submission", "validation", "pending_validation"]


def _substitute_env_vars(value: str) -> str:
    """Substitute environment variables in string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with environment variables substituted
    """
    pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2) if match.group(2) is not None else None
        env_value = os.getenv(var_name)
        if env_value is not None:
            return env_value
        if default is not None:
            return default
        raise ValueError(f"Environment variable {var_name} not set and no default provided")

    return re.sub(pattern, replacer, value)


def _substitute_env_in_dict(data: Any) -> Any:
    """Recursively substitute environment variables in a nested structure."""
    if isinstance(data, dict):
        return {key: _substitute_env_in_dict(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_in_dict(item) for item in data]
    elif isinstance(data, str):
        return _substitute_env_vars(data)
    return data


class DatabaseConfig(BaseModel):
    """Database configuration."""

    name: str = Field(description="Database name")
    host: str = Field(description="Database host")
    port: int = Field(default=5432, description="Database port", gt=0, lt=65536)
    user: str = Field(description="Database user")
    password_env: Optional[str] = Field(
        default=None,
        description="Environment variable name containing database password (preferred)",
    )
    password: Optional[str] = Field(
        default=None,
        description="Database password (development only - use password_env in production)",
    )
    connection_pool_size: int = Field(
        default=2,
        description="Connection pool size",
        gt=0,
        le=50,
    )
    command_timeout: float = Field(
        default=300.0,
        description="Per-statement timeout in seconds",
        gt=0,
    )

    @model_validator(mode="after")
    def validate_password_source(self) -> "DatabaseConfig":
        """Validate that exactly one password source is provided."""
        if not self.password_env and not self.password:
            raise ValueError(
                "Either 'password_env' or 'password' must be provided. "
                "Use 'password_env' for production (recommended) or 'password' for development only."
            )
        if self.password_env and self.password:
            raise ValueError(
                "Cannot specify both 'password_env' and 'password'. "
                "Use 'password_env' for production (recommended) or 'password' for development only."
            )
        return self

    def get_password(self) -> str:
        """Get password from environment variable or config file.

        Returns:
            Database password

        Raises:
            ValueError: If password cannot be retrieved
        """
        if self.password_env:
            password = os.getenv(self.password_env)
            if not password:
                raise ValueError(f"Environment variable {self.password_env} not set")
            return password
        elif self.password:
            import warnings

            warnings.warn(
                f"Using password from config file for database '{self.name}'. "
                f"This is not recommended for production. Use 'password_env' instead.",
                UserWarning,
                stacklevel=2,
            )
            return self.password
        else:
            raise ValueError("No password source configured")


class TablesConfig(BaseModel):
    """Names of the tables the reconciler reads and writes."""

    pending_signatures: str = Field(
        default="signatures_pending_validation",
        description="Submitted signatures awaiting validation",
    )
    validations: str = Field(
        default="validations",
        description="Validation records produced by the validation pipeline",
    )
    not_validated_archive: str = Field(
        default="signatures_not_validated_archive",
        description="Archive destination for expired pending signatures",
    )
    orphaned_validations_archive: str = Field(
        default="validations_orphaned_archive",
        description="Archive destination for orphaned validations",
    )
    queue_watermarks: str = Field(
        default="queue_watermarks",
        description="Read-only table of per-queue last-emptied timestamps",
    )

    @field_validator("*")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Reject table names that are not plain SQL identifiers."""
        safe_identifier(v)
        return v


class WatermarkConfig(BaseModel):
    """Queue watermark configuration."""

    source: str = Field(
        default="default",
        description="Where queue watermarks come from ('default' or 'database')",
    )
    queues: list[str] = Field(
        default_factory=lambda: list(DEFAULT_QUEUES),
        description="Queues whose drain state bounds the horizon",
        min_length=1,
    )
    fallback_days: int = Field(
        default=14,
        description="Assumed drain time for queues that report no watermark",
        gt=0,
    )

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str) -> str:
        """Validate watermark source."""
        if v not in ("default", "database"):
            raise ValueError("source must be 'default' or 'database'")
        return v


class MonitoringConfig(BaseModel):
    """Monitoring and metrics configuration."""

    metrics_enabled: bool = Field(
        default=True,
        description="Enable Prometheus metrics",
    )
    metrics_port: Optional[int] = Field(
        default=None,
        description="Port for Prometheus metrics endpoint (no endpoint when unset)",
        gt=0,
        lt=65536,
    )


class ReconcilerConfig(BaseModel):
    """Root configuration model."""

    version: str = Field(description="Configuration version")
    database: DatabaseConfig = Field(description="Signature database")
    tables: TablesConfig = Field(default_factory=TablesConfig, description="Table names")
    archiving_enabled: bool = Field(
        default=True,
        description="Copy invalid and orphaned rows to archive tables before deleting them",
    )
    watermarks: WatermarkConfig = Field(
        default_factory=WatermarkConfig,
        description="Queue watermark configuration",
    )
    monitoring: MonitoringConfig = Field(
        default_factory=MonitoringConfig,
        description="Monitoring and metrics configuration",
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate configuration version."""
        if v not in ["1.0"]:
            raise ValueError(f"Unsupported configuration version: {v}")
        return v


def load_config(config_path: Path) -> ReconcilerConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated configuration object

    Raises:
        ConfigurationError: If configuration is invalid
    """
    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if not raw_config:
            raise ValueError("Configuration file is empty")

        config_data = _substitute_env_in_dict(raw_config)
        return ReconcilerConfig.model_validate(config_data)

    except FileNotFoundError:
        raise ConfigurationError(
            f"Configuration file not found: {config_path}",
            context={"path": str(config_path)},
        ) from None
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in configuration file: {e}",
            context={"path": str(config_path)},
        ) from e
    except Exception as e:
        raise ConfigurationError(
            f"Configuration validation failed: {e}",
            context={"path": str(config_path)},
        ) from e
