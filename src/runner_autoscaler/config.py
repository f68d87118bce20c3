"""
Configuration and logging setup for the runner autoscaler.

Configuration is read from a JSON or YAML file and validated with pydantic.
Logging goes through structlog on top of the standard logging module.
"""

import json
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    ValidationError,
    field_validator,
)

from .errors import ConfigurationError


CONFIG_ENV_VAR = "RUNNER_AUTOSCALER_CONFIG"

DEFAULT_SCALE_DOWN_DELAY_SECONDS = 600


class GitHubConfiguration(BaseModel):
    """
    GitHub API connection settings.

    The token is passed through as a bearer token; obtaining it is out of
    the autoscaler's hands.
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(
        default="https://api.github.com",
        description="GitHub API base URL"
    )
    token: Optional[SecretStr] = Field(
        default=None,
        description="Pre-issued GitHub API token"
    )
    timeout_seconds: PositiveFloat = Field(
        default=30.0,
        description="Per-request timeout in seconds"
    )
    max_requests_per_minute: PositiveInt = Field(
        default=600,
        description="Client-side request budget"
    )
    per_page: PositiveInt = Field(
        default=100,
        le=100,
        description="Page size for list endpoints"
    )
    max_pages: PositiveInt = Field(
        default=10,
        description="Maximum pages fetched per listing"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not (v.startswith("https://") or v.startswith("http://")):
            raise ValueError("GitHub URL must include protocol (https:// or http://)")
        if v.startswith("http://") and "localhost" not in v and "127.0.0.1" not in v:
            raise ValueError("HTTP connections not allowed for non-localhost GitHub instances")
        return v.rstrip("/")


class AutoscalerConfiguration(BaseModel):
    """Top-level autoscaler configuration."""

    model_config = ConfigDict(extra="forbid")

    github: GitHubConfiguration = Field(default_factory=GitHubConfiguration)
    default_scale_down_delay_seconds: NonNegativeInt = Field(
        default=DEFAULT_SCALE_DOWN_DELAY_SECONDS,
        description="Cooldown after a scale-out before scaling down, when a policy sets none"
    )
    max_concurrent_requests: PositiveInt = Field(
        default=8,
        description="Provider requests allowed in flight at once"
    )
    log_level: str = Field(
        default="INFO",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )
    log_format: str = Field(
        default="json",
        pattern=r"^(json|console)$",
    )
    enable_metrics: bool = Field(
        default=True,
        description="Record prometheus metrics for scaling decisions"
    )

    @property
    def default_scale_down_delay(self) -> timedelta:
        return timedelta(seconds=self.default_scale_down_delay_seconds)


def load_configuration(config_path: Optional[str] = None) -> AutoscalerConfiguration:
    """
    Load and validate configuration from file.

    Args:
        config_path: Path to a .json, .yaml or .yml file; defaults to the
            RUNNER_AUTOSCALER_CONFIG environment variable

    Returns:
        Validated configuration object

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    config_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if not config_path:
        raise ConfigurationError(
            f"No configuration file given and {CONFIG_ENV_VAR} is not set"
        )

    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, "r") as f:
            if config_file.suffix == ".json":
                config_data = json.load(f)
            else:
                config_data = yaml.safe_load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Error reading configuration {config_path}: {e}") from e

    return parse_configuration(config_data or {})


def parse_configuration(config_data: Dict[str, Any]) -> AutoscalerConfiguration:
    """Validate raw configuration data."""
    try:
        return AutoscalerConfiguration.model_validate(config_data)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise ConfigurationError(f"Configuration validation error: {details}") from e


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Set up structured logging with the given level and renderer."""
    logging.basicConfig(level=getattr(logging, log_level.upper()), format="%(message)s")

    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
