"""Configuration management with validation.

All settings come from environment variables and are validated at load time
so a misconfigured controller fails before it touches any load balancer.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_MAX_CONCURRENT_RULE_RECONCILES = 8
MAX_CONCURRENT_RULE_RECONCILES = 64

# Snapshot files handed to the CLI are small; anything larger is a mistake
MAX_SNAPSHOT_FILE_SIZE_BYTES = 1024 * 1024

# Input validation patterns
VALID_REGION_PATTERN = r"^[a-z]{2}(-gov)?-[a-z]+-\d$"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class Config:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    aws_region: str

    # Concurrency
    max_concurrent_rule_reconciles: int = DEFAULT_MAX_CONCURRENT_RULE_RECONCILES

    # Logging
    log_level: str = "INFO"
    enable_audit_logging: bool = True

    # Behavior
    dry_run: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.aws_region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.aws_region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.aws_region}")

        if not 1 <= self.max_concurrent_rule_reconciles <= MAX_CONCURRENT_RULE_RECONCILES:
            errors.append(
                "MAX_CONCURRENT_RULE_RECONCILES must be between 1 "
                f"and {MAX_CONCURRENT_RULE_RECONCILES}"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def log_level_number(self) -> int:
        """Numeric logging level for the configured LOG_LEVEL."""
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AWS_REGION: Region hosting the load balancers
            MAX_CONCURRENT_RULE_RECONCILES: Rules reconciled in parallel (default: 8)
            LOG_LEVEL: DEBUG, INFO, WARNING or ERROR (default: INFO)
            ENABLE_AUDIT_LOGGING: Emit JSON logs to stdout (default: true)
            DRY_RUN: If "true", only plan changes without applying (default: false)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            aws_region=os.environ.get("AWS_REGION", ""),
            max_concurrent_rule_reconciles=get_int(
                "MAX_CONCURRENT_RULE_RECONCILES", DEFAULT_MAX_CONCURRENT_RULE_RECONCILES
            ),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_audit_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
            dry_run=get_bool("DRY_RUN", False),
        )
