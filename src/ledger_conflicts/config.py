"""
Configuration management (SSOT).

This module defines ALL configuration for the conflict engine.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Amount thresholds are expressed in minor currency units (integers)
- Score thresholds are expressed on the 0-100 pair score scale
- Delays are expressed in milliseconds
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class LedgerConfig:
    """Budgeting engine (persistence endpoint) configuration."""

    base_url: str = "http://localhost:5006"
    token: str = ""
    # Request timeout (seconds)
    timeout_seconds: int = 30


@dataclass
class DetectionConfig:
    """Conflict detection settings."""

    # Amount difference (minor units) at which the amount component reaches 0
    amount_threshold: int = 100
    # Day difference beyond which dates are considered unrelated
    date_threshold_days: int = 3
    # Minimum pair score (0-100) for a pair to be reported as a conflict
    acceptance_threshold: float = 70.0
    # Manual transactions compared per cooperative step
    chunk_size: int = 20
    # Quiet period before a new detection pass starts
    debounce_ms: int = 300


@dataclass
class RecoveryConfig:
    """Error recovery settings."""

    max_retries: int = 3
    # Base delay before the first retry; later retries back off exponentially
    retry_delay_ms: int = 1000
    # Automatically retry ambient network errors
    auto_retry_network_issues: bool = True
    # reconnect/refresh strategies wait retry_delay_ms * this multiplier
    reconnect_delay_multiplier: int = 2
    # Log every reported error at ERROR level
    log_errors: bool = True


@dataclass
class ResolutionConfig:
    """Conflict resolution settings."""

    # Grace period before the resolving flag is cleared after settling
    settle_grace_ms: int = 300


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.ledger.base_url:
            errors.append("ledger.base_url is required")
        if self.ledger.timeout_seconds <= 0:
            errors.append("ledger.timeout_seconds must be positive")

        if self.detection.amount_threshold <= 0:
            errors.append("detection.amount_threshold must be positive")
        if self.detection.date_threshold_days <= 0:
            errors.append("detection.date_threshold_days must be positive")
        if not 0 <= self.detection.acceptance_threshold <= 100:
            errors.append("detection.acceptance_threshold must be between 0 and 100")
        if self.detection.chunk_size < 1:
            errors.append("detection.chunk_size must be at least 1")
        if self.detection.debounce_ms < 0:
            errors.append("detection.debounce_ms must not be negative")

        if self.recovery.max_retries < 0:
            errors.append("recovery.max_retries must not be negative")
        if self.recovery.retry_delay_ms < 0:
            errors.append("recovery.retry_delay_ms must not be negative")
        if self.recovery.reconnect_delay_multiplier < 1:
            errors.append("recovery.reconnect_delay_multiplier must be at least 1")

        if self.resolution.settle_grace_ms < 0:
            errors.append("resolution.settle_grace_ms must not be negative")

        return errors


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigValidationError(f"{name} must be an integer, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    A missing file yields the defaults. Environment variables can override
    config values:
    - LEDGER_URL
    - LEDGER_TOKEN
    - LEDGER_TIMEOUT (request timeout in seconds)
    - CONFLICTS_MAX_RETRIES
    - CONFLICTS_RETRY_DELAY_MS
    - CONFLICTS_AUTO_RETRY_NETWORK (true/false)

    Raises:
        ConfigValidationError: If the resulting configuration is invalid.
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Ledger config
    ledger_data = data.get("ledger", {})
    ledger = LedgerConfig(
        base_url=os.environ.get(
            "LEDGER_URL", ledger_data.get("base_url", "http://localhost:5006")
        ),
        token=os.environ.get("LEDGER_TOKEN", ledger_data.get("token", "")),
        timeout_seconds=_env_int("LEDGER_TIMEOUT", ledger_data.get("timeout_seconds", 30)),
    )

    # Detection config
    detection_data = data.get("detection", {})
    detection = DetectionConfig(
        amount_threshold=detection_data.get("amount_threshold", 100),
        date_threshold_days=detection_data.get("date_threshold_days", 3),
        acceptance_threshold=float(detection_data.get("acceptance_threshold", 70)),
        chunk_size=detection_data.get("chunk_size", 20),
        debounce_ms=detection_data.get("debounce_ms", 300),
    )

    # Recovery config
    recovery_data = data.get("recovery", {})
    recovery = RecoveryConfig(
        max_retries=_env_int("CONFLICTS_MAX_RETRIES", recovery_data.get("max_retries", 3)),
        retry_delay_ms=_env_int(
            "CONFLICTS_RETRY_DELAY_MS", recovery_data.get("retry_delay_ms", 1000)
        ),
        auto_retry_network_issues=_env_bool(
            "CONFLICTS_AUTO_RETRY_NETWORK",
            recovery_data.get("auto_retry_network_issues", True),
        ),
        reconnect_delay_multiplier=recovery_data.get("reconnect_delay_multiplier", 2),
        log_errors=recovery_data.get("log_errors", True),
    )

    resolution_data = data.get("resolution", {})
    resolution = ResolutionConfig(
        settle_grace_ms=resolution_data.get("settle_grace_ms", 300),
    )

    config = Config(
        ledger=ledger,
        detection=detection,
        recovery=recovery,
        resolution=resolution,
    )

    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Bank import conflict engine configuration

ledger:
  base_url: "http://localhost:5006"       # Budgeting engine API URL
  token: "YOUR_LEDGER_TOKEN"
  timeout_seconds: 30

# Duplicate detection between manual entries and bank imports
detection:
  amount_threshold: 100                   # Minor units; amount score reaches 0 here
  date_threshold_days: 3                  # Dates further apart never match
  acceptance_threshold: 70                # Minimum pair score (0-100)
  chunk_size: 20                          # Manual transactions per cooperative step
  debounce_ms: 300                        # Wait this long after the last change

# Retry/backoff for failed operations
recovery:
  max_retries: 3
  retry_delay_ms: 1000                    # Base delay, doubled for each retry
  auto_retry_network_issues: true
  reconnect_delay_multiplier: 2
  log_errors: true

resolution:
  settle_grace_ms: 300                    # Keep "resolving" this long after settling
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
