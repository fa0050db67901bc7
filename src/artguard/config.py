"""Configuration for artguard.

Configuration is stored at ~/.artguard/config.toml and organized into sections.

Configuration loading priority:
1. Environment variables (highest)
2. Config file (~/.artguard/config.toml, or $ARTGUARD_CONFIG)
3. Defaults (lowest)

Sections:
    [contract]   - Default contract settings (artifact source, recovery)
    [retry]      - Retry budget and backoff
    [rollback]   - Rollback state directory

Example:
    from artguard.config import get_config

    config = get_config()
    print(config.contract.recovery_level)
    print(config.retry.max_attempts)
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .recovery.strategies import RecoveryLevel

logger = logging.getLogger(__name__)

# Default config location
DEFAULT_CONFIG_DIR = Path.home() / ".artguard"
DEFAULT_CONFIG_FILE = "config.toml"

DEFAULT_SOURCE = ".wave/artifact.json"
DEFAULT_STATE_DIR = ".wave/state"

# Singleton instance
_config: ArtguardConfig | None = None


# =============================================================================
# Configuration Sections
# =============================================================================


@dataclass
class ContractSettings:
    """Defaults applied to contracts that do not set them.

    Attributes:
        source: Artifact path relative to the workspace.
        schema_path: Schema file, relative to the workspace if not absolute.
        recovery_level: Highest JSON recovery level (conservative, progressive, aggressive).
        allow_recovery: Run JSON recovery before schema validation.
        wrapper_detection: Unwrap pipeline error wrappers before validation.
        must_pass: Schema violations fail the step (otherwise they become warnings).
    """

    source: str = DEFAULT_SOURCE
    schema_path: str = ""
    recovery_level: str = "progressive"
    allow_recovery: bool = True
    wrapper_detection: bool = True
    must_pass: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContractSettings:
        """Create from dictionary."""
        return cls(
            source=data.get("source", DEFAULT_SOURCE),
            schema_path=data.get("schema_path", ""),
            recovery_level=data.get("recovery_level", "progressive"),
            allow_recovery=data.get("allow_recovery", True),
            wrapper_detection=data.get("wrapper_detection", True),
            must_pass=data.get("must_pass", True),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source": self.source,
            "schema_path": self.schema_path,
            "recovery_level": self.recovery_level,
            "allow_recovery": self.allow_recovery,
            "wrapper_detection": self.wrapper_detection,
            "must_pass": self.must_pass,
        }


@dataclass
class RetrySettings:
    """Retry budget and backoff.

    Attributes:
        max_attempts: Attempts per artifact, including the first.
        base_delay: Seconds before exponential growth.
        max_delay: Cap on the un-jittered delay.
        backoff_factor: Multiplier per attempt.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetrySettings:
        """Create from dictionary."""
        return cls(
            max_attempts=int(data.get("max_attempts", 3)),
            base_delay=float(data.get("base_delay", 1.0)),
            max_delay=float(data.get("max_delay", 30.0)),
            backoff_factor=float(data.get("backoff_factor", 2.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "backoff_factor": self.backoff_factor,
        }


@dataclass
class RollbackSettings:
    """Rollback state location."""

    state_dir: str = DEFAULT_STATE_DIR

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RollbackSettings:
        """Create from dictionary."""
        return cls(state_dir=data.get("state_dir", DEFAULT_STATE_DIR))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"state_dir": self.state_dir}


@dataclass
class ArtguardConfig:
    """Main configuration container.

    Use get_config() to get the singleton instance.
    """

    contract: ContractSettings = field(default_factory=ContractSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    rollback: RollbackSettings = field(default_factory=RollbackSettings)

    # Metadata
    config_path: Path | None = None
    last_modified: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArtguardConfig:
        """Create configuration from dictionary."""
        return cls(
            contract=ContractSettings.from_dict(data.get("contract", {})),
            retry=RetrySettings.from_dict(data.get("retry", {})),
            rollback=RollbackSettings.from_dict(data.get("rollback", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "contract": self.contract.to_dict(),
            "retry": self.retry.to_dict(),
            "rollback": self.rollback.to_dict(),
        }

    def apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        if level := os.environ.get("ARTGUARD_RECOVERY_LEVEL"):
            self.contract.recovery_level = level
        if max_attempts := os.environ.get("ARTGUARD_MAX_ATTEMPTS"):
            try:
                self.retry.max_attempts = int(max_attempts)
            except ValueError:
                logger.warning(f"Ignoring invalid ARTGUARD_MAX_ATTEMPTS: {max_attempts}")
        if state_dir := os.environ.get("ARTGUARD_STATE_DIR"):
            self.rollback.state_dir = state_dir

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key path.

        Args:
            key: Dotted key path (e.g., 'retry.max_attempts').
            default: Default value if key not found.

        Returns:
            Configuration value or default.
        """
        obj: Any = self
        for part in key.split("."):
            if not hasattr(obj, part):
                return default
            obj = getattr(obj, part)
        return obj


# =============================================================================
# Contract Definitions
# =============================================================================


class ContractConfig(BaseModel):
    """One contract an artifact must satisfy."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = "json_schema"
    source: str = DEFAULT_SOURCE
    schema_document: dict[str, Any] | str | None = Field(default=None, alias="schema")
    schema_path: str | None = None
    recovery_level: RecoveryLevel = RecoveryLevel.PROGRESSIVE
    allow_recovery: bool = True
    wrapper_detection: bool = True
    must_pass: bool = True
    max_attempts: int = Field(default=3, ge=1)

    @field_validator("recovery_level", mode="before")
    @classmethod
    def _parse_level(cls, value: Any) -> RecoveryLevel:
        return RecoveryLevel.parse(value)

    @classmethod
    def from_settings(cls, config: ArtguardConfig, **overrides: Any) -> ContractConfig:
        """Build a json_schema contract from configuration defaults.

        Args:
            config: Loaded configuration.
            **overrides: Field values that take precedence (None is ignored).

        Returns:
            ContractConfig.
        """
        values: dict[str, Any] = {
            "source": config.contract.source,
            "schema_path": config.contract.schema_path or None,
            "recovery_level": config.contract.recovery_level,
            "allow_recovery": config.contract.allow_recovery,
            "wrapper_detection": config.contract.wrapper_detection,
            "must_pass": config.contract.must_pass,
            "max_attempts": config.retry.max_attempts,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)


# =============================================================================
# Configuration Loading
# =============================================================================


def get_config_path() -> Path:
    """Get the path to the configuration file."""
    if custom_path := os.environ.get("ARTGUARD_CONFIG"):
        return Path(custom_path)
    return DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> ArtguardConfig:
    """Load configuration from TOML file.

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        ArtguardConfig with settings from file and environment.
    """
    path = config_path or get_config_path()

    config = ArtguardConfig()
    config.config_path = path

    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            config = ArtguardConfig.from_dict(data)
            config.config_path = path
            config.last_modified = datetime.fromtimestamp(path.stat().st_mtime)

        except (OSError, tomllib.TOMLDecodeError, ValueError) as e:
            logger.error(f"Failed to load config from {path}: {e}")
            config = ArtguardConfig()
            config.config_path = path

    # Apply environment overrides
    config.apply_env_overrides()

    return config


def get_config() -> ArtguardConfig:
    """Get the singleton configuration instance.

    Loads from file on first call, returns cached instance after.
    Use reload_config() to force reload.

    Returns:
        ArtguardConfig singleton instance.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> ArtguardConfig:
    """Force reload configuration from file.

    Returns:
        Newly loaded ArtguardConfig instance.
    """
    global _config
    _config = load_config()
    return _config


def reset_config() -> None:
    """Reset singleton to force reload on next access."""
    global _config
    _config = None
