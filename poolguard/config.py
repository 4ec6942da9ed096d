"""
PoolGuard Configuration Module - Centralized configuration management.

Provides:
1. Hierarchical configuration with defaults
2. Environment variable overrides (POOLGUARD_* prefix)
3. Config file loading (JSON/TOML/YAML)
4. Validation on startup

Configuration Hierarchy (highest to lowest priority):
1. Environment variables
2. Config file
3. Default values

Example:
    config = PoolGuardConfig.load("poolguard.yaml")
    print(config.protocol.max_committee_size)

    # POOLGUARD_PROTOCOL_MIN_STAKE=5000 overrides protocol.min_stake
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from . import models

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Sections
# =============================================================================

@dataclass
class ProtocolConfig:
    """Bounds and economic constants of the claims core."""
    min_committee_size: int = models.MIN_COMMITTEE_SIZE
    max_committee_size: int = models.MAX_COMMITTEE_SIZE
    max_description_len: int = models.MAX_DESCRIPTION_LEN
    max_reason_len: int = models.MAX_REASON_LEN
    max_registry_size: int = models.MAX_REGISTRY_SIZE
    max_pending_selections: int = models.MAX_PENDING_SELECTIONS
    min_stake: int = models.MIN_STAKE
    initial_reputation: int = models.INITIAL_REPUTATION
    max_reputation: int = models.MAX_REPUTATION
    reputation_reward: int = models.REPUTATION_REWARD
    reputation_penalty: int = models.REPUTATION_PENALTY
    slash_percent_per_seat: int = models.SLASH_PERCENT_PER_SEAT

    def __post_init__(self):
        if self.min_committee_size < models.MIN_COMMITTEE_SIZE:
            raise ValueError(f"min_committee_size must be >= {models.MIN_COMMITTEE_SIZE}")
        if self.max_committee_size < self.min_committee_size:
            raise ValueError("max_committee_size must be >= min_committee_size")
        if not 0 <= self.initial_reputation <= self.max_reputation:
            raise ValueError("initial_reputation must be in [0, max_reputation]")
        if self.slash_percent_per_seat * self.max_committee_size > 100:
            raise ValueError("slash_percent_per_seat * max_committee_size must not exceed 100")
        for name in ("max_description_len", "max_reason_len", "max_registry_size",
                     "max_pending_selections", "reputation_reward", "reputation_penalty"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


@dataclass
class DistributionConfig:
    """Distribution engine configuration."""
    queue_capacity: int = models.MAX_DISTRIBUTION_QUEUE
    funds_from_ledger: bool = True  # run_round reads liquidity when no amount is given

    def __post_init__(self):
        if self.queue_capacity <= 0:
            raise ValueError("queue_capacity must be positive")


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"  # "json" or "text"
    file: Optional[str] = None
    max_size_mb: int = 100
    backup_count: int = 5
    include_timestamps: bool = True


@dataclass
class MetricsConfig:
    """Metrics configuration."""
    enabled: bool = True
    namespace: str = "poolguard"


# =============================================================================
# Main Configuration
# =============================================================================

@dataclass
class PoolGuardConfig:
    """Main configuration combining all sections."""
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    distribution: DistributionConfig = field(default_factory=DistributionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)

    @classmethod
    def load(
        cls,
        config_file: Optional[Union[str, Path]] = None,
        env_prefix: str = "POOLGUARD",
    ) -> "PoolGuardConfig":
        """
        Load configuration with hierarchy: env vars > config file > defaults.

        Args:
            config_file: Path to config file (JSON, TOML or YAML)
            env_prefix: Prefix for environment variables

        Returns:
            Loaded and validated configuration
        """
        config_dict: Dict[str, Any] = {}

        if config_file:
            config_dict = cls._load_file(Path(config_file))

        config_dict = cls._apply_env_overrides(config_dict, env_prefix)

        config = cls._from_dict(config_dict)
        config.validate()
        return config

    @classmethod
    def _load_file(cls, path: Path) -> Dict[str, Any]:
        """Load configuration from file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return {}

        content = path.read_text()

        if path.suffix == ".json":
            parsed = json.loads(content)
        elif path.suffix == ".toml":
            parsed = tomllib.loads(content)
        elif path.suffix in {".yaml", ".yml"}:
            parsed = yaml.safe_load(content)
        else:
            logger.warning(f"Unknown config file format: {path.suffix}")
            return {}

        if not isinstance(parsed, dict):
            logger.warning("Config file must be a mapping at top level")
            return {}
        return parsed

    @classmethod
    def _apply_env_overrides(cls, config: Dict[str, Any], prefix: str) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        sections = {f.name for f in fields(cls)}
        for key, value in os.environ.items():
            if not key.startswith(f"{prefix}_"):
                continue

            # POOLGUARD_PROTOCOL_MIN_STAKE -> protocol.min_stake
            parts = key[len(prefix) + 1:].lower().split("_")
            if len(parts) < 2:
                continue

            section = parts[0]
            if section not in sections:
                continue
            field_name = "_".join(parts[1:])

            if section not in config or not isinstance(config[section], dict):
                config[section] = {}

            config[section][field_name] = cls._parse_env_value(value)

        return config

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse environment variable value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    @classmethod
    def _from_dict(cls, config_dict: Dict[str, Any]) -> "PoolGuardConfig":
        """Build config object from dictionary."""
        return cls(
            protocol=ProtocolConfig(**config_dict.get("protocol", {})),
            distribution=DistributionConfig(**config_dict.get("distribution", {})),
            logging=LoggingConfig(**config_dict.get("logging", {})),
            metrics=MetricsConfig(**config_dict.get("metrics", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration to file (YAML for .yaml/.yml, JSON otherwise)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        if path.suffix in {".yaml", ".yml"}:
            path.write_text(yaml.safe_dump(self.to_dict(), sort_keys=False))
        else:
            path.write_text(self.to_json())

    def validate(self) -> None:
        """Validate cross-section settings."""
        if self.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid logging level: {self.logging.level}")

        if self.logging.format not in ("json", "text"):
            raise ValueError(f"Invalid logging format: {self.logging.format}")


# =============================================================================
# Global Config Instance
# =============================================================================

_global_config: Optional[PoolGuardConfig] = None


def get_config() -> PoolGuardConfig:
    """Get global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = PoolGuardConfig.load()
    return _global_config


def set_config(config: PoolGuardConfig) -> None:
    """Set global configuration instance."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset global configuration to None (forces reload)."""
    global _global_config
    _global_config = None
