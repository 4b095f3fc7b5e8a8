"""
Connector Registry Module
=========================

Loads connector definitions and pipeline tuning from a YAML file.
Connectors describe which external sources may be queried, their rate
budgets and how much they are trusted. Scheduler and batch settings can
additionally be overridden through environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from venue_fusion.core.enums import ConnectorKind, UpdateType
from venue_fusion.core.scoring import QualityConfig


def _env_bool(value: str) -> bool:
    return value.strip().lower() not in ("0", "false", "no", "off", "")


@dataclass
class RateLimitConfig:
    """Request budget for a connector."""

    requests_per_minute: int = 60
    requests_per_day: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RateLimitConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        per_day = data.get("requests_per_day")
        return cls(
            requests_per_minute=int(data.get("requests_per_minute", 60)),
            requests_per_day=int(per_day) if per_day is not None else None,
        )


@dataclass
class ConnectorConfig:
    """Configuration for a single connector."""

    name: str
    type: str
    kind: ConnectorKind = ConnectorKind.API
    enabled: bool = True
    description: str = ""
    trust_weight: float = 0.5
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    api_key_env: str | None = None
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], default_rate_limit: RateLimitConfig | None = None
    ) -> ConnectorConfig:
        """Create from dictionary."""
        rate_limit_data = data.get("rate_limit")
        if rate_limit_data:
            rate_limit = RateLimitConfig.from_dict(rate_limit_data)
        elif default_rate_limit:
            rate_limit = default_rate_limit
        else:
            rate_limit = RateLimitConfig()

        trust_weight = float(data.get("trust_weight", 0.5))
        if not 0.0 <= trust_weight <= 1.0:
            raise ValueError(f"trust_weight for {data['name']} must be in [0, 1]")

        return cls(
            name=data["name"],
            type=data["type"],
            kind=ConnectorKind(data.get("kind", "api")),
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
            trust_weight=trust_weight,
            rate_limit=rate_limit,
            api_key_env=data.get("api_key_env"),
            options=data.get("options", {}),
        )

    @property
    def api_key(self) -> str | None:
        """Credential read from the environment variable named by api_key_env."""
        if not self.api_key_env:
            return None
        return os.environ.get(self.api_key_env) or None


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    default_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = "VenueFusion/0.1"
    data_dir: str = "~/.venue_fusion/data"
    request_timeout: float = 30.0
    rate_limit_window_seconds: float = 60.0
    max_throttle_waits: int = 3
    query_keyword: str = "헬스"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            default_rate_limit=RateLimitConfig.from_dict(data.get("default_rate_limit")),
            user_agent=data.get("user_agent", "VenueFusion/0.1"),
            data_dir=data.get("data_dir", "~/.venue_fusion/data"),
            request_timeout=float(data.get("request_timeout", 30.0)),
            rate_limit_window_seconds=float(data.get("rate_limit_window_seconds", 60.0)),
            max_throttle_waits=int(data.get("max_throttle_waits", 3)),
            query_keyword=data.get("query_keyword", "헬스"),
        )


@dataclass
class FusionConfig:
    """Thresholds for grouping and merging."""

    similarity_threshold: float = 0.8
    confidence_threshold: float = 0.6
    coordinate_delta_meters: float = 100.0
    source_weights: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FusionConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            similarity_threshold=float(data.get("similarity_threshold", 0.8)),
            confidence_threshold=float(data.get("confidence_threshold", 0.6)),
            coordinate_delta_meters=float(data.get("coordinate_delta_meters", 100.0)),
            source_weights={k: float(v) for k, v in data.get("source_weights", {}).items()},
        )


@dataclass
class BatchConfig:
    """
    Batch run parameters.

    Delays and timeout are in seconds. Defaults apply to anything not
    set in YAML or the environment.
    """

    batch_size: int = 10
    concurrency: int = 3
    delay_between_batches: float = 1.0
    retry_delay: float = 0.5
    max_retries: int = 3
    timeout: float = 30.0

    _ENV = {
        "batch_size": ("BATCH_SIZE", int),
        "concurrency": ("BATCH_CONCURRENCY", int),
        "delay_between_batches": ("BATCH_DELAY_SECONDS", float),
        "retry_delay": ("BATCH_RETRY_DELAY_SECONDS", float),
        "max_retries": ("BATCH_MAX_RETRIES", int),
        "timeout": ("BATCH_TIMEOUT_SECONDS", float),
    }

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.delay_between_batches < 0 or self.retry_delay < 0:
            raise ValueError("delays must not be negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BatchConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def with_overrides(self, **overrides: Any) -> BatchConfig:
        """Return a copy with the given (non-None) fields replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def with_env(self, environ: dict[str, str] | None = None) -> BatchConfig:
        """Apply BATCH_* environment overrides."""
        environ = os.environ if environ is None else environ
        overrides = {
            attr: cast(environ[var])
            for attr, (var, cast) in self._ENV.items()
            if environ.get(var)
        }
        return self.with_overrides(**overrides)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class SchedulerConfig:
    """Calendar cadence and freshness rules for scheduled updates."""

    hour: int = 6
    minute: int = 0
    update_type: UpdateType = UpdateType.FULL
    enabled: bool = True
    interval_days: int = 3
    fresh_days: int = 7
    overdue_days: int = 30
    fresh_ratio: float = 0.8

    _ENV = {
        "hour": ("AUTO_UPDATE_HOUR", int),
        "minute": ("AUTO_UPDATE_MINUTE", int),
        "update_type": ("AUTO_UPDATE_TYPE", UpdateType),
        "enabled": ("AUTO_UPDATE_ENABLED", _env_bool),
        "interval_days": ("AUTO_UPDATE_INTERVAL_DAYS", int),
    }

    def __post_init__(self) -> None:
        self.update_type = UpdateType(self.update_type)
        if not 0 <= self.hour <= 23:
            raise ValueError("hour must be between 0 and 23")
        if not 0 <= self.minute <= 59:
            raise ValueError("minute must be between 0 and 59")
        if self.interval_days < 1:
            raise ValueError("interval_days must be at least 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SchedulerConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def with_overrides(self, **overrides: Any) -> SchedulerConfig:
        """Return a copy with the given (non-None) fields replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def with_env(self, environ: dict[str, str] | None = None) -> SchedulerConfig:
        """Apply AUTO_UPDATE_* environment overrides."""
        environ = os.environ if environ is None else environ
        overrides = {
            attr: cast(environ[var])
            for attr, (var, cast) in self._ENV.items()
            if environ.get(var)
        }
        return self.with_overrides(**overrides)

    @property
    def schedule(self) -> str:
        """Human readable time of day, e.g. '6:00'."""
        return f"{self.hour}:{self.minute:02d}"


class ConnectorRegistry:
    """
    Registry for connector and pipeline configuration.

    Loads definitions from a YAML file and provides methods to query
    and manage them.
    """

    def __init__(self) -> None:
        self._connectors: dict[str, ConnectorConfig] = {}
        self._global_config: GlobalConfig = GlobalConfig()
        self._fusion: FusionConfig = FusionConfig()
        self._quality: QualityConfig = QualityConfig()
        self._batch: BatchConfig = BatchConfig()
        self._scheduler: SchedulerConfig = SchedulerConfig()
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    @property
    def fusion(self) -> FusionConfig:
        """Get grouping and merge thresholds."""
        return self._fusion

    @property
    def quality(self) -> QualityConfig:
        """Get quality scoring configuration."""
        return self._quality

    @property
    def batch(self) -> BatchConfig:
        """Get batch configuration with environment overrides applied."""
        return self._batch.with_env()

    @property
    def scheduler(self) -> SchedulerConfig:
        """Get scheduler configuration with environment overrides applied."""
        return self._scheduler.with_env()

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the connectors.yaml file
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self._global_config = GlobalConfig.from_dict(data.get("global"))
        self._fusion = FusionConfig.from_dict(data.get("fusion"))
        self._quality = QualityConfig.from_dict(data.get("quality"))
        self._batch = BatchConfig.from_dict(data.get("batch"))
        self._scheduler = SchedulerConfig.from_dict(data.get("scheduler"))

        self._connectors.clear()
        for connector_data in data.get("connectors", []):
            connector = ConnectorConfig.from_dict(
                connector_data, self._global_config.default_rate_limit
            )
            self._connectors[connector.name] = connector

    def add_connector(self, config: ConnectorConfig) -> None:
        """Register a connector configuration programmatically."""
        self._connectors[config.name] = config

    def get_connector(self, name: str) -> ConnectorConfig | None:
        """
        Get a connector configuration by name.

        Args:
            name: Connector name

        Returns:
            ConnectorConfig if found, None otherwise
        """
        return self._connectors.get(name)

    def list_connectors(self) -> list[ConnectorConfig]:
        """Get all registered connectors."""
        return list(self._connectors.values())

    def list_enabled_connectors(
        self, kinds: set[ConnectorKind] | None = None
    ) -> list[ConnectorConfig]:
        """
        Get enabled connectors, optionally restricted to some kinds.

        Args:
            kinds: Connector kinds to include; all kinds when None

        Returns:
            List of enabled connector configurations
        """
        return [
            c
            for c in self._connectors.values()
            if c.enabled and (kinds is None or c.kind in kinds)
        ]

    def enable_connector(self, name: str) -> bool:
        """Enable a connector. Returns False if it is unknown."""
        connector = self._connectors.get(name)
        if connector is None:
            return False
        connector.enabled = True
        return True

    def disable_connector(self, name: str) -> bool:
        """Disable a connector. Returns False if it is unknown."""
        connector = self._connectors.get(name)
        if connector is None:
            return False
        connector.enabled = False
        return True

    def source_weights(self) -> dict[str, float]:
        """Trust weight per connector, with explicit fusion overrides applied."""
        weights = {c.name: c.trust_weight for c in self._connectors.values()}
        weights.update(self._fusion.source_weights)
        return weights


# Global registry instance
_default_registry: ConnectorRegistry | None = None


def get_default_registry() -> ConnectorRegistry:
    """
    Get the default connector registry instance.

    Loads configuration from the path in the CONNECTORS_CONFIG_PATH
    environment variable, or falls back to config/connectors.yaml.

    Returns:
        The global ConnectorRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        _default_registry = ConnectorRegistry()

        config_path = os.environ.get("CONNECTORS_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            project_root = Path(__file__).parent.parent.parent
            path = project_root / "config" / "connectors.yaml"

        if path.exists():
            _default_registry.load_config(path)

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (mainly for tests)."""
    global _default_registry
    _default_registry = None
