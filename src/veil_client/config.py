"""
Configuration system for veil-client.

This module provides typed configuration classes with:
- Dataclass-based settings with validation
- Environment variable loading
- YAML/TOML file loading with schema validation
- Sensible defaults with override capability
"""
from __future__ import annotations

import dataclasses
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional

import jsonschema
from dotenv import find_dotenv, load_dotenv

from .config_schema import CONFIG_SCHEMA

HARDHAT_CHAIN_ID = 31337
SEPOLIA_CHAIN_ID = 11155111
DEFAULT_LOCAL_RPC_URL = "http://127.0.0.1:8545"


def _local_rpc_url() -> str:
    return os.getenv("VEIL_LOCAL_RPC_URL", DEFAULT_LOCAL_RPC_URL)


def _default_rpc_urls() -> dict[int, str]:
    urls = {HARDHAT_CHAIN_ID: _local_rpc_url()}
    if sepolia := os.getenv("VEIL_SEPOLIA_RPC_URL"):
        urls[SEPOLIA_CHAIN_ID] = sepolia
    return urls


# =============================================================================
# Controller Configuration
# =============================================================================

@dataclass
class RetryConfig:
    """Retry policy for the encrypt/submit/confirm steps."""

    max_attempts: int = 3
    backoff: float = 0.5
    confirmation_timeout: Optional[float] = 60.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff < 0:
            raise ValueError("backoff cannot be negative")
        if self.confirmation_timeout is not None and self.confirmation_timeout <= 0:
            raise ValueError("confirmation_timeout must be positive")


@dataclass
class DeltaLimits:
    """Inclusive range for a signed counter delta."""

    minimum: int = -10
    maximum: int = 20

    def __post_init__(self):
        if self.minimum > 0 or self.maximum < 0:
            raise ValueError("delta limits must include zero")


@dataclass
class DecryptionConfig:
    """Configuration for decryption authorizations."""

    authorization_ttl: float = 86400.0

    def __post_init__(self):
        if self.authorization_ttl <= 0:
            raise ValueError("authorization_ttl must be positive")


# =============================================================================
# Network Configuration
# =============================================================================

@dataclass
class NetworkConfig:
    """RPC endpoints and mock chains."""

    rpc_urls: dict[int, str] = field(default_factory=_default_rpc_urls)
    mock_chains: dict[int, str] = field(
        default_factory=lambda: {HARDHAT_CHAIN_ID: _local_rpc_url()}
    )

    def is_mock_chain(self, chain_id: int) -> bool:
        return chain_id in self.mock_chains

    def rpc_url_for(self, chain_id: int) -> str | None:
        """Mock chain endpoint first, then the regular RPC map."""
        if chain_id in self.mock_chains:
            return self.mock_chains[chain_id]
        return self.rpc_urls.get(chain_id)


@dataclass
class DeploymentsConfig:
    """Known contract addresses by chain id."""

    contracts: dict[int, str] = field(default_factory=dict)


@dataclass
class ActivityConfig:
    """Configuration for the activity sink."""

    max_entries: int = 50

    def __post_init__(self):
        if self.max_entries < 1:
            raise ValueError("max_entries must be at least 1")


# =============================================================================
# Logging Configuration
# =============================================================================

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: LogLevel = "INFO"
    format: LogFormat = "text"


# =============================================================================
# Master Settings
# =============================================================================

_CHAIN_MAPS = {("network", "rpc_urls"), ("network", "mock_chains"), ("deployments", "contracts")}
_CONTRACT_ENV = re.compile(r"^CONTRACT_(\d+)$")


@dataclass
class Settings:
    """
    Master configuration for the controller.

    This aggregates all configuration sections into a single object
    that can be loaded from environment variables, files, or constructed
    programmatically.
    """

    retry: RetryConfig = field(default_factory=RetryConfig)
    delta: DeltaLimits = field(default_factory=DeltaLimits)
    decryption: DecryptionConfig = field(default_factory=DecryptionConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    deployments: DeploymentsConfig = field(default_factory=DeploymentsConfig)
    activity: ActivityConfig = field(default_factory=ActivityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, prefix: str = "VEIL_") -> Settings:
        """
        Load settings from environment variables.

        Example:
            VEIL_MAX_ATTEMPTS=5
            VEIL_RETRY_BACKOFF=0.25
            VEIL_CONTRACT_31337=0x5FbDB2315678afecb367f032d93F642f64180aa3
        """
        settings = cls()

        # Retry settings
        if attempts := os.getenv(f"{prefix}MAX_ATTEMPTS"):
            settings.retry = dataclasses.replace(settings.retry, max_attempts=int(attempts))
        if backoff := os.getenv(f"{prefix}RETRY_BACKOFF"):
            settings.retry = dataclasses.replace(settings.retry, backoff=float(backoff))
        if timeout := os.getenv(f"{prefix}CONFIRMATION_TIMEOUT"):
            value = None if timeout.lower() in ("none", "off", "0") else float(timeout)
            settings.retry = dataclasses.replace(settings.retry, confirmation_timeout=value)

        # Decryption settings
        if ttl := os.getenv(f"{prefix}AUTHORIZATION_TTL"):
            settings.decryption = DecryptionConfig(authorization_ttl=float(ttl))

        # Deployments
        for key, value in os.environ.items():
            if not key.startswith(prefix):
                continue
            if match := _CONTRACT_ENV.match(key[len(prefix):]):
                settings.deployments.contracts[int(match.group(1))] = value

        # Activity settings
        if max_entries := os.getenv(f"{prefix}ACTIVITY_MAX_ENTRIES"):
            settings.activity = ActivityConfig(max_entries=int(max_entries))

        # Logging settings
        if level := os.getenv(f"{prefix}LOG_LEVEL"):
            settings.logging.level = level.upper()  # type: ignore
        if log_format := os.getenv(f"{prefix}LOG_FORMAT"):
            settings.logging.format = log_format.lower()  # type: ignore

        return settings

    @classmethod
    def from_file(cls, path: str | Path) -> Settings:
        """
        Load settings from a YAML or TOML file.

        Args:
            path: Path to configuration file (.yaml, .yml, or .toml)

        Returns:
            Settings object with values from file
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            import yaml

            with open(path) as f:
                data = yaml.safe_load(f) or {}
        elif suffix == ".toml":
            try:
                import tomllib
            except ImportError:
                import tomli as tomllib
            with open(path, "rb") as f:
                data = tomllib.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {suffix}")

        return cls._from_dict(data)

    @classmethod
    def default(cls) -> Settings:
        return cls()

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> Settings:
        """
        Create Settings from a dictionary.

        The dictionary is validated against the configuration schema
        before the Settings object is created.
        """
        data = _stringify_chain_keys(data)
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e.message}") from e

        settings = cls()

        if "retry" in data:
            settings.retry = RetryConfig(**data["retry"])
        if "delta" in data:
            settings.delta = DeltaLimits(**data["delta"])
        if "decryption" in data:
            settings.decryption = DecryptionConfig(**data["decryption"])
        if "network" in data:
            network = data["network"]
            if "rpc_urls" in network:
                settings.network.rpc_urls = {int(k): v for k, v in network["rpc_urls"].items()}
            if "mock_chains" in network:
                settings.network.mock_chains = {int(k): v for k, v in network["mock_chains"].items()}
        if "deployments" in data:
            contracts = data["deployments"].get("contracts", {})
            settings.deployments.contracts = {int(k): v for k, v in contracts.items()}
        if "activity" in data:
            settings.activity = ActivityConfig(**data["activity"])
        if "logging" in data:
            for key, value in data["logging"].items():
                setattr(settings.logging, key, value)

        return settings

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""

        def convert(obj):
            if dataclasses.is_dataclass(obj):
                return {k: convert(v) for k, v in dataclasses.asdict(obj).items()}
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        return convert(self)


def _stringify_chain_keys(data: dict[str, Any]) -> dict[str, Any]:
    # YAML parses bare chain ids as ints; the schema matches on string keys.
    data = {k: (dict(v) if isinstance(v, dict) else v) for k, v in (data or {}).items()}
    for section, name in _CHAIN_MAPS:
        mapping = data.get(section, {}).get(name) if isinstance(data.get(section), dict) else None
        if isinstance(mapping, dict):
            data[section][name] = {str(k): v for k, v in mapping.items()}
    return data


# =============================================================================
# Global Settings & Helpers
# =============================================================================

_global_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance, creating with defaults if needed."""
    global _global_settings
    if _global_settings is None:
        _global_settings = Settings.from_env()
    return _global_settings


def configure(settings: Settings | None = None, **kwargs) -> Settings:
    """
    Configure global settings.

    Args:
        settings: Settings object to use globally
        **kwargs: Override specific settings sections

    Returns:
        The configured Settings object
    """
    global _global_settings

    if settings is not None:
        _global_settings = settings
    elif _global_settings is None:
        _global_settings = Settings.from_env()

    for key, value in kwargs.items():
        if hasattr(_global_settings, key):
            setattr(_global_settings, key, value)

    return _global_settings


def load_env(path: str | None = None, *, override: bool = False) -> bool:
    """
    Load environment variables from a .env file.

    Args:
        path: Optional path to a .env file. If not provided, uses find_dotenv().
        override: Whether to override existing environment variables.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        return False
    return load_dotenv(env_path, override=override)


__all__ = [
    "HARDHAT_CHAIN_ID",
    "SEPOLIA_CHAIN_ID",
    "RetryConfig",
    "DeltaLimits",
    "DecryptionConfig",
    "NetworkConfig",
    "DeploymentsConfig",
    "ActivityConfig",
    "LoggingConfig",
    "Settings",
    "get_settings",
    "configure",
    "load_env",
]
