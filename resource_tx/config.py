"""
Resource Transaction Configuration

Configuration with YAML files, environment variables and validation.

Configuration Sources (in order of precedence):
    1. Environment variables (RESOURCE_TX_*)
    2. Explicit overrides passed to load_config()
    3. YAML config file
    4. Default values

There is no global configuration object. load_config() returns a
ResourceTxConfig, and ResourceTxConfig.context() produces the immutable
TransferContext that witness construction and transaction generation take as
an explicit argument.

Copyright (c) 2024 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from resource_tx.merkle import ACTION_TREE_DEPTH
from resource_tx.observability import LogLevel
from resource_tx.resource import TOKEN_TRANSFER_LOGIC_REF

T = TypeVar("T")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


def _is_address(value: str) -> bool:
    raw = value[2:] if value.startswith("0x") else value
    if len(raw) != 40:
        return False
    try:
        bytes.fromhex(raw)
    except ValueError:
        return False
    return True


def _is_digest(value: str) -> bool:
    try:
        return len(bytes.fromhex(value)) == 32
    except ValueError:
        return False


def _is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def address_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding and validation.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    secret: bool = False  # Don't log if True
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def accepts(self, value: Any) -> bool:
        """True if value passes the validator; wrongly typed values fail."""
        if self.validator is None:
            return True
        try:
            return bool(self.validator(value))
        except (TypeError, ValueError):
            return False

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if not self.accepts(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")
        self._value = value

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        try:
            if target_type == int:
                return int(value)  # type: ignore
            elif target_type == float:
                return float(value)  # type: ignore
        except ValueError as e:
            raise ConfigValidationError(
                f"{self.env_var} is not a valid {target_type.__name__}: {value!r}"
            ) from e
        return value  # type: ignore


@dataclass
class ProtocolConfig:
    """On-chain and circuit parameters."""
    forwarder_address: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="0x" + "00" * 20,
        env_var="RESOURCE_TX_FORWARDER_ADDRESS",
        description="Forwarder contract address of the current protocol version",
        validator=_is_address,
    ))
    legacy_forwarder_address: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="0x" + "00" * 20,
        env_var="RESOURCE_TX_LEGACY_FORWARDER_ADDRESS",
        description="Forwarder contract address of the previous protocol version (migrations)",
        validator=_is_address,
    ))
    token_transfer_logic_ref: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="RESOURCE_TX_LOGIC_REF",
        description="Verifying key digest of the token transfer logic (hex, empty for built-in)",
        validator=lambda x: x == "" or _is_digest(x),
    ))
    action_tree_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=ACTION_TREE_DEPTH,
        env_var="RESOURCE_TX_ACTION_TREE_DEPTH",
        description="Depth of the per-action Merkle tree",
        validator=lambda x: 1 <= x <= 16,
    ))


@dataclass
class IndexerConfig:
    """Merkle-path indexer client."""
    url: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="http://localhost:4000",
        env_var="RESOURCE_TX_INDEXER_URL",
        description="Base URL of the Merkle-path indexer",
        validator=_is_url,
    ))
    max_attempts: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=6,
        env_var="RESOURCE_TX_INDEXER_MAX_ATTEMPTS",
        description="Total attempts per Merkle-path fetch",
        validator=lambda x: x >= 1,
    ))
    rate_limit_delay_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=10.0,
        env_var="RESOURCE_TX_INDEXER_RATE_LIMIT_DELAY",
        description="Fixed wait after a 429 response",
        validator=lambda x: x >= 0,
    ))
    base_backoff_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=0.25,
        env_var="RESOURCE_TX_INDEXER_BACKOFF",
        description="First exponential backoff delay, doubled each attempt",
        validator=lambda x: x >= 0,
    ))
    timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=30.0,
        env_var="RESOURCE_TX_INDEXER_TIMEOUT",
        description="HTTP timeout per request",
        validator=lambda x: x > 0,
    ))


@dataclass
class ProverConfig:
    """Proof orchestration."""
    max_workers: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=os.cpu_count() or 4,
        env_var="RESOURCE_TX_PROVER_WORKERS",
        description="Size of the proving worker pool",
        validator=lambda x: x >= 1,
    ))


@dataclass
class SubmissionConfig:
    """Settlement submission."""
    rpc_url: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="http://localhost:8545",
        env_var="RESOURCE_TX_RPC_URL",
        description="Settlement RPC endpoint",
        validator=_is_url,
    ))
    timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=60.0,
        env_var="RESOURCE_TX_RPC_TIMEOUT",
        description="HTTP timeout for submissions",
        validator=lambda x: x > 0,
    ))


@dataclass
class ObservabilityConfig:
    """Logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="RESOURCE_TX_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in {level.value for level in LogLevel},
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="RESOURCE_TX_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass(frozen=True)
class TransferContext:
    """Protocol parameters threaded through every witness and transaction builder."""
    forwarder_address: bytes
    legacy_forwarder_address: bytes
    logic_ref: bytes
    action_tree_depth: int = ACTION_TREE_DEPTH


@dataclass
class ResourceTxConfig:
    """
    Root configuration.

    Aggregates all component configurations and provides serialization.
    """
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    indexer: IndexerConfig = field(default_factory=IndexerConfig)
    prover: ProverConfig = field(default_factory=ProverConfig)
    submission: SubmissionConfig = field(default_factory=SubmissionConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, masking secret values."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return "***" if obj.secret else obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.dump(self.to_dict(), default_flow_style=False)

    def apply(self, values: Dict[str, Any]) -> None:
        """Apply a nested mapping of values; unknown keys raise ConfigError."""
        def apply_to(config_obj: Any, data: Dict[str, Any], prefix: str) -> None:
            for key, value in data.items():
                path = f"{prefix}{key}"
                if key not in getattr(config_obj, "__dataclass_fields__", {}):
                    raise ConfigError(f"Unknown config key: {path}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif isinstance(value, dict):
                    apply_to(attr, value, f"{path}.")
                else:
                    raise ConfigError(f"Config section {path} expects a mapping")

        apply_to(self, values, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("indexer.max_attempts", 3)
        """
        parts = path.split(".")
        head: Dict[str, Any] = {parts[-1]: value}
        for part in reversed(parts[:-1]):
            head = {part: head}
        self.apply(head)

    def get(self, path: str) -> Any:
        obj: Any = self
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        if isinstance(obj, ConfigValue):
            return obj.get()
        raise ConfigError(f"Invalid config path: {path}")

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                except ConfigValidationError as e:
                    errors.append(f"{path}: {e}")
                    return
                if not obj.accepts(value):
                    errors.append(f"{path}: validation failed for value {value}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self)
        return errors

    def context(self) -> TransferContext:
        """Resolve the immutable protocol context, failing on invalid values."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))
        logic_ref = self.protocol.token_transfer_logic_ref.get()
        return TransferContext(
            forwarder_address=address_bytes(self.protocol.forwarder_address.get()),
            legacy_forwarder_address=address_bytes(self.protocol.legacy_forwarder_address.get()),
            logic_ref=bytes.fromhex(logic_ref) if logic_ref else TOKEN_TRANSFER_LOGIC_REF,
            action_tree_depth=self.protocol.action_tree_depth.get(),
        )


def load_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ResourceTxConfig:
    """Build a configuration from defaults, an optional YAML file and overrides."""
    config = ResourceTxConfig()

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration root must be a mapping: {path}")
            config.apply(data)

    if overrides:
        config.apply(overrides)

    return config
