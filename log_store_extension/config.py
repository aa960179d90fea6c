"""Configuration module: frozen dataclass loaded from YAML and env vars."""

import logging
import os
import sys
from dataclasses import dataclass

import yaml

from log_store_extension.errors import ConfigError
from log_store_extension.models import BufferingConfig

logger = logging.getLogger(__name__)

ADDRESS_ENV_NAME = "LOG_STORE_ADDRESS"
RUNTIME_API_ENV_NAME = "AWS_LAMBDA_RUNTIME_API"
CONFIG_FILE_ENV_NAME = "EXTENSION_CONFIG_FILE"

# Limits the platform's Logs API accepts for buffering.
TIMEOUT_MS_RANGE = (25, 30_000)
MAX_BYTES_RANGE = (262_144, 1_048_576)
MAX_ITEMS_RANGE = (1_000, 10_000)


@dataclass(frozen=True)
class Config:
    log_store_host: str = "127.0.0.1"
    log_store_port: int = 9999
    runtime_api: str = "127.0.0.1:9001"
    extension_name: str = "log-store-extension"
    listener_host: str = "0.0.0.0"
    listener_port: int = 9002
    advertised_host: str = "sandbox.localdomain"
    log_types: tuple = ("platform", "function")
    buffer_timeout_ms: int = 25
    buffer_max_bytes: int = 262_144
    buffer_max_items: int = 1_000
    queue_capacity: int = 1024
    enqueue_timeout: float = 1.0
    max_delivery_attempts: int = 5
    backoff_base: float = 0.1
    backoff_max: float = 2.0
    connect_timeout: float = 5.0
    drain_margin_ms: int = 100
    signal_drain_seconds: float = 1.0
    metrics_interval: float = 0.0
    log_level: str = "INFO"

    @property
    def log_store_address(self) -> tuple[str, int]:
        return self.log_store_host, self.log_store_port

    @property
    def buffering(self) -> BufferingConfig:
        return BufferingConfig(
            max_bytes=self.buffer_max_bytes,
            max_items=self.buffer_max_items,
            timeout_ms=self.buffer_timeout_ms,
        )


# field name -> (env var, converter)
_TUNABLES = {
    "extension_name": ("EXTENSION_NAME", str),
    "listener_host": ("LISTENER_HOST", str),
    "listener_port": ("LISTENER_PORT", int),
    "advertised_host": ("LISTENER_ADVERTISED_HOST", str),
    "log_types": ("LOG_TYPES", None),
    "buffer_timeout_ms": ("LOG_BUFFER_TIMEOUT_MS", int),
    "buffer_max_bytes": ("LOG_BUFFER_MAX_BYTES", int),
    "buffer_max_items": ("LOG_BUFFER_MAX_ITEMS", int),
    "queue_capacity": ("QUEUE_CAPACITY", int),
    "enqueue_timeout": ("ENQUEUE_TIMEOUT", float),
    "max_delivery_attempts": ("MAX_DELIVERY_ATTEMPTS", int),
    "backoff_base": ("BACKOFF_BASE", float),
    "backoff_max": ("BACKOFF_MAX", float),
    "connect_timeout": ("CONNECT_TIMEOUT", float),
    "drain_margin_ms": ("DRAIN_MARGIN_MS", int),
    "signal_drain_seconds": ("SIGNAL_DRAIN_SECONDS", float),
    "metrics_interval": ("METRICS_INTERVAL", float),
    "log_level": ("LOG_LEVEL", str),
}


def parse_address(value: str | None, name: str = ADDRESS_ENV_NAME) -> tuple[str, int]:
    """Parse ``host:port`` (or ``[v6-host]:port``) into a (host, port) tuple.

    Raises:
        ConfigError: If the value is missing or not a valid ``host:port`` pair.
    """
    if value is None or not value.strip():
        raise ConfigError(f"Unable to find environment variable: {name}")

    text = value.strip()
    if text.startswith("["):
        host, sep, rest = text[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ConfigError(f"{name} is not a valid host:port pair: {value!r}")
        port_text = rest[1:]
    else:
        host, sep, port_text = text.rpartition(":")
        if not sep or ":" in host:
            raise ConfigError(f"{name} is not a valid host:port pair: {value!r}")

    if not host or any(ch.isspace() for ch in host):
        raise ConfigError(f"{name} has an invalid host: {value!r}")
    if not port_text.isdigit():
        raise ConfigError(f"{name} has an invalid port: {value!r}")

    port = int(port_text)
    if not 1 <= port <= 65535:
        raise ConfigError(f"{name} port out of range: {port}")
    return host, port


def load_yaml_config(path: str | None) -> dict:
    """Load tunables from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


def _parse_log_types(value) -> tuple:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ConfigError(f"log_types must be a list or comma-separated string: {value!r}")
    types = tuple(item.strip() for item in items if item.strip())
    if not types:
        raise ConfigError("log_types must name at least one log type")
    return types


def _convert(key: str, value, converter):
    if converter is None:
        return _parse_log_types(value)
    try:
        return converter(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from exc


def _check_range(key: str, value, low, high=None):
    if value < low or (high is not None and value > high):
        bounds = f"{low}..{high}" if high is not None else f">= {low}"
        raise ConfigError(f"{key} must be {bounds}, got {value}")


def _validate(kwargs: dict):
    _check_range("buffer_timeout_ms", kwargs["buffer_timeout_ms"], *TIMEOUT_MS_RANGE)
    _check_range("buffer_max_bytes", kwargs["buffer_max_bytes"], *MAX_BYTES_RANGE)
    _check_range("buffer_max_items", kwargs["buffer_max_items"], *MAX_ITEMS_RANGE)
    _check_range("listener_port", kwargs["listener_port"], 0, 65535)
    _check_range("queue_capacity", kwargs["queue_capacity"], 1)
    _check_range("max_delivery_attempts", kwargs["max_delivery_attempts"], 1)
    for key in ("enqueue_timeout", "backoff_base", "backoff_max", "drain_margin_ms",
                "signal_drain_seconds", "metrics_interval"):
        _check_range(key, kwargs[key], 0)
    if kwargs["connect_timeout"] <= 0:
        raise ConfigError(f"connect_timeout must be > 0, got {kwargs['connect_timeout']}")
    if not kwargs["extension_name"]:
        raise ConfigError("extension_name must not be empty")
    if not isinstance(logging.getLevelName(kwargs["log_level"].upper()), int):
        raise ConfigError(f"Unknown log_level: {kwargs['log_level']!r}")


def load_config(environ=None) -> Config:
    """Build Config from defaults <- YAML file <- env vars (highest priority).

    Raises:
        ConfigError: If LOG_STORE_ADDRESS or AWS_LAMBDA_RUNTIME_API is absent
            or malformed, or a tunable is out of range.
    """
    if environ is None:
        environ = os.environ

    host, port = parse_address(environ.get(ADDRESS_ENV_NAME), ADDRESS_ENV_NAME)
    runtime_api = environ.get(RUNTIME_API_ENV_NAME)
    parse_address(runtime_api, RUNTIME_API_ENV_NAME)

    yaml_data = load_yaml_config(environ.get(CONFIG_FILE_ENV_NAME))

    kwargs: dict = {
        "extension_name": os.path.basename(sys.argv[0]) or Config.extension_name,
    }
    for key, (env_name, converter) in _TUNABLES.items():
        if key in yaml_data:
            kwargs[key] = _convert(key, yaml_data[key], converter)
        if env_name in environ:
            kwargs[key] = _convert(key, environ[env_name], converter)
        kwargs.setdefault(key, getattr(Config, key))

    unknown = set(yaml_data) - set(_TUNABLES)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))

    _validate(kwargs)
    return Config(
        log_store_host=host,
        log_store_port=port,
        runtime_api=runtime_api.strip(),
        **kwargs,
    )
