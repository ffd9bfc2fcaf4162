"""
Typed application configuration for scanfleet.

Single source of truth for every runtime setting: provider credentials,
provisioning cadence, planner bounds, fanout sizing and API binding.

Features:
  - Typed dataclass sections with defaults
  - ``from_dict()`` / ``to_dict()`` for flat-dict I/O
  - ``apply_env_overrides()`` for environment variables (the deployment
    names ``DO_API_TOKEN``, ``MAIN_SERVER_IP``, ``PORT``, ``REDIS_URL`` and
    ``SCANFLEET_*`` equivalents)
  - ``validate()`` returning descriptive errors

Usage::

    from scanfleet.app_config import AppConfig

    cfg = AppConfig()
    cfg.apply_env_overrides()
    errors = cfg.validate()
    if errors:
        raise SystemExit("; ".join(str(e) for e in errors))
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Tuple

log = logging.getLogger("scanfleet.app_config")


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class CoreConfig:
    """General settings."""
    debug: bool = False


@dataclass
class ProviderConfig:
    """DigitalOcean droplet settings."""
    api_token: str = ""
    region: str = "nyc3"
    size: str = "s-1vcpu-1gb"
    image: str = "ubuntu-20-04-x64"
    api_url: str = "https://api.digitalocean.com/v2"
    timeout: float = 30.0


@dataclass
class FleetConfig:
    """Provisioning, planning and teardown settings."""
    poll_interval: float = 10.0
    error_retry_interval: float = 5.0
    max_poll_attempts: int = 0      # 0 = poll until ready
    teardown_delay: float = 30.0
    callback_address: str = "localhost"
    callback_port: int = 0          # 0 = same as api.port
    worker_tag: str = "nuclei-worker"
    min_nodes: int = 1
    max_nodes: int = 5
    min_items_per_node: int = 50
    max_items_per_node: int = 500


@dataclass
class FanoutConfig:
    """Live feed settings."""
    queue_size: int = 100


@dataclass
class ApiConfig:
    """REST / WebSocket server settings."""
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    cors_origins: str = "*"


@dataclass
class RedisConfig:
    """Optional status mirror."""
    url: str = ""


# ---------------------------------------------------------------------------
# Field-key mappings  (section_attr, field_attr) <-> flat key
# ---------------------------------------------------------------------------

_KEY_TO_FIELD: Dict[str, Tuple[str, str]] = {
    "_debug": ("core", "debug"),

    "_do_token": ("provider", "api_token"),
    "_do_region": ("provider", "region"),
    "_do_size": ("provider", "size"),
    "_do_image": ("provider", "image"),
    "_do_api_url": ("provider", "api_url"),
    "_do_timeout": ("provider", "timeout"),

    "_poll_interval": ("fleet", "poll_interval"),
    "_error_retry_interval": ("fleet", "error_retry_interval"),
    "_max_poll_attempts": ("fleet", "max_poll_attempts"),
    "_teardown_delay": ("fleet", "teardown_delay"),
    "_callback_address": ("fleet", "callback_address"),
    "_callback_port": ("fleet", "callback_port"),
    "_worker_tag": ("fleet", "worker_tag"),
    "_min_nodes": ("fleet", "min_nodes"),
    "_max_nodes": ("fleet", "max_nodes"),
    "_min_items_per_node": ("fleet", "min_items_per_node"),
    "_max_items_per_node": ("fleet", "max_items_per_node"),

    "_fanout_queue_size": ("fanout", "queue_size"),

    "_apihost": ("api", "host"),
    "_apiport": ("api", "port"),
    "__loglevel": ("api", "log_level"),
    "_cors_origins": ("api", "cors_origins"),

    "_redis_url": ("redis", "url"),
}

_FIELD_TO_KEY: Dict[Tuple[str, str], str] = {
    sf: k for k, sf in _KEY_TO_FIELD.items()
}

# Environment variable -> flat key.  The bare names are the ones the
# deployment scripts already export.
_ENV_TO_KEY: Dict[str, str] = {
    "DO_API_TOKEN": "_do_token",
    "MAIN_SERVER_IP": "_callback_address",
    "PORT": "_apiport",
    "REDIS_URL": "_redis_url",
    "SCANFLEET_DEBUG": "_debug",
    "SCANFLEET_LOG_LEVEL": "__loglevel",
    "SCANFLEET_DO_REGION": "_do_region",
    "SCANFLEET_DO_SIZE": "_do_size",
    "SCANFLEET_DO_IMAGE": "_do_image",
    "SCANFLEET_POLL_INTERVAL": "_poll_interval",
    "SCANFLEET_ERROR_RETRY_INTERVAL": "_error_retry_interval",
    "SCANFLEET_MAX_POLL_ATTEMPTS": "_max_poll_attempts",
    "SCANFLEET_TEARDOWN_DELAY": "_teardown_delay",
    "SCANFLEET_CALLBACK_PORT": "_callback_port",
    "SCANFLEET_MAX_NODES": "_max_nodes",
    "SCANFLEET_API_HOST": "_apihost",
    "SCANFLEET_CORS_ORIGINS": "_cors_origins",
}


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

class ConfigError:
    """Single validation failure."""

    __slots__ = ("field", "message", "value")

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value

    def __repr__(self) -> str:
        return f"ConfigError({self.field!r}, {self.message!r})"

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


# ---------------------------------------------------------------------------
# AppConfig
# ---------------------------------------------------------------------------

@dataclass
class AppConfig:
    """Typed scanfleet configuration grouped into sections."""

    core: CoreConfig = field(default_factory=CoreConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    fleet: FleetConfig = field(default_factory=FleetConfig)
    fanout: FanoutConfig = field(default_factory=FanoutConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)

    _extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AppConfig":
        """Build from a flat dict. Unknown keys are kept in ``_extra``."""
        cfg = cls()
        for key, value in d.items():
            mapping = _KEY_TO_FIELD.get(key)
            if mapping is None:
                cfg._extra[key] = value
                continue
            section_attr, field_attr = mapping
            _set_field(getattr(cfg, section_attr), field_attr, value)
        return cfg

    @classmethod
    def from_env(cls) -> "AppConfig":
        cfg = cls()
        cfg.apply_env_overrides()
        return cfg

    def to_dict(self) -> Dict[str, Any]:
        """Export to a flat dict; ``from_dict(to_dict())`` round-trips."""
        out: Dict[str, Any] = {}
        for (section_attr, field_attr), key in _FIELD_TO_KEY.items():
            out[key] = getattr(getattr(self, section_attr), field_attr)
        out.update(self._extra)
        return out

    def apply_env_overrides(self) -> List[str]:
        """Override fields from environment variables.

        Returns the names of the variables that were applied.
        """
        overridden: List[str] = []

        for env_var, key in _ENV_TO_KEY.items():
            raw = os.environ.get(env_var)
            if raw is None:
                continue
            section_attr, field_attr = _KEY_TO_FIELD[key]
            _set_field(getattr(self, section_attr), field_attr, raw)
            overridden.append(env_var)

        if overridden:
            log.info(
                "Applied %d env-var override(s): %s",
                len(overridden),
                ", ".join(overridden),
            )
        return overridden

    def merge(self, overrides: Dict[str, Any]) -> None:
        """Apply a flat dict of overrides on top of current values."""
        for key, value in overrides.items():
            mapping = _KEY_TO_FIELD.get(key)
            if mapping is None:
                self._extra[key] = value
                continue
            section_attr, field_attr = mapping
            _set_field(getattr(self, section_attr), field_attr, value)

    @property
    def callback_port(self) -> int:
        return self.fleet.callback_port or self.api.port

    def validate(self) -> List[ConfigError]:
        """Validate all fields. Returns a list of errors (empty = valid)."""
        errors: List[ConfigError] = []

        if not self.provider.api_token:
            errors.append(ConfigError(
                "_do_token",
                "DigitalOcean API token is required (DO_API_TOKEN)",
            ))
        if self.provider.timeout <= 0:
            errors.append(ConfigError(
                "_do_timeout", "Must be > 0", self.provider.timeout))

        fleet = self.fleet
        if fleet.poll_interval <= 0:
            errors.append(ConfigError(
                "_poll_interval", "Must be > 0", fleet.poll_interval))
        if fleet.error_retry_interval <= 0:
            errors.append(ConfigError(
                "_error_retry_interval", "Must be > 0",
                fleet.error_retry_interval))
        if fleet.max_poll_attempts < 0:
            errors.append(ConfigError(
                "_max_poll_attempts", "Must be >= 0 (0 = unbounded)",
                fleet.max_poll_attempts))
        if fleet.teardown_delay < 0:
            errors.append(ConfigError(
                "_teardown_delay", "Must be >= 0", fleet.teardown_delay))
        if not fleet.callback_address:
            errors.append(ConfigError(
                "_callback_address",
                "Nodes need an address to reach the API (MAIN_SERVER_IP)",
            ))
        if fleet.min_nodes < 1:
            errors.append(ConfigError(
                "_min_nodes", "Must be >= 1", fleet.min_nodes))
        if fleet.max_nodes < fleet.min_nodes:
            errors.append(ConfigError(
                "_max_nodes", "Must be >= min nodes", fleet.max_nodes))
        if fleet.min_items_per_node < 1:
            errors.append(ConfigError(
                "_min_items_per_node", "Must be >= 1",
                fleet.min_items_per_node))
        if fleet.max_items_per_node < fleet.min_items_per_node:
            errors.append(ConfigError(
                "_max_items_per_node", "Must be >= min items per node",
                fleet.max_items_per_node))

        if self.fanout.queue_size < 1:
            errors.append(ConfigError(
                "_fanout_queue_size", "Must be >= 1", self.fanout.queue_size))

        if self.api.port < 1 or self.api.port > 65535:
            errors.append(ConfigError(
                "_apiport", "Must be 1-65535", self.api.port))
        if self.fleet.callback_port and not 0 < self.fleet.callback_port <= 65535:
            errors.append(ConfigError(
                "_callback_port", "Must be 1-65535", self.fleet.callback_port))
        if self.api.log_level.upper() not in (
            "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"
        ):
            errors.append(ConfigError(
                "__loglevel", "Invalid log level", self.api.log_level))

        return errors

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a value by flat key."""
        mapping = _KEY_TO_FIELD.get(key)
        if mapping is not None:
            section_attr, field_attr = mapping
            return getattr(getattr(self, section_attr), field_attr, default)
        return self._extra.get(key, default)

    def summary(self) -> Dict[str, Any]:
        """Return a concise overview suitable for logging (no secrets)."""
        return {
            "debug": self.core.debug,
            "provider": f"digitalocean ({self.provider.region}, {self.provider.size})",
            "token_set": bool(self.provider.api_token),
            "callback": f"{self.fleet.callback_address}:{self.callback_port}",
            "nodes": f"{self.fleet.min_nodes}-{self.fleet.max_nodes}",
            "api": f"{self.api.host}:{self.api.port}",
            "redis_mirror": bool(self.redis.url),
        }


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _set_field(section: Any, field_attr: str, value: Any) -> None:
    """Coerce *value* to the target field's type and set it."""
    target_type: type = str
    for f in fields(section):
        if f.name == field_attr:
            if f.type in (bool, "bool"):
                target_type = bool
            elif f.type in (int, "int"):
                target_type = int
            elif f.type in (float, "float"):
                target_type = float
            break

    if isinstance(value, str) and target_type is not str:
        value = _coerce(value, target_type)
    elif target_type is int and isinstance(value, float):
        value = int(value)
    elif target_type is float and isinstance(value, int) and not isinstance(value, bool):
        value = float(value)

    setattr(section, field_attr, value)


def _coerce(raw: str, target: type) -> Any:
    """Best-effort coercion from string to target type."""
    if target is bool:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if target is int:
        try:
            return int(raw)
        except (ValueError, TypeError):
            return 0
    if target is float:
        try:
            return float(raw)
        except (ValueError, TypeError):
            return 0.0
    return raw
