"""
Configuration for handoff synchronization.

Settings are loaded once at startup and never change for the lifetime of
the process. Sources, highest priority first:

1. An explicit path passed to load_config()
2. The HANDOFF_CONFIG environment variable
3. ~/.handoff/config.yaml, if it exists
4. HANDOFF_* environment variables over built-in defaults

Example config.yaml:

    cluster_id: survival
    redis:
      host: redis.internal
      port: 6379
      password: hunter2
      use_ssl: false
    ttl:
      data_handoff: 10
      server_switch: 10
    retry:
      attempts: 3
      delay: 0.1
"""

import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

import yaml

from .errors import ConfigurationError
from .keys import KeyType, Namespace

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".handoff" / "config.yaml"


@dataclass(frozen=True)
class RedisSettings:
    """Connection parameters for the backing Redis server."""
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    use_ssl: bool = False
    db: int = 0
    socket_timeout: float = 5.0
    connect_timeout: float = 5.0


@dataclass(frozen=True)
class TtlSettings:
    """Lifetimes, in seconds, of staged cache entries."""
    data_handoff: float = 10.0
    server_switch: float = 10.0

    def for_key(self, key_type: KeyType) -> float:
        if key_type is KeyType.DATA_HANDOFF:
            return self.data_handoff
        return self.server_switch


@dataclass(frozen=True)
class RetrySettings:
    """Bounded retry policy for departure-side writes."""
    attempts: int = 3
    delay: float = 0.1


@dataclass(frozen=True)
class HandoffConfig:
    """
    Complete, validated settings for one process.

    Attributes:
        cluster_id: Scopes every key and topic (see keys.Namespace)
        redis: Connection parameters
        ttl: Cache entry lifetimes
        retry: Departure retry policy
        queue_size: Capacity of the inbound push queue
    """
    cluster_id: str = ""
    redis: RedisSettings = field(default_factory=RedisSettings)
    ttl: TtlSettings = field(default_factory=TtlSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    queue_size: int = 1000

    @property
    def namespace(self) -> Namespace:
        return Namespace(self.cluster_id)

    def validate(self) -> "HandoffConfig":
        """
        Check every setting, raising on the first invalid one.

        Returns:
            self, so calls can be chained

        Raises:
            ConfigurationError: If any setting is invalid
        """
        if not isinstance(self.redis.host, str) or not self.redis.host.strip():
            raise ConfigurationError("redis.host must be a non-empty string")
        if not 1 <= self.redis.port <= 65535:
            raise ConfigurationError(f"redis.port out of range: {self.redis.port}")
        if self.redis.db < 0:
            raise ConfigurationError(f"redis.db must be >= 0, got {self.redis.db}")
        if self.redis.socket_timeout <= 0 or self.redis.connect_timeout <= 0:
            raise ConfigurationError("redis timeouts must be positive")
        if self.ttl.data_handoff <= 0 or self.ttl.server_switch <= 0:
            raise ConfigurationError("ttl values must be positive")
        if self.retry.attempts < 1:
            raise ConfigurationError(f"retry.attempts must be >= 1, got {self.retry.attempts}")
        if self.retry.delay < 0:
            raise ConfigurationError("retry.delay must not be negative")
        if self.queue_size < 1:
            raise ConfigurationError(f"queue_size must be >= 1, got {self.queue_size}")
        if ":" in self.cluster_id or any(c.isspace() for c in self.cluster_id):
            raise ConfigurationError(
                f"cluster_id must not contain ':' or whitespace: {self.cluster_id!r}"
            )
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HandoffConfig":
        """
        Build a validated config from a nested dictionary.

        Unknown keys are rejected rather than ignored.

        Raises:
            ConfigurationError: On unknown keys, wrong types or invalid values
        """
        data = dict(data or {})
        try:
            config = cls(
                cluster_id=str(data.pop("cluster_id", "") or ""),
                redis=_section(RedisSettings, data.pop("redis", None)),
                ttl=_section(TtlSettings, data.pop("ttl", None)),
                retry=_section(RetrySettings, data.pop("retry", None)),
                queue_size=int(data.pop("queue_size", 1000)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        if data:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(data))}")
        return config.validate()

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "HandoffConfig":
        """
        Load a validated config from a YAML file.

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid
        """
        path = Path(path).expanduser()
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        logger.debug(f"Loaded configuration from {path}")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, base: Optional[Dict[str, Any]] = None) -> "HandoffConfig":
        """
        Overlay HANDOFF_* environment variables on a base dictionary.

        Recognised variables: HANDOFF_CLUSTER_ID, HANDOFF_REDIS_HOST,
        HANDOFF_REDIS_PORT, HANDOFF_REDIS_PASSWORD, HANDOFF_REDIS_SSL.
        """
        data = dict(base or {})
        redis = dict(data.get("redis") or {})

        if os.getenv("HANDOFF_CLUSTER_ID") is not None:
            data["cluster_id"] = os.environ["HANDOFF_CLUSTER_ID"]
        if os.getenv("HANDOFF_REDIS_HOST"):
            redis["host"] = os.environ["HANDOFF_REDIS_HOST"]
        if os.getenv("HANDOFF_REDIS_PORT"):
            redis["port"] = os.environ["HANDOFF_REDIS_PORT"]
        if os.getenv("HANDOFF_REDIS_PASSWORD"):
            redis["password"] = os.environ["HANDOFF_REDIS_PASSWORD"]
        if os.getenv("HANDOFF_REDIS_SSL"):
            redis["use_ssl"] = os.environ["HANDOFF_REDIS_SSL"].lower() in ("1", "true", "yes", "on")

        if redis:
            data["redis"] = redis
        return cls.from_dict(data)

    def to_dict(self, mask_password: bool = False) -> Dict[str, Any]:
        """Convert to a nested dictionary (the same shape from_dict accepts)."""
        data = asdict(self)
        if mask_password and data["redis"]["password"]:
            data["redis"]["password"] = "********"
        return data


def _section(section_cls, values: Optional[Dict[str, Any]]):
    """Instantiate one settings section, coercing scalar types."""
    if values is None:
        return section_cls()
    if not isinstance(values, dict):
        raise ConfigurationError(f"Section for {section_cls.__name__} must be a mapping")

    defaults = section_cls()
    kwargs = {}
    for name, raw in values.items():
        if not hasattr(defaults, name):
            raise ConfigurationError(f"Unknown setting for {section_cls.__name__}: {name}")
        default = getattr(defaults, name)
        if raw is None:
            kwargs[name] = None if default is None else default
        elif default is None:
            kwargs[name] = str(raw)
        elif isinstance(default, bool):
            kwargs[name] = raw if isinstance(raw, bool) else str(raw).lower() in ("1", "true", "yes", "on")
        else:
            kwargs[name] = type(default)(raw)
    return section_cls(**kwargs)


def load_config(path: Optional[Union[str, Path]] = None) -> HandoffConfig:
    """
    Resolve and load the process configuration.

    Args:
        path: Explicit config file; overrides every other source

    Returns:
        Validated HandoffConfig

    Raises:
        ConfigurationError: If the selected source is invalid
    """
    if path is None and os.getenv("HANDOFF_CONFIG"):
        path = os.environ["HANDOFF_CONFIG"]
    if path is None and DEFAULT_CONFIG_PATH.exists():
        path = DEFAULT_CONFIG_PATH

    if path is not None:
        base = HandoffConfig.from_yaml(path).to_dict()
        return HandoffConfig.from_env(base)
    return HandoffConfig.from_env()


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "RedisSettings",
    "TtlSettings",
    "RetrySettings",
    "HandoffConfig",
    "load_config",
]
