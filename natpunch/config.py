"""
Broker configuration.

The broker listens on a single UDP port taken from the PORT environment
variable (default 50000). Everything else has a fixed default; a few knobs
are exposed through the environment for deployment tuning.
"""

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

from .errors import ConfigError

DEFAULT_PORT = 50000
DEFAULT_BIND_ADDRESS = "0.0.0.0"

# Members not seen for this long are evicted
STALE_TIMEOUT = 300.0

# Sleep between poll iterations
POLL_INTERVAL = 0.015

DEFAULT_STATUS_INTERVAL = 60.0

T = TypeVar("T")


def _parse(env: Mapping[str, str], name: str, default: T,
           convert: Callable[[str], T]) -> T:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return convert(raw.strip())
    except ValueError:
        raise ConfigError(f"Invalid value for {name}: {raw!r}")


def _check_port(name: str, port: Optional[int]):
    if port is not None and not 1 <= port <= 65535:
        raise ConfigError(f"{name} out of range: {port}")


@dataclass
class BrokerConfig:
    """Runtime configuration for the punch server"""
    port: int = DEFAULT_PORT
    bind_address: str = DEFAULT_BIND_ADDRESS
    health_port: Optional[int] = None
    stale_timeout: float = STALE_TIMEOUT
    poll_interval: float = POLL_INTERVAL
    status_interval: float = DEFAULT_STATUS_INTERVAL
    min_reintroduce_interval: float = 0.0
    log_level: str = "INFO"

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise ConfigError if any field is out of range"""
        _check_port("port", self.port)
        _check_port("health_port", self.health_port)
        if self.stale_timeout <= 0:
            raise ConfigError(f"stale_timeout must be positive: {self.stale_timeout}")
        if self.poll_interval < 0:
            raise ConfigError(f"poll_interval must not be negative: {self.poll_interval}")
        if self.min_reintroduce_interval < 0:
            raise ConfigError(
                f"min_reintroduce_interval must not be negative: {self.min_reintroduce_interval}")
        self.log_level = self.log_level.upper()

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BrokerConfig":
        """Create config from environment variables"""
        env = os.environ if env is None else env
        return cls(
            port=_parse(env, "PORT", DEFAULT_PORT, int),
            bind_address=env.get("NATPUNCH_BIND", DEFAULT_BIND_ADDRESS) or DEFAULT_BIND_ADDRESS,
            health_port=_parse(env, "HEALTH_PORT", None, int),
            status_interval=_parse(env, "NATPUNCH_STATUS_INTERVAL", DEFAULT_STATUS_INTERVAL, float),
            min_reintroduce_interval=_parse(env, "NATPUNCH_REINTRODUCE_INTERVAL", 0.0, float),
            log_level=env.get("LOG_LEVEL", "INFO") or "INFO",
        )
