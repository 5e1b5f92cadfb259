"""
Configuration management for LeaseKeeper.

Loads serving parameters from environment variables or a .env file.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from leasekeeper.dhcp.pool import AddressPool

ENV_LOCATIONS = [
    Path.home() / ".leasekeeper" / ".env",
    Path.home() / ".config" / "leasekeeper" / ".env",
    Path.cwd() / ".env",
]

DEFAULT_SUBNET = "192.168.1.0/24"
DEFAULT_LEASE_TIME_MS = 3600000  # 1 hour


def load_env_file() -> Path | None:
    """Load the first .env file found in the usual locations."""
    for env_path in ENV_LOCATIONS:
        if env_path.exists():
            load_dotenv(env_path)
            return env_path
    return None


@dataclass
class PoolConfig:
    """Serving parameters for one subnet."""

    subnet: str = DEFAULT_SUBNET
    reserved: list[str] = field(default_factory=list)
    lease_time_ms: int = DEFAULT_LEASE_TIME_MS

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "PoolConfig":
        """Load configuration from environment variables."""
        reserved = os.getenv("LEASEKEEPER_RESERVED", "")
        lease_time = os.getenv("LEASEKEEPER_LEASE_TIME_MS", str(DEFAULT_LEASE_TIME_MS))
        try:
            lease_time_ms = int(lease_time)
        except ValueError as e:
            raise ValueError(f"LEASEKEEPER_LEASE_TIME_MS is not an integer: {lease_time!r}") from e

        return cls(
            subnet=os.getenv("LEASEKEEPER_SUBNET", DEFAULT_SUBNET),
            reserved=[a.strip() for a in reserved.split(",") if a.strip()],
            lease_time_ms=lease_time_ms,
            log_level=os.getenv("LEASEKEEPER_LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> AddressPool:
        """Check the parameters, returning the pool they describe. Raises ValueError."""
        return AddressPool(self.subnet, self.reserved, self.lease_time_ms)


# Global config instance
_config: PoolConfig | None = None


def get_config() -> PoolConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        load_env_file()
        _config = PoolConfig.from_env()
    return _config


def set_config(config: PoolConfig | None) -> None:
    """Set the global configuration instance. None forces a reload on next access."""
    global _config
    _config = config
