"""Fee service configuration.

Defaults are what the production API runs with.
Override from environment with :py:meth:`FeeServiceConfig.from_env`.
"""

import datetime
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

from vault_fees.chain import DEFAULT_MULTICALL_BATCH_SIZE, MULTICALL_BATCH_SIZES, get_batch_size
from vault_fees.classification import DEFAULT_MAXI_PATTERN


logger = logging.getLogger(__name__)


#: Storage key for vault fee snapshot
VAULT_FEES_KEY = "VAULT_FEES"

#: Storage key for treasury split snapshot
FEE_BATCH_KEY = "FEE_BATCHES"

#: Served for vaults we know nothing about
DEFAULT_PERFORMANCE_FEE = Decimal("0.095")


class ConfigurationError(Exception):
    """Bad configuration value."""


def _read_seconds(name: str, default: datetime.timedelta) -> datetime.timedelta:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be seconds, got {value}") from e
    if seconds < 0:
        raise ConfigurationError(f"{name} cannot be negative, got {value}")
    return datetime.timedelta(seconds=seconds)


@dataclass(slots=True)
class FeeServiceConfig:
    """How often and how hard we refresh fees."""

    #: Sleep between fee refresh cycles
    refresh_interval: datetime.timedelta = datetime.timedelta(minutes=5)

    #: Vault fees older than this are refreshed
    cache_expiry: datetime.timedelta = datetime.timedelta(hours=12)

    #: Wait after the treasury split refresh before the first fee cycle
    init_delay: datetime.timedelta = datetime.timedelta(seconds=15)

    #: Strategies per multicall
    default_batch_size: int = DEFAULT_MULTICALL_BATCH_SIZE

    #: Chain id -> strategies per multicall, for chains rejecting large calls
    batch_sizes: dict[int, int] = field(default_factory=lambda: dict(MULTICALL_BATCH_SIZES))

    #: Max chains refreshed in parallel
    max_chain_workers: int = 16

    #: Max multicall batches per chain in parallel
    max_batch_workers: int = 8

    #: Served for vaults without fees
    default_performance_fee: Decimal = DEFAULT_PERFORMANCE_FEE

    #: Vault ids containing this are maxi vaults
    maxi_pattern: str = DEFAULT_MAXI_PATTERN

    #: SQLite file for persisted caches, None to keep caches in memory only
    database: Path | None = None

    def __post_init__(self):
        if self.default_batch_size <= 0:
            raise ConfigurationError(f"Batch size must be positive, got {self.default_batch_size}")
        for chain_id, size in self.batch_sizes.items():
            if size <= 0:
                raise ConfigurationError(f"Batch size must be positive, got {size} for chain {chain_id}")

    @staticmethod
    def from_env() -> "FeeServiceConfig":
        """Read configuration from environment variables.

        - ``VAULT_FEES_REFRESH_INTERVAL``: seconds
        - ``VAULT_FEES_CACHE_EXPIRY``: seconds
        - ``VAULT_FEES_INIT_DELAY``: seconds
        - ``VAULT_FEES_DEFAULT_BATCH_SIZE``: strategies per multicall
        - ``VAULT_FEES_DATABASE``: path to SQLite file

        :raise ConfigurationError:
            Unparseable value
        """
        defaults = FeeServiceConfig()

        batch_size = os.environ.get("VAULT_FEES_DEFAULT_BATCH_SIZE")
        try:
            default_batch_size = int(batch_size) if batch_size else defaults.default_batch_size
        except ValueError as e:
            raise ConfigurationError(f"VAULT_FEES_DEFAULT_BATCH_SIZE must be an integer, got {batch_size}") from e

        database = os.environ.get("VAULT_FEES_DATABASE")

        config = FeeServiceConfig(
            refresh_interval=_read_seconds("VAULT_FEES_REFRESH_INTERVAL", defaults.refresh_interval),
            cache_expiry=_read_seconds("VAULT_FEES_CACHE_EXPIRY", defaults.cache_expiry),
            init_delay=_read_seconds("VAULT_FEES_INIT_DELAY", defaults.init_delay),
            default_batch_size=default_batch_size,
            database=Path(database).expanduser() if database else None,
        )
        logger.info("Fee service configuration: %s", config)
        return config

    def get_batch_size(self, chain_id: int) -> int:
        return get_batch_size(chain_id, overrides=self.batch_sizes, default=self.default_batch_size)
