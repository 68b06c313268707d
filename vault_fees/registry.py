"""Vaults and chains we know about.

- Vault registry lists the strategies whose fees we track
- Chain registry tells the fee recipient and Multicall3 address of each chain

Both are simple static implementations loaded from JSON,
the production lists come from the vault configuration repository.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from eth_typing import HexAddress

from vault_fees.abi import ZERO_ADDRESS_STR
from vault_fees.chain import get_chain_id_by_name, get_default_multicall_address
from vault_fees.models import StrategyTarget


logger = logging.getLogger(__name__)


class VaultRegistry(Protocol):
    def list_vaults(self) -> list[StrategyTarget]:
        """Snapshot of all vaults.

        Called once per refresh cycle.
        """


class ChainRegistry(Protocol):
    def get_chain_ids(self) -> list[int]:
        """All chains we support."""

    def get_fee_recipient(self, chain_id: int) -> HexAddress | str | None:
        """Fee batch contract of a chain."""

    def get_multicall_address(self, chain_id: int) -> HexAddress | str | None:
        """Multicall3 contract of a chain.

        :return:
            None if the chain has no usable multicall
        """


def _parse_chain(value: int | str) -> int:
    """Chain in configuration files can be an id or a name."""
    if isinstance(value, int):
        return value

    if value.isdigit():
        return int(value)

    chain_id = get_chain_id_by_name(value)
    if chain_id is None:
        raise ValueError(f"Unknown chain: {value}")
    return chain_id


class StaticVaultRegistry:
    """Fixed list of vaults."""

    def __init__(self, vaults: list[StrategyTarget]):
        self.vaults = vaults

    def __repr__(self):
        return f"<StaticVaultRegistry {len(self.vaults)} vaults>"

    def list_vaults(self) -> list[StrategyTarget]:
        return list(self.vaults)

    @staticmethod
    def from_dicts(data: list[dict]) -> "StaticVaultRegistry":
        """Read vaults.

        - Accepts ``{"id": ..., "chain": "bsc", "strategy": "0x..."}`` entries
        - Chain can be an id or a name
        - Vaults without a strategy are skipped
        """
        vaults = []
        for entry in data:
            strategy = entry.get("strategy") or entry.get("strategyAddress")
            if not strategy or strategy == ZERO_ADDRESS_STR:
                logger.debug("Vault %s has no strategy, skipping", entry.get("id"))
                continue

            vaults.append(
                StrategyTarget(
                    vault_id=entry["id"],
                    chain_id=_parse_chain(entry["chain"]),
                    strategy_address=strategy,
                )
            )
        return StaticVaultRegistry(vaults)

    @staticmethod
    def from_json_file(path: Path) -> "StaticVaultRegistry":
        assert isinstance(path, Path), f"Got {path}"
        registry = StaticVaultRegistry.from_dicts(json.loads(path.read_text()))
        logger.info("Loaded %d vaults from %s", len(registry.vaults), path)
        return registry


@dataclass(slots=True, frozen=True)
class ChainConfig:
    """Addresses we need on a chain."""

    chain_id: int

    #: Fee batch contract
    fee_recipient: HexAddress | str | None

    #: None if there is no multicall on this chain
    multicall_address: HexAddress | str | None


class StaticChainRegistry:
    """Fixed chain configuration."""

    def __init__(self, chains: dict[int, ChainConfig]):
        self.chains = chains

    def __repr__(self):
        return f"<StaticChainRegistry chains {list(self.chains.keys())}>"

    def get_chain_ids(self) -> list[int]:
        return list(self.chains.keys())

    def get_fee_recipient(self, chain_id: int) -> HexAddress | str | None:
        return self.chains[chain_id].fee_recipient

    def get_multicall_address(self, chain_id: int) -> HexAddress | str | None:
        return self.chains[chain_id].multicall_address

    @staticmethod
    def from_dict(data: dict) -> "StaticChainRegistry":
        """Read chains.

        Example:

        .. code-block:: json

            {
                "bsc": {"feeRecipient": "0x..."},
                "324": {"feeRecipient": "0x...", "multicall": "0xF9cda624FBC7e059355ce98a31693d299FACd963"},
                "fuse": {"feeRecipient": "0x...", "multicall": null}
            }

        - Missing ``multicall`` uses the default Multicall3 address of the chain
        - Explicit ``null`` means the chain has no multicall and is skipped
        """
        chains = {}
        for key, entry in data.items():
            chain_id = _parse_chain(key)
            if "multicall" in entry:
                multicall = entry["multicall"]
            else:
                multicall = get_default_multicall_address(chain_id)

            chains[chain_id] = ChainConfig(
                chain_id=chain_id,
                fee_recipient=entry.get("feeRecipient"),
                multicall_address=multicall,
            )
        return StaticChainRegistry(chains)

    @staticmethod
    def from_json_file(path: Path) -> "StaticChainRegistry":
        assert isinstance(path, Path), f"Got {path}"
        registry = StaticChainRegistry.from_dict(json.loads(path.read_text()))
        logger.info("Loaded %d chains from %s", len(registry.chains), path)
        return registry
