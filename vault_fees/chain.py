"""Chain specific configuration.

Strategies are deployed on many EVM chains. Each chain may need its own tuning
for multicall batch sizes and Multicall3 deployment addresses.
In this module, we have helpers.
"""

from typing import Final, Optional

#: Manually maintained shorthand names for different EVM chains
#:
#: Used to map vault registry chain names and ``JSON_RPC_<NAME>`` environment variables
#: to chain ids.
CHAIN_NAMES = {
    1: "Ethereum",
    10: "Optimism",
    25: "Cronos",
    56: "Binance",
    100: "Gnosis",
    122: "Fuse",
    137: "Polygon",
    146: "Sonic",
    250: "Fantom",
    252: "Fraxtal",
    324: "ZKsync",
    1088: "Metis",
    1284: "Moonbeam",
    1285: "Moonriver",
    2222: "Kava",
    5000: "Mantle",
    7700: "Canto",
    8453: "Base",
    34443: "Mode",
    42161: "Arbitrum",
    42220: "Celo",
    43114: "Avalanche",
    59144: "Linea",
    80094: "Berachain",
    1313161554: "Aurora",
}

#: Alternative names vault registries use for chains
CHAIN_ALIASES = {
    "bnb": 56,
    "bsc": 56,
    "avax": 43114,
    "zksync era": 324,
    "xdai": 100,
}

#: Default Multicall3 address
MULTICALL_DEPLOY_ADDRESS: Final[str] = "0xca11bde05977b3631167028862be2a173976ca11"

#: Per-chain Multicall3 deployemnts
MULTICALL_CHAIN_ADDRESSES = {
    324: "0xF9cda624FBC7e059355ce98a31693d299FACd963",  # https://zksync.blockscout.com/address/0xF9cda624FBC7e059355ce98a31693d299FACd963
}

#: How many strategies we pack into one multicall by default
DEFAULT_MULTICALL_BATCH_SIZE = 100

#: Chains whose RPC nodes reject large multicall payloads.
#:
#: Each strategy probe is 22 calls, so the batch size is counted in strategies, not calls.
MULTICALL_BATCH_SIZES = {
    137: 25,  # Polygon public nodes time out
}


def get_chain_name(chain_id: int) -> str:
    """Translate Ethereum chain id to its name."""
    name = CHAIN_NAMES.get(chain_id)
    if name:
        return name

    return f"<Unknown chain, id {chain_id}>"


def get_chain_id_by_name(name: str) -> Optional[int]:
    """Get chain id by its name.

    :param name:
        Case-insensitive chain name, e.g. "Ethereum", "polygon", "bsc", "avax"

    :return:
        Chain id or None if not found
    """
    name_lower = name.lower()
    for chain_id, chain_name in CHAIN_NAMES.items():
        if chain_name.lower() == name_lower:
            return chain_id
    return CHAIN_ALIASES.get(name_lower)


def get_default_multicall_address(chain_id: int) -> str:
    """Multicall3 address for a chain, unless chain config tells otherwise."""
    return MULTICALL_CHAIN_ADDRESSES.get(chain_id, MULTICALL_DEPLOY_ADDRESS)


def get_default_call_gas_limit(chain_id: int) -> int:
    """Get the eth_call reasonable gas limit.

    - 15M except for Mantle 99M
    - Mantle has weird policy and all transactions and calls cost much more than other chains
    """
    assert type(chain_id) == int, f"Got: {chain_id}"
    if chain_id == 5000:
        return 99_000_000
    else:
        return 15_000_000


def get_batch_size(chain_id: int, overrides: dict[int, int] | None = None, default: int = DEFAULT_MULTICALL_BATCH_SIZE) -> int:
    """How many strategies to probe in one multicall on a chain.

    :param overrides:
        Chain id -> batch size. Defaults to :py:data:`MULTICALL_BATCH_SIZES`.

    :param default:
        Batch size for chains without an override.
    """
    if overrides is None:
        overrides = MULTICALL_BATCH_SIZES
    batch_size = overrides.get(chain_id, default)
    assert batch_size > 0, f"Bad batch size {batch_size} for chain {chain_id}"
    return batch_size
