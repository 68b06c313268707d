"""ABI loading from the bundled ABI files.

Provides functions to load ABI files and construct :py:class:`web3.contract.Contract` proxies.
Loaded ABI files are cached for the speedup.

We only bundle the minimal ABI fragments needed to read strategy fees.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Union

from eth_typing import HexAddress
from web3 import Web3
from web3.contract.contract import Contract

# How big are our ABI and contract caches
_CACHE_SIZE = 512


#: Ethereum 0x0000000000000000000000000000000000000000 address as a string.
ZERO_ADDRESS_STR = "0x0000000000000000000000000000000000000000"


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: str) -> list[dict]:
    """Reads a embedded ABI file and returns it.

    Example::

        abi = get_abi_by_filename("multicall/IMulticall3.json")

    Loaded ABI files are cache in in-process memory to speed up future loading.

    :param fname:
        Path relative to the ``vault_fees/abi`` folder.

    :return:
        ABI fragment list
    """

    here = Path(__file__).resolve().parent
    abi_path = here / "abi" / Path(fname)
    with open(abi_path, "rt", encoding="utf-8") as f:
        abi = json.load(f)
    return abi


def get_deployed_contract(
    web3: Web3,
    fname: str,
    address: Union[HexAddress, str],
) -> Contract:
    """Get a Contract proxy object for a contract deployed at a specific address.

    :param web3:
        Web3 instance

    :param fname:
        Bundled ABI filename, see :py:func:`get_abi_by_filename`

    :param address:
        Ethereum address of the deployed contract

    :return:
        `web3.contract.Contract` proxy
    """
    assert isinstance(web3, Web3), f"Got {type(web3)} instead of Web3"
    assert address, f"get_deployed_contract() address was None"
    address = Web3.to_checksum_address(address)
    abi = get_abi_by_filename(fname)
    return web3.eth.contract(address=address, abi=abi)


def get_function_selector(signature: str) -> bytes:
    """Get 4 bytes Solidity function selector for a human-readable signature.

    :param signature:
        E.g. ``callFee()``
    """
    assert "(" in signature, f"Not a function signature: {signature}"
    return Web3.keccak(text=signature)[0:4]
