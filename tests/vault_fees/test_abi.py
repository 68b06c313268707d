"""Bundled ABI files."""

from web3 import Web3

from vault_fees.abi import get_abi_by_filename, get_deployed_contract
from vault_fees.chain import MULTICALL_DEPLOY_ADDRESS


def test_get_deployed_contract():
    """Contracts are bound to the connection of the calling thread, not kept around."""
    web3 = Web3(Web3.HTTPProvider("http://localhost:1"))
    other_web3 = Web3(Web3.HTTPProvider("http://localhost:2"))

    multicall = get_deployed_contract(web3, "multicall/IMulticall3.json", MULTICALL_DEPLOY_ADDRESS.lower())
    assert multicall.address == Web3.to_checksum_address(MULTICALL_DEPLOY_ADDRESS)
    assert multicall.w3 is web3
    assert get_deployed_contract(other_web3, "multicall/IMulticall3.json", MULTICALL_DEPLOY_ADDRESS).w3 is other_web3

    # Only ABI file loading is memoised
    assert not hasattr(get_deployed_contract, "cache_info")
    assert get_abi_by_filename("multicall/IMulticall3.json") is get_abi_by_filename("multicall/IMulticall3.json")
