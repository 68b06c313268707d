"""Multicall3 contract helpers.

- Perform several smart contract calls in one RPC request using `Multicall <https://www.multicall3.com/>`__ contract
- Calls are passed around as ABI encoded :py:class:`EncodedCall` payloads
- A reverting call is a failed :py:class:`EncodedCallResult`, not an exception
- A failing multicall as a whole raises :py:class:`MulticallBatchFailed`

.. warning::

    See Multicall `private key leak hack warning <https://github.com/mds1/multicall>`__.

"""

import logging
from dataclasses import dataclass, field
from http.client import RemoteDisconnected
from itertools import islice
from typing import Generator, Iterable, Protocol

from eth_typing import HexAddress
from requests import HTTPError
from requests.exceptions import ConnectionError, ReadTimeout
from web3 import Web3
from web3.exceptions import Web3Exception

from vault_fees.abi import ZERO_ADDRESS_STR, get_deployed_contract
from vault_fees.chain import get_default_call_gas_limit
from vault_fees.provider import ChainWeb3Factory
from vault_fees.utils import native_datetime_utc_now


logger = logging.getLogger(__name__)


class MulticallBatchFailed(Exception):
    """The whole multicall batch failed.

    - RPC node down, throttled, timed out
    - Multicall itself reverted, e.g. out of gas

    Only calls in this batch are lost.
    """


_next_call_id = 0


def _generate_call_id():
    global _next_call_id
    _next_call_id += 1
    return _next_call_id


def _batcher(iterable: Iterable, batch_size: int) -> Generator:
    """ "Batch data into lists of batch_size length. The last batch may be shorter.

    https://stackoverflow.com/a/8290514/2527433
    """
    iterator = iter(iterable)
    while batch := list(islice(iterator, batch_size)):
        yield batch


@dataclass(slots=True, frozen=False)
class EncodedCall:
    """Multicall payload, minified implementation.

    - Only carry encoded data, not ABI etc. metadata

    - Contain :py:attr:`extra_data` which allows route to call results back to the strategy they probe

    Example:

    .. code-block:: python

        call_fee_call = EncodedCall.from_keccak_signature(
            address=strategy_address,
            signature=Web3.keccak(text="callFee()")[0:4],
            function="callFee",
            data=b"",
            extra_data={"vault_id": "cake-bnb", "reference": "call"},
        )

    """

    #: Store ABI function for debugging purposers
    func_name: str

    #: Contract address
    address: HexAddress

    #: Call ABI-encoded payload
    data: bytes

    #: Use this to match the reader
    extra_data: dict | None

    #: Running counter call id for debugging purposes
    call_id: int = field(default_factory=_generate_call_id)

    def get_debug_info(self) -> str:
        """Get human-readable details for debugging.

        - Punch into Tenderly simulator

        - Data contains both function signature and data payload
        """
        return f"""Address: {self.address}\nData: {self.data.hex()}"""

    @staticmethod
    def from_keccak_signature(
        address: HexAddress,
        function: str,
        signature: bytes,
        data: bytes,
        extra_data: dict | None,
    ) -> "EncodedCall":
        """Create poller call directly from a raw function signature"""
        assert isinstance(signature, bytes)
        assert len(signature) == 4
        assert isinstance(data, bytes)

        if extra_data is not None:
            extra_data["function"] = function

        return EncodedCall(
            func_name=function,
            address=address,
            data=signature + data,
            extra_data=extra_data,
        )


@dataclass(slots=True, frozen=False)
class EncodedCallResult:
    """Result of an one multicall.

    Example:

    .. code-block:: python

        # function callFee() external view returns (uint256);
        if result.success and len(result.result) == 32:
            call_fee = int.from_bytes(result.result, byteorder="big")

    """

    call: EncodedCall
    success: bool
    result: bytes

    def __repr__(self):
        return f"<Call {self.call.func_name} on {self.call.address}, success {self.success}, result: {self.result.hex()}, result len {len(self.result)}>"

    def __post_init__(self):
        assert isinstance(self.call, EncodedCall), f"Got: {self.call}"
        assert type(self.success) == bool, f"Got success: {self.success}"
        assert type(self.result) == bytes, f"Got result: {type(self.result)}"


class MulticallTransport(Protocol):
    """Batched read-only call execution.

    - Returns one result per call, in the same order
    - A reverting call gives a failed result, never a partially decoded value
    - Raises :py:class:`MulticallBatchFailed` if the batch as a whole cannot be executed
    """

    def call(
        self,
        chain_id: int,
        multicall_address: HexAddress | str,
        calls: list[EncodedCall],
    ) -> list[EncodedCallResult]:
        """Execute calls on a chain through a Multicall3 deployment."""


class Web3MulticallTransport:
    """Execute multicalls over JSON-RPC using `Multicall3.tryBlockAndAggregate()`.

    - One web3 connection per chain, created on demand by :py:class:`vault_fees.provider.ChainWeb3Factory`
    - Thread safe as long as the web3 factory is
    """

    def __init__(self, web3factory: ChainWeb3Factory):
        self.web3factory = web3factory

    def __repr__(self):
        return f"<Web3MulticallTransport {self.web3factory}>"

    def call(
        self,
        chain_id: int,
        multicall_address: HexAddress | str,
        calls: list[EncodedCall],
    ) -> list[EncodedCallResult]:
        assert type(chain_id) == int, f"Got: {chain_id}"
        assert multicall_address, f"No multicall address for chain {chain_id}"

        if len(calls) == 0:
            return []

        web3 = self.web3factory(chain_id)
        multicall_contract = get_deployed_contract(web3, "multicall/IMulticall3.json", multicall_address)

        encoded_calls = [(Web3.to_checksum_address(c.address), c.data) for c in calls]
        payload_size = sum(20 + len(c[1]) for c in encoded_calls)

        start = native_datetime_utc_now()

        logger.info(
            "Performing multicall on chain %d, input payload total size %d bytes on %d functions",
            chain_id,
            payload_size,
            len(encoded_calls),
        )

        bound_func = multicall_contract.functions.tryBlockAndAggregate(
            requireSuccess=False,
            calls=encoded_calls,
        )

        try:
            _, _, calls_results = bound_func.call(
                {"from": ZERO_ADDRESS_STR, "gas": get_default_call_gas_limit(chain_id)},
                block_identifier="latest",
            )
        except (ValueError, Web3Exception, HTTPError, ReadTimeout, ConnectionError, RemoteDisconnected) as e:
            addresses = sorted({c.address for c in calls})
            raise MulticallBatchFailed(f"Multicall failed for chain {chain_id}, multicall {multicall_address}, {len(calls)} calls: {e}\nAddresses: {addresses}") from e

        assert len(calls_results) == len(calls), f"Calls: {len(calls)}, results: {len(calls_results)}"

        results = [
            EncodedCallResult(
                call=call,
                success=succeed,
                result=bytes(output),
            )
            for call, (succeed, output) in zip(calls, calls_results)
        ]

        # User friendly logging
        out_size = sum(len(r.result) for r in results)
        duration = native_datetime_utc_now() - start
        logger.info("Multicall result fetch on chain %d took %s, output was %d bytes", chain_id, duration, out_size)

        return results


def split_to_batches(items: list, batch_size: int) -> list[list]:
    """Partition items to multicall batches, keeping the order.

    :param batch_size:
        Max items per batch. The last batch may be shorter.
    """
    assert batch_size > 0, f"Bad batch size: {batch_size}"
    return list(_batcher(items, batch_size))

