"""Shared fixtures for vault fee tests.

No network access needed: multicalls and treasury fee reads are served from
in-memory contract state, encoded with :py:mod:`eth_abi` like a real node would.
"""

import datetime
import threading

import pytest
from eth_abi import encode

from vault_fees.models import FeeBatchSplit, RawFeeProbe
from vault_fees.multicall import EncodedCall, EncodedCallResult, MulticallBatchFailed
from vault_fees.probe import FEE_ACCESSORS_BY_REFERENCE
from vault_fees.storage import MemoryKeyValueStore


FEE_CATEGORY_TYPE = "(uint256,uint256,uint256,uint256,string,bool)"


def encode_accessor_reply(reference: str, value) -> bytes:
    """Encode what a strategy returns for an accessor."""
    if reference == "breakdown":
        total, beefy, call, strategist = value
        return encode([FEE_CATEGORY_TYPE], [(total, beefy, call, strategist, "default", True)])
    elif reference == "allFees":
        (total, beefy, call, strategist), deposit, withdraw = value
        return encode([f"({FEE_CATEGORY_TYPE},uint256,uint256)"], [((total, beefy, call, strategist, "default", True), deposit, withdraw)])
    elif reference == "paused":
        return encode(["bool"], [value])
    else:
        return encode(["uint256"], [value])


def encode_strategy(**values) -> dict[str, bytes]:
    """Accessor reference -> value to function name -> return data."""
    return {FEE_ACCESSORS_BY_REFERENCE[ref].function_name: encode_accessor_reply(ref, v) for ref, v in values.items()}


class FakeMulticallTransport:
    """Serve multicalls from canned strategy replies.

    - Unknown accessors revert
    - Calls on ``failing_chains`` or touching ``failing_addresses`` fail the whole batch
    """

    def __init__(
        self,
        contracts: dict[str, dict[str, bytes]],
        failing_chains: set[int] = None,
        failing_addresses: set[str] = None,
    ):
        self.contracts = {address.lower(): replies for address, replies in contracts.items()}
        self.failing_chains = failing_chains or set()
        self.failing_addresses = {a.lower() for a in (failing_addresses or set())}
        self.batches: list[tuple[int, list[str]]] = []
        self.lock = threading.Lock()

    def call(self, chain_id: int, multicall_address: str, calls: list[EncodedCall]) -> list[EncodedCallResult]:
        addresses = sorted({c.address.lower() for c in calls})
        with self.lock:
            self.batches.append((chain_id, addresses))

        if chain_id in self.failing_chains:
            raise MulticallBatchFailed(f"RPC down on chain {chain_id}")

        if self.failing_addresses.intersection(addresses):
            raise MulticallBatchFailed("Multicall out of gas")

        results = []
        for call in calls:
            replies = self.contracts.get(call.address.lower(), {})
            data = replies.get(call.func_name)
            if data is None:
                results.append(EncodedCallResult(call=call, success=False, result=b""))
            else:
                results.append(EncodedCallResult(call=call, success=True, result=data))
        return results

    def get_probed_addresses(self) -> set[str]:
        return {a for _, addresses in self.batches for a in addresses}


class FakeTreasuryFeeReader:
    """Chain id -> treasury fee, or exception to raise."""

    def __init__(self, fees: dict):
        self.fees = fees

    def read_treasury_fee(self, chain_id: int, fee_recipient: str) -> int:
        value = self.fees[chain_id]
        if isinstance(value, Exception):
            raise value
        return value


class CountingStore(MemoryKeyValueStore):
    """Memory store counting writes per key."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes: dict[str, int] = {}

    def set(self, key, value):
        self.writes[key] = self.writes.get(key, 0) + 1
        super().set(key, value)


class FakeClock:
    """Settable naive UTC clock."""

    def __init__(self, now: datetime.datetime):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now


@pytest.fixture()
def split() -> FeeBatchSplit:
    """The historical 14% treasury split."""
    return FeeBatchSplit.from_treasury_fee("0x0000000000000000000000000000000000000001", 140)


@pytest.fixture()
def now() -> datetime.datetime:
    return datetime.datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture()
def make_probe():
    """Create a probe from accessor reference values."""

    def _make_probe(vault_id="cake-bnb", strategy="0x1111111111111111111111111111111111111111", chain_id=56, **values) -> RawFeeProbe:
        return RawFeeProbe(vault_id=vault_id, chain_id=chain_id, strategy=strategy, values=values)

    return _make_probe


@pytest.fixture()
def strategy_replies():
    """Encode strategy accessor replies, see :py:func:`encode_strategy`."""
    return encode_strategy


@pytest.fixture()
def transport_factory():
    """Create a fake multicall transport."""
    return FakeMulticallTransport


@pytest.fixture()
def treasury_reader_factory():
    """Create a fake treasury fee reader."""
    return FakeTreasuryFeeReader


@pytest.fixture()
def counting_store() -> CountingStore:
    return CountingStore()


@pytest.fixture()
def clock(now) -> FakeClock:
    return FakeClock(now)
