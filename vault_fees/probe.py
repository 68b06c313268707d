"""Probe strategy contracts for their fee configuration.

- Strategy contracts have been written over several years and they expose fees
  through different accessors. Instead of knowing which strategy is which,
  we call every accessor known to any strategy generation and look at what answers.
- Calls are packed into Multicall3 batches, see :py:mod:`vault_fees.multicall`
- All batches of a chain run in parallel using :py:mod:`futureproof` thread pool.
  A failed batch only loses probes of the strategies in that batch.

Example:

.. code-block:: python

    transport = Web3MulticallTransport(EnvironmentWeb3Factory())
    result = fetch_fee_probes(
        transport,
        chain_id=56,
        multicall_address=get_default_multicall_address(56),
        targets=targets,
        batch_size=100,
    )
    for probe in result.probes:
        print(probe.vault_id, probe.values)

"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

import futureproof
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_typing import HexAddress

from vault_fees.abi import get_function_selector
from vault_fees.models import AllFeesStruct, PerformanceFeeStruct, RawFeeProbe, StrategyTarget
from vault_fees.multicall import EncodedCall, EncodedCallResult, MulticallTransport, split_to_batches
from vault_fees.utils import create_thread_pool_executor, native_datetime_utc_now


logger = logging.getLogger(__name__)


def _decode_uint(data: bytes) -> int:
    return decode(["uint256"], data)[0]


def _decode_bool(data: bytes) -> bool:
    return decode(["bool"], data)[0]


#: struct FeeCategory { uint256 total; uint256 beefy; uint256 call; uint256 strategist; string label; bool active; }
_FEE_CATEGORY_TYPE = "(uint256,uint256,uint256,uint256,string,bool)"


def _decode_performance_fee_struct(data: bytes) -> PerformanceFeeStruct:
    # function getFees() external view returns (IFeeConfig.FeeCategory memory)
    total, beefy, call, strategist, _label, _active = decode([_FEE_CATEGORY_TYPE], data)[0]
    return PerformanceFeeStruct(total=total, beefy=beefy, call=call, strategist=strategist)


def _decode_all_fees_struct(data: bytes) -> AllFeesStruct:
    # function getAllFees() external view returns (IFeeConfig.AllFees memory)
    # struct AllFees { FeeCategory performance; uint256 deposit; uint256 withdraw; }
    performance, deposit, withdraw = decode([f"({_FEE_CATEGORY_TYPE},uint256,uint256)"], data)[0]
    total, beefy, call, strategist, _label, _active = performance
    return AllFeesStruct(
        performance=PerformanceFeeStruct(total=total, beefy=beefy, call=call, strategist=strategist),
        deposit=deposit,
        withdraw=withdraw,
    )


@dataclass(slots=True, frozen=True)
class FeeAccessor:
    """One fee accessor function some strategy generation has."""

    #: Our internal name for the value.
    #:
    #: Aliases are numbered, e.g. ``call``, ``call2``, ``call3``.
    reference: str

    #: Solidity function signature
    signature: str

    #: Raw return data -> Python value
    decoder: Callable[[bytes], Any]

    #: Minimum length of a valid return payload
    min_length: int = 32

    @property
    def function_name(self) -> str:
        return self.signature.split("(")[0]

    @property
    def selector(self) -> bytes:
        return get_function_selector(self.signature)


#: The superset of fee accessors across all strategy generations.
#:
#: The order does not matter for classification,
#: see :py:mod:`vault_fees.classification` for precedence.
#:
FEE_ACCESSORS: list[FeeAccessor] = [
    FeeAccessor("strategist", "strategistFee()", _decode_uint),
    FeeAccessor("strategist2", "STRATEGIST_FEE()", _decode_uint),
    FeeAccessor("call", "callFee()", _decode_uint),
    FeeAccessor("call2", "CALL_FEE()", _decode_uint),
    FeeAccessor("call3", "callfee()", _decode_uint),
    FeeAccessor("call4", "callFeeAmount()", _decode_uint),
    FeeAccessor("maxCallFee", "MAX_CALL_FEE()", _decode_uint),
    FeeAccessor("beefy", "beefyFee()", _decode_uint),
    FeeAccessor("fee", "fee()", _decode_uint),
    FeeAccessor("treasury", "TREASURY_FEE()", _decode_uint),
    FeeAccessor("rewards", "REWARDS_FEE()", _decode_uint),
    FeeAccessor("rewards2", "rewardsFee()", _decode_uint),
    FeeAccessor("breakdown", "getFees()", _decode_performance_fee_struct, min_length=64),
    FeeAccessor("allFees", "getAllFees()", _decode_all_fees_struct, min_length=64),
    FeeAccessor("maxFee", "MAX_FEE()", _decode_uint),
    FeeAccessor("maxFee2", "max()", _decode_uint),
    FeeAccessor("maxFee3", "maxfee()", _decode_uint),
    FeeAccessor("withdraw", "withdrawalFee()", _decode_uint),
    FeeAccessor("withdraw2", "WITHDRAWAL_FEE()", _decode_uint),
    FeeAccessor("withdrawMax", "WITHDRAWAL_MAX()", _decode_uint),
    FeeAccessor("withdrawMax2", "withdrawalMax()", _decode_uint),
    FeeAccessor("paused", "paused()", _decode_bool),
]

#: Reference -> accessor
FEE_ACCESSORS_BY_REFERENCE: dict[str, FeeAccessor] = {a.reference: a for a in FEE_ACCESSORS}


@dataclass(slots=True)
class BatchReadResult:
    """Outcome of one multicall batch.

    Worker threads never raise, they report failure here.
    """

    #: Running index of the batch within the chain
    batch_index: int

    #: Strategies in this batch
    targets: list[StrategyTarget]

    #: Decoded probes, empty if the batch failed
    probes: list[RawFeeProbe] = field(default_factory=list)

    #: Set if the batch failed
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class ChainProbeResult:
    """All probes we managed to read from one chain."""

    chain_id: int

    #: Probes from the succeeded batches
    probes: list[RawFeeProbe] = field(default_factory=list)

    #: Batches that failed
    failed_batches: list[BatchReadResult] = field(default_factory=list)

    #: How many batches we did
    batch_count: int = 0

    @property
    def failed_targets(self) -> list[StrategyTarget]:
        return [t for b in self.failed_batches for t in b.targets]


def create_fee_probe_calls(target: StrategyTarget) -> Iterable[EncodedCall]:
    """Create calls to every known fee accessor of a strategy.

    - ``extra_data`` carries the vault id and the accessor reference to route the result back
    """
    for accessor in FEE_ACCESSORS:
        yield EncodedCall.from_keccak_signature(
            address=target.strategy_address,
            function=accessor.function_name,
            signature=accessor.selector,
            data=b"",
            extra_data={
                "vault_id": target.vault_id,
                "reference": accessor.reference,
            },
        )


def decode_fee_probe(target: StrategyTarget, results: Iterable[EncodedCallResult]) -> RawFeeProbe:
    """Decode multicall results of one strategy to a probe.

    - Reverted calls are absent
    - Calls that returned garbage or nothing (e.g. hit a fallback function) are absent
    - A value is never partially decoded
    """

    values = {}
    for result in results:
        reference = result.call.extra_data["reference"]
        accessor = FEE_ACCESSORS_BY_REFERENCE[reference]

        if not result.success or len(result.result) < accessor.min_length:
            continue

        try:
            values[reference] = accessor.decoder(result.result)
        except (DecodingError, ValueError) as e:
            logger.debug("Could not decode %s for vault %s: %s", accessor.signature, target.vault_id, e)

    return RawFeeProbe(
        vault_id=target.vault_id,
        chain_id=target.chain_id,
        strategy=target.strategy_address,
        values=values,
    )


def read_probe_batch(
    transport: MulticallTransport,
    chain_id: int,
    multicall_address: HexAddress | str,
    batch_index: int,
    targets: list[StrategyTarget],
) -> BatchReadResult:
    """Read one batch of strategies using a single multicall.

    - Executed in a worker thread
    - Does not raise
    """

    batch = BatchReadResult(batch_index=batch_index, targets=targets)

    calls_per_target = {t.vault_id: list(create_fee_probe_calls(t)) for t in targets}
    all_calls = [c for calls in calls_per_target.values() for c in calls]

    try:
        results = transport.call(chain_id, multicall_address, all_calls)
        assert len(results) == len(all_calls), f"Expected {len(all_calls)} results, got {len(results)}"

        results_per_target: dict[str, list[EncodedCallResult]] = {}
        for r in results:
            results_per_target.setdefault(r.call.extra_data["vault_id"], []).append(r)

        batch.probes = [decode_fee_probe(t, results_per_target.get(t.vault_id, [])) for t in targets]
    except Exception as e:
        logger.error("Multicall batch #%d failed fetching fees on chain %d: %s", batch_index, chain_id, e)
        batch.error = e

    return batch


def fetch_fee_probes(
    transport: MulticallTransport,
    chain_id: int,
    multicall_address: HexAddress | str,
    targets: list[StrategyTarget],
    batch_size: int,
    max_workers: int = 8,
) -> ChainProbeResult:
    """Probe fee accessors of all given strategies on a chain.

    - Partition strategies to batches of ``batch_size``
    - Run batches in parallel, settle all, collect successful batches

    :param transport:
        How to execute multicalls

    :param chain_id:
        Chain all targets live on

    :param multicall_address:
        Multicall3 deployment on the chain

    :param targets:
        Strategies to probe

    :param batch_size:
        How many strategies per multicall.

        Each strategy is probed with :py:data:`FEE_ACCESSORS` calls.

    :param max_workers:
        Max parallel batches
    """

    assert all(t.chain_id == chain_id for t in targets), f"Targets from different chains passed for chain {chain_id}"

    chain_result = ChainProbeResult(chain_id=chain_id)

    if len(targets) == 0:
        return chain_result

    batches = split_to_batches(targets, batch_size)
    chain_result.batch_count = len(batches)

    start = native_datetime_utc_now()
    logger.info("Probing %d strategies on chain %d in %d batches", len(targets), chain_id, len(batches))

    # For futureproof usage see
    # https://github.com/yeraydiazdiaz/futureproof
    executor = create_thread_pool_executor(len(batches), max_workers)
    tm = futureproof.TaskManager(executor, error_policy=futureproof.ErrorPolicyEnum.RAISE)
    for idx, batch in enumerate(batches, start=1):
        tm.submit(read_probe_batch, transport, chain_id, multicall_address, idx, batch)

    completed: list[BatchReadResult] = [task.result for task in tm.as_completed()]

    # Keep the original strategy order for the caller
    for batch_result in sorted(completed, key=lambda b: b.batch_index):
        if batch_result.success:
            chain_result.probes += batch_result.probes
        else:
            chain_result.failed_batches.append(batch_result)

    logger.info(
        "Chain %d probed in %s, %d probes, %d failed batches",
        chain_id,
        native_datetime_utc_now() - start,
        len(chain_result.probes),
        len(chain_result.failed_batches),
    )

    return chain_result
