"""Strategy fee generation classification.

- Strategies deployed over the years expose their fees in one of four ways
- We probe all accessors (see :py:mod:`vault_fees.probe`) and
  pick the generation based on which accessors replied
- Each generation is its own variant type carrying only the values that generation guarantees

Precedence, first match wins:

1. ``getAllFees()`` replied: :py:class:`AggregateGeneration`
2. ``getFees()`` replied: :py:class:`BreakdownGeneration`
3. Vault id contains the maxi marker: :py:class:`MaxiGeneration`
4. Everything else: :py:class:`LegacyGeneration`

Turning a variant into numbers is done in :py:mod:`vault_fees.normaliser`.
"""

import enum
import logging
from dataclasses import dataclass, field

from eth_typing import HexAddress

from vault_fees.models import AllFeesStruct, PerformanceFeeStruct, RawFeeProbe


logger = logging.getLogger(__name__)


#: Vault ids containing this are single asset maxi vaults
DEFAULT_MAXI_PATTERN = "-maxi"


class FeeClassificationFailed(Exception):
    """We could not map the accessor replies of a strategy to any known fee formula.

    The vault keeps its previous cached fees, if any.
    """


class StrategyGeneration(enum.Enum):
    """Historical fee accessor shapes."""

    #: ``getAllFees()`` with performance, deposit and withdraw fees
    aggregate = "aggregate"

    #: ``getFees()`` with performance fee struct only
    breakdown = "breakdown"

    #: Single asset maxi vaults, performance fee is the call fee
    maxi = "maxi"

    #: Individually named accessors like ``callFee()`` and ``MAX_FEE()``
    legacy = "legacy"


@dataclass(slots=True, frozen=True)
class WithdrawAccessors:
    """Withdraw fee inputs for generations without ``getAllFees()``."""

    #: ``withdrawalFee()`` or ``WITHDRAWAL_FEE()``
    withdraw: int | None = None

    #: ``WITHDRAWAL_MAX()`` or ``withdrawalMax()``
    withdraw_max: int | None = None

    #: ``paused()``
    paused: bool = False


@dataclass(slots=True, frozen=True)
class AggregateGeneration:
    vault_id: str
    fees: AllFeesStruct
    generation: StrategyGeneration = field(default=StrategyGeneration.aggregate, init=False)


@dataclass(slots=True, frozen=True)
class BreakdownGeneration:
    vault_id: str
    performance: PerformanceFeeStruct
    withdraw: WithdrawAccessors
    generation: StrategyGeneration = field(default=StrategyGeneration.breakdown, init=False)


@dataclass(slots=True, frozen=True)
class MaxiGeneration:
    """Maxi vault fees.

    Some of these are frozen deployments looked up by the strategy address,
    see :py:class:`vault_fees.maxi.MaxiFeeRules`.
    """

    vault_id: str
    strategy: HexAddress | str
    call: int | None
    max_call_fee: int | None
    max_fee: int | None
    rewards: int | None
    withdraw: WithdrawAccessors
    generation: StrategyGeneration = field(default=StrategyGeneration.maxi, init=False)


@dataclass(slots=True, frozen=True)
class LegacyGeneration:
    """Individually named fee accessors.

    Any of these can be missing. Which fee formula applies is figured out
    by :py:data:`vault_fees.normaliser.LEGACY_FEE_SHAPES`.
    """

    vault_id: str
    strategy: HexAddress | str
    call: int | None
    strategist: int | None
    beefy: int | None
    fee: int | None
    treasury: int | None
    rewards: int | None
    max_fee: int | None
    withdraw: WithdrawAccessors
    generation: StrategyGeneration = field(default=StrategyGeneration.legacy, init=False)


#: Any of the variants
FeeGeneration = AggregateGeneration | BreakdownGeneration | MaxiGeneration | LegacyGeneration


def _call_fee(probe: RawFeeProbe) -> int | None:
    return probe.first("call", "call2", "call3", "call4")


def _max_fee(probe: RawFeeProbe) -> int | None:
    return probe.first("maxFee", "maxFee2", "maxFee3")


def _rewards(probe: RawFeeProbe) -> int | None:
    return probe.first("rewards", "rewards2")


def read_withdraw_accessors(probe: RawFeeProbe) -> WithdrawAccessors:
    return WithdrawAccessors(
        withdraw=probe.first("withdraw", "withdraw2"),
        withdraw_max=probe.first("withdrawMax", "withdrawMax2"),
        paused=bool(probe.get("paused")),
    )


def classify_fee_generation(probe: RawFeeProbe, maxi_pattern: str = DEFAULT_MAXI_PATTERN) -> FeeGeneration:
    """Decide which fee accessor generation a strategy is.

    - Pure function, does not look at the fee values themselves, only which accessors replied
    - Never fails, the legacy generation is the catch all

    :param probe:
        Accessor replies for one strategy

    :param maxi_pattern:
        Vault id substring marking maxi vaults

    :return:
        One of the generation variants
    """

    all_fees = probe.get("allFees")
    if all_fees is not None:
        return AggregateGeneration(vault_id=probe.vault_id, fees=all_fees)

    withdraw = read_withdraw_accessors(probe)

    breakdown = probe.get("breakdown")
    if breakdown is not None:
        return BreakdownGeneration(vault_id=probe.vault_id, performance=breakdown, withdraw=withdraw)

    if maxi_pattern in probe.vault_id:
        return MaxiGeneration(
            vault_id=probe.vault_id,
            strategy=probe.strategy,
            call=_call_fee(probe),
            max_call_fee=probe.get("maxCallFee"),
            max_fee=_max_fee(probe),
            rewards=_rewards(probe),
            withdraw=withdraw,
        )

    return LegacyGeneration(
        vault_id=probe.vault_id,
        strategy=probe.strategy,
        call=_call_fee(probe),
        strategist=probe.first("strategist", "strategist2"),
        beefy=probe.get("beefy"),
        fee=probe.get("fee"),
        treasury=probe.get("treasury"),
        rewards=_rewards(probe),
        max_fee=_max_fee(probe),
        withdraw=withdraw,
    )
