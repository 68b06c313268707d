"""Turn fee generation variants to the canonical fee breakdown.

- All values are fractions, 0.045 = 4.5%
- All arithmetic is :py:class:`decimal.Decimal`, raw onchain values are uint256
- The house fee of a strategy is split between treasury and stakers with the chain split,
  see :py:class:`vault_fees.models.FeeBatchSplit`, unless the strategy itself tells the split

.. note::

    ``total`` is not always the sum of the components.
    Legacy strategies did not expose their total and it is a known constant per fee formula.
"""

import datetime
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from vault_fees.classification import (
    DEFAULT_MAXI_PATTERN,
    FeeClassificationFailed,
    FeeGeneration,
    LegacyGeneration,
    MaxiGeneration,
    StrategyGeneration,
    WithdrawAccessors,
    classify_fee_generation,
)
from vault_fees.maxi import DEFAULT_MAX_CALL_FEE, LEGACY_MAXI_TOTAL, MaxiFeeKind, MaxiFeeRules
from vault_fees.models import FeeBatchSplit, PerformanceFee, PerformanceFeeStruct, RawFeeProbe, VaultFeeBreakdown


logger = logging.getLogger(__name__)


ZERO = Decimal(0)

#: ``getFees()`` values are 1e18, we scale down in two steps
FEE_STRUCT_HALF_PRECISION = Decimal(10**9)

#: Deposit and withdraw fees in ``getAllFees()``
BASIS_POINTS = Decimal(10_000)

#: What most legacy strategies charged
LEGACY_TOTAL = Decimal("0.045")

#: What ``fee() + callFee()`` strategies charged
LEGACY_FEE_AND_CALL_TOTAL = Decimal("0.05")

#: Vault id -> total, for legacy strategies that charged less than the standard
LEGACY_TOTAL_OVERRIDES = {
    "cake-cakev2-eol": Decimal("0.01"),
}


def calculate_fee_struct_performance(fees: PerformanceFeeStruct, split: FeeBatchSplit) -> PerformanceFee:
    """Performance fee from ``getFees()`` style struct.

    - ``total`` is what the contract says
    - ``call``, ``strategist`` and the house fee share the total in proportion of their raw values

    If all components are zero, the components are zero and total is kept.
    """
    total = Decimal(fees.total) / FEE_STRUCT_HALF_PRECISION / FEE_STRUCT_HALF_PRECISION
    beefy = Decimal(fees.beefy) / FEE_STRUCT_HALF_PRECISION / FEE_STRUCT_HALF_PRECISION
    call = Decimal(fees.call) / FEE_STRUCT_HALF_PRECISION / FEE_STRUCT_HALF_PRECISION
    strategist = Decimal(fees.strategist) / FEE_STRUCT_HALF_PRECISION / FEE_STRUCT_HALF_PRECISION

    fee_sum = beefy + call + strategist
    if fee_sum == 0:
        return PerformanceFee(total=total, call=ZERO, strategist=ZERO, treasury=ZERO, stakers=ZERO)

    house_fee = total * beefy / fee_sum
    return PerformanceFee(
        total=total,
        call=total * call / fee_sum,
        strategist=total * strategist / fee_sum,
        treasury=split.treasury_split * house_fee,
        stakers=split.staker_split * house_fee,
    )


def _sum(*values: int | None) -> int | None:
    """Sum of accessor values, None if any of them did not reply."""
    if any(v is None for v in values):
        return None
    return sum(values)


def _present(*values: int | None) -> bool:
    return all(v is not None for v in values)


def _share(total: Decimal, value: int | None, max_fee: int) -> Decimal:
    return total * Decimal(value) / Decimal(max_fee)


def _house_fee_split_formula(v: LegacyGeneration, split: FeeBatchSplit, total: Decimal) -> PerformanceFee:
    # beefyFee() is the undivided house fee
    return PerformanceFee(
        total=total,
        call=_share(total, v.call, v.max_fee),
        strategist=_share(total, v.strategist or 0, v.max_fee),
        treasury=total * split.treasury_split * Decimal(v.beefy) / Decimal(v.max_fee),
        stakers=total * split.staker_split * Decimal(v.beefy) / Decimal(v.max_fee),
    )


def _call_strategist_beefy(v: LegacyGeneration, split: FeeBatchSplit) -> PerformanceFee:
    return _house_fee_split_formula(v, split, LEGACY_TOTAL)


def _call_strategist_rewards_treasury(v: LegacyGeneration, split: FeeBatchSplit) -> PerformanceFee:
    return PerformanceFee(
        total=LEGACY_TOTAL,
        call=_share(LEGACY_TOTAL, v.call, v.max_fee),
        strategist=_share(LEGACY_TOTAL, v.strategist, v.max_fee),
        treasury=_share(LEGACY_TOTAL, v.treasury, v.max_fee),
        stakers=_share(LEGACY_TOTAL, v.rewards, v.max_fee),
    )


def _fee_call(v: LegacyGeneration, split: FeeBatchSplit) -> PerformanceFee:
    total = LEGACY_FEE_AND_CALL_TOTAL
    return PerformanceFee(
        total=total,
        call=_share(total, v.call, v.max_fee),
        strategist=ZERO,
        treasury=ZERO,
        stakers=_share(total, v.fee, v.max_fee),
    )


def _call_strategist_treasury(v: LegacyGeneration, split: FeeBatchSplit) -> PerformanceFee:
    return PerformanceFee(
        total=LEGACY_TOTAL,
        call=_share(LEGACY_TOTAL, v.call, v.max_fee),
        strategist=_share(LEGACY_TOTAL, v.strategist, v.max_fee),
        treasury=_share(LEGACY_TOTAL, v.treasury, v.max_fee),
        stakers=ZERO,
    )


def _call_treasury_rewards(v: LegacyGeneration, split: FeeBatchSplit) -> PerformanceFee:
    return PerformanceFee(
        total=LEGACY_TOTAL,
        call=_share(LEGACY_TOTAL, v.call, v.max_fee),
        strategist=ZERO,
        treasury=_share(LEGACY_TOTAL, v.treasury, v.max_fee),
        stakers=_share(LEGACY_TOTAL, v.rewards, v.max_fee),
    )


def _call_beefy(v: LegacyGeneration, split: FeeBatchSplit) -> PerformanceFee:
    total = LEGACY_TOTAL_OVERRIDES.get(v.vault_id, LEGACY_TOTAL)
    return _house_fee_split_formula(v, split, total)


@dataclass(slots=True, frozen=True)
class LegacyFeeShape:
    """One historical fee formula.

    - ``predicate`` tells if the strategy accessor values fit this formula
    - ``formula`` calculates the fee, only called if the predicate matched
    """

    name: str
    predicate: Callable[[LegacyGeneration], bool]
    formula: Callable[[LegacyGeneration, FeeBatchSplit], PerformanceFee]


#: Legacy fee formulas, in the order they are tried.
#:
#: The order matters: many strategies satisfy several predicates.
#:
LEGACY_FEE_SHAPES: list[LegacyFeeShape] = [
    LegacyFeeShape(
        "call+strategist+beefy",
        lambda v: _sum(v.call, v.strategist, v.beefy) == v.max_fee,
        _call_strategist_beefy,
    ),
    LegacyFeeShape(
        "call+strategist+rewards+treasury",
        lambda v: _sum(v.call, v.strategist, v.rewards, v.treasury) == v.max_fee,
        _call_strategist_rewards_treasury,
    ),
    LegacyFeeShape(
        "fee+call",
        lambda v: _sum(v.fee, v.call) == v.max_fee,
        _fee_call,
    ),
    LegacyFeeShape(
        "has call, strategist and beefy",
        lambda v: _present(v.call, v.strategist, v.beefy),
        _call_strategist_beefy,
    ),
    LegacyFeeShape(
        "has call, strategist and treasury",
        lambda v: _present(v.call, v.strategist, v.treasury),
        _call_strategist_treasury,
    ),
    LegacyFeeShape(
        "call+treasury+rewards",
        lambda v: _sum(v.call, v.treasury, v.rewards) == v.max_fee,
        _call_treasury_rewards,
    ),
    LegacyFeeShape(
        "call+beefy",
        lambda v: _sum(v.call, v.beefy) == v.max_fee,
        _call_beefy,
    ),
]


def match_legacy_fee_shape(v: LegacyGeneration) -> LegacyFeeShape:
    """Find the first legacy formula matching the strategy.

    :raise FeeClassificationFailed:
        No formula matches
    """
    if not v.max_fee:
        raise FeeClassificationFailed(f"Vault {v.vault_id}, strategy {v.strategy}: no max fee accessor, cannot tell the legacy fee formula")

    for shape in LEGACY_FEE_SHAPES:
        if shape.predicate(v):
            return shape

    raise FeeClassificationFailed(f"Vault {v.vault_id}, strategy {v.strategy}: no legacy fee formula matches {v}")


def calculate_legacy_performance(v: LegacyGeneration, split: FeeBatchSplit) -> PerformanceFee:
    shape = match_legacy_fee_shape(v)
    logger.debug("Vault %s matched legacy fee shape %s", v.vault_id, shape.name)
    return shape.formula(v, split)


def calculate_maxi_performance(v: MaxiGeneration, rules: MaxiFeeRules) -> PerformanceFee:
    """Maxi vaults.

    The whole performance fee goes to the harvest caller, except for the old BIFI maxi
    which pays part of it to stakers.
    """

    def _call_only(fee: Decimal) -> PerformanceFee:
        return PerformanceFee(total=fee, call=fee, strategist=ZERO, treasury=ZERO, stakers=ZERO)

    def _require(*values: int | None, what: str):
        if not _present(*values):
            raise FeeClassificationFailed(f"Maxi vault {v.vault_id}, strategy {v.strategy}: missing {what}")

    kind = rules.get_kind(v.strategy)

    match kind:
        case MaxiFeeKind.fixed:
            return _call_only(rules.get_fixed_fee(v.strategy))
        case MaxiFeeKind.per_mille_call_fee:
            _require(v.call, what="call fee")
            return _call_only(Decimal(v.call) / Decimal(1000))
        case MaxiFeeKind.legacy_call_share:
            _require(v.call, v.max_fee, what="call fee or max fee")
            if v.max_fee == 0:
                raise FeeClassificationFailed(f"Maxi vault {v.vault_id}: zero max fee")
            return _call_only(LEGACY_MAXI_TOTAL * Decimal(v.call) / Decimal(v.max_fee))
        case MaxiFeeKind.call_and_rewards:
            _require(v.call, v.rewards, v.max_fee, what="call fee, rewards fee or max fee")
            if v.max_fee == 0:
                raise FeeClassificationFailed(f"Maxi vault {v.vault_id}: zero max fee")
            max_fee = Decimal(v.max_fee)
            return PerformanceFee(
                total=Decimal(v.call + v.rewards) / max_fee,
                call=Decimal(v.call) / max_fee,
                strategist=ZERO,
                treasury=ZERO,
                stakers=Decimal(v.rewards) / max_fee,
            )
        case _:
            _require(v.call, what="call fee")
            max_call_fee = v.max_call_fee if v.max_call_fee is not None else DEFAULT_MAX_CALL_FEE
            if max_call_fee == 0:
                raise FeeClassificationFailed(f"Maxi vault {v.vault_id}: zero max call fee")
            return _call_only(Decimal(v.call) / Decimal(max_call_fee))


def calculate_performance_fee(
    generation: FeeGeneration,
    split: FeeBatchSplit,
    maxi_rules: MaxiFeeRules,
) -> PerformanceFee:
    """Calculate the performance fee for any generation.

    :raise FeeClassificationFailed:
        The accessor values do not fit any known formula
    """
    match generation.generation:
        case StrategyGeneration.aggregate:
            return calculate_fee_struct_performance(generation.fees.performance, split)
        case StrategyGeneration.breakdown:
            return calculate_fee_struct_performance(generation.performance, split)
        case StrategyGeneration.maxi:
            return calculate_maxi_performance(generation, maxi_rules)
        case StrategyGeneration.legacy:
            return calculate_legacy_performance(generation, split)
        case _:
            raise AssertionError(f"Unknown generation: {generation}")


def calculate_withdraw_fee(generation: FeeGeneration) -> Decimal:
    """Withdraw fee.

    - ``getAllFees()`` knows it directly
    - A paused strategy, or one we cannot query, charges no withdraw fee
    """
    if generation.generation == StrategyGeneration.aggregate:
        return Decimal(generation.fees.withdraw) / BASIS_POINTS

    accessors: WithdrawAccessors = generation.withdraw
    if accessors.paused or accessors.withdraw is None or accessors.withdraw_max is None:
        return ZERO

    if accessors.withdraw_max == 0:
        return ZERO

    return Decimal(accessors.withdraw) / Decimal(accessors.withdraw_max)


def calculate_deposit_fee(generation: FeeGeneration) -> Decimal | None:
    """Deposit fee.

    :return:
        None if the strategy cannot tell, in which case it is configured elsewhere
    """
    if generation.generation == StrategyGeneration.aggregate:
        return Decimal(generation.fees.deposit) / BASIS_POINTS
    return None


def derive_vault_fee_breakdown(
    probe: RawFeeProbe,
    split: FeeBatchSplit,
    now: datetime.datetime,
    maxi_rules: MaxiFeeRules | None = None,
    maxi_pattern: str = DEFAULT_MAXI_PATTERN,
) -> VaultFeeBreakdown | None:
    """Get all fees of a vault from its strategy probe.

    Same probe and same split always give the same fees.

    :param probe:
        Strategy accessor replies

    :param split:
        Treasury split of the chain

    :param now:
        Timestamp for the breakdown, naive UTC

    :param maxi_rules:
        Maxi vault special cases, default rules if not given

    :return:
        None if the fees could not be figured out. The reason is logged.
    """

    if maxi_rules is None:
        maxi_rules = MaxiFeeRules()

    generation = classify_fee_generation(probe, maxi_pattern=maxi_pattern)

    try:
        performance = calculate_performance_fee(generation, split, maxi_rules)
    except FeeClassificationFailed as e:
        logger.warning("Failed to get performance fee for %s: %s", probe.vault_id, e)
        return None

    return VaultFeeBreakdown(
        performance=performance,
        withdraw=calculate_withdraw_fee(generation),
        deposit=calculate_deposit_fee(generation),
        last_updated=now,
    )
