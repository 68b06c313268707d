"""Fee formulas for all strategy generations."""

from decimal import Decimal

import pytest

from vault_fees.classification import FeeClassificationFailed, classify_fee_generation
from vault_fees.maxi import MaxiFeeKind, MaxiFeeRules
from vault_fees.models import AllFeesStruct, FeeBatchSplit, PerformanceFee, PerformanceFeeStruct
from vault_fees.lower_case_dict import LowercaseDict
from vault_fees.normaliser import (
    LEGACY_FEE_SHAPES,
    calculate_performance_fee,
    derive_vault_fee_breakdown,
    match_legacy_fee_shape,
)


def _performance(probe, split) -> PerformanceFee:
    return calculate_performance_fee(classify_fee_generation(probe), split, MaxiFeeRules())


def test_aggregate_getter(make_probe, split, now):
    """getAllFees() with 5% total, 1% deposit fee and no withdraw fee."""
    probe = make_probe(
        allFees=AllFeesStruct(
            performance=PerformanceFeeStruct(
                total=5 * 10**16,
                beefy=4 * 10**16,
                call=5 * 10**15,
                strategist=5 * 10**15,
            ),
            deposit=100,
            withdraw=0,
        ),
    )
    fees = derive_vault_fee_breakdown(probe, split, now)
    assert fees.performance.total == Decimal("0.05")
    assert fees.performance.call == Decimal("0.005")
    assert fees.performance.strategist == Decimal("0.005")
    assert fees.performance.treasury == Decimal("0.0056")
    assert fees.performance.stakers == Decimal("0.0344")
    assert fees.withdraw == 0
    assert fees.deposit == Decimal("0.01")
    assert fees.last_updated == now


def test_breakdown_getter_has_no_deposit_fee(make_probe, split, now):
    """getFees() strategies cannot tell the deposit fee, withdraw fee comes from legacy accessors."""
    probe = make_probe(
        breakdown=PerformanceFeeStruct(total=95 * 10**15, beefy=85 * 10**15, call=5 * 10**15, strategist=5 * 10**15),
        withdraw=10,
        withdrawMax=10000,
    )
    fees = derive_vault_fee_breakdown(probe, split, now)
    assert fees.performance.total == Decimal("0.095")
    assert fees.performance.call == Decimal("0.005")
    assert fees.performance.treasury == Decimal("0.0119")
    assert fees.withdraw == Decimal("0.001")
    assert fees.deposit is None
    assert "deposit" not in fees.to_dict()


def test_fee_struct_all_zero(make_probe, split):
    """No components, keep the total, do not divide by zero."""
    probe = make_probe(breakdown=PerformanceFeeStruct(total=5 * 10**16, beefy=0, call=0, strategist=0))
    performance = _performance(probe, split)
    assert performance.total == Decimal("0.05")
    assert performance.call == 0
    assert performance.treasury == 0
    assert performance.stakers == 0


def test_legacy_call_strategist_beefy(make_probe, split, now):
    """callFee 500, strategistFee 0, beefyFee 4000 over MAX_FEE 10000 with 14% treasury split."""
    probe = make_probe(call=500, strategist=0, beefy=4000, maxFee=10000)
    fees = derive_vault_fee_breakdown(probe, split, now)
    assert fees.performance == PerformanceFee(
        total=Decimal("0.045"),
        call=Decimal("0.00225"),
        strategist=Decimal("0"),
        treasury=Decimal("0.045") * Decimal("0.14") * 4000 / 10000,
        stakers=Decimal("0.045") * Decimal("0.86") * 4000 / 10000,
    )
    assert fees.performance.treasury == Decimal("0.00252")
    assert fees.performance.stakers == Decimal("0.01548")
    assert fees.withdraw == 0
    assert fees.deposit is None


def test_legacy_shape_precedence(make_probe, split):
    """Values fit both call+strategist+beefy and call+treasury+rewards, the first listed wins."""
    probe = make_probe(call=1000, strategist=500, beefy=8500, treasury=5000, rewards=4000, maxFee=10000)
    generation = classify_fee_generation(probe)
    assert LEGACY_FEE_SHAPES[-2].predicate(generation)
    shape = match_legacy_fee_shape(generation)
    assert shape.name == "call+strategist+beefy"

    performance = _performance(probe, split)
    assert performance.treasury == Decimal("0.045") * Decimal("0.14") * Decimal("0.85")
    assert performance.stakers == Decimal("0.045") * Decimal("0.86") * Decimal("0.85")


def test_legacy_call_strategist_rewards_treasury(make_probe, split):
    probe = make_probe(call=111, strategist=112, rewards=555, treasury=222, maxFee=1000)
    performance = _performance(probe, split)
    assert match_legacy_fee_shape(classify_fee_generation(probe)).name == "call+strategist+rewards+treasury"
    assert performance.total == Decimal("0.045")
    assert performance.treasury == Decimal("0.045") * 222 / 1000
    assert performance.stakers == Decimal("0.045") * 555 / 1000


def test_legacy_fee_call(make_probe, split):
    """fee() + callFee() strategies charged 5%."""
    probe = make_probe(fee=980, call=20, maxFee=1000)
    performance = _performance(probe, split)
    assert performance.total == Decimal("0.05")
    assert performance.call == Decimal("0.001")
    assert performance.strategist == 0
    assert performance.treasury == 0
    assert performance.stakers == Decimal("0.049")


def test_legacy_call_strategist_treasury(make_probe, split):
    probe = make_probe(call=100, strategist=100, treasury=700, maxFee=1000)
    performance = _performance(probe, split)
    assert match_legacy_fee_shape(classify_fee_generation(probe)).name == "has call, strategist and treasury"
    assert performance.treasury == Decimal("0.0315")
    assert performance.stakers == 0


def test_legacy_call_treasury_rewards(make_probe, split):
    probe = make_probe(call=100, treasury=300, rewards=600, maxFee=1000)
    performance = _performance(probe, split)
    assert match_legacy_fee_shape(classify_fee_generation(probe)).name == "call+treasury+rewards"
    assert performance.strategist == 0
    assert performance.treasury == Decimal("0.0135")
    assert performance.stakers == Decimal("0.027")


def test_legacy_call_beefy(make_probe, split):
    probe = make_probe(call=111, beefy=889, maxFee=1000)
    performance = _performance(probe, split)
    assert performance.total == Decimal("0.045")
    assert performance.strategist == 0
    assert performance.treasury == Decimal("0.045") * Decimal("0.14") * 889 / 1000


def test_legacy_call_beefy_total_override(make_probe, split):
    """The old CAKE pool charged 1%."""
    probe = make_probe(vault_id="cake-cakev2-eol", call=111, beefy=889, maxFee=1000)
    performance = _performance(probe, split)
    assert performance.total == Decimal("0.01")
    assert performance.call == Decimal("0.00111")


def test_legacy_no_shape(make_probe, split, now):
    """Nothing fits, no fees this cycle."""
    probe = make_probe(call=10, treasury=10, maxFee=1000)
    with pytest.raises(FeeClassificationFailed):
        _performance(probe, split)

    assert derive_vault_fee_breakdown(probe, split, now) is None


def test_legacy_no_max_fee(make_probe, split):
    """Presence shapes need the denominator too."""
    probe = make_probe(call=10, strategist=10, beefy=10)
    with pytest.raises(FeeClassificationFailed):
        _performance(probe, split)


@pytest.mark.parametrize(
    "strategy",
    [
        "0x436D5127F16fAC1F021733dda090b5E6DE30b3bB",
        "0xa9e6e271b27b20f65394914f8784b3b860dbd259",
    ],
)
def test_maxi_per_mille_call_fee(make_probe, split, strategy):
    """Listed strategies use the hardcoded formula regardless of other replies."""
    probe = make_probe(vault_id="cake-maxi", strategy=strategy, call=10, maxCallFee=20, maxFee=10000, rewards=5000)
    performance = _performance(probe, split)
    assert performance == PerformanceFee(total=Decimal("0.01"), call=Decimal("0.01"), strategist=0, treasury=0, stakers=0)


def test_maxi_legacy_call_share(make_probe, split):
    probe = make_probe(vault_id="banana-maxi", strategy="0x24AAaB9DA14308bAf9d670e2a37369FE8Cb5Fe36", call=111, maxFee=1000)
    performance = _performance(probe, split)
    assert performance.total == Decimal("0.004995")
    assert performance.call == performance.total


def test_maxi_fixed_fee(make_probe, split):
    """Avalanche maxi charges 0.5% whatever it replies."""
    probe = make_probe(vault_id="avax-maxi", strategy="0xca077eec87e2621f5b09afe47c42baf88c6af18c", call=999, maxCallFee=1000)
    performance = _performance(probe, split)
    assert performance.total == Decimal("0.005")
    assert performance.call == Decimal("0.005")


def test_maxi_call_and_rewards(make_probe, split):
    """Old BIFI maxi pays part of the fee to stakers."""
    probe = make_probe(vault_id="bifi-maxi", strategy="0x87056F5E8Dce0fD71605E6E291C6a3B53cbc3818", call=10, rewards=40, maxFee=1000)
    performance = _performance(probe, split)
    assert performance.total == Decimal("0.05")
    assert performance.call == Decimal("0.01")
    assert performance.stakers == Decimal("0.04")
    assert performance.treasury == 0


def test_maxi_generic(make_probe, split):
    """Unlisted maxi: callFee over MAX_CALL_FEE, or over 1000 if there is no such accessor."""
    probe = make_probe(vault_id="joe-maxi", call=45)
    assert _performance(probe, split).total == Decimal("0.045")

    probe = make_probe(vault_id="joe-maxi", call=45, maxCallFee=10000)
    assert _performance(probe, split).total == Decimal("0.0045")


def test_maxi_custom_rules(make_probe, split):
    """New deployments can be routed through configuration."""
    rules = MaxiFeeRules(
        kinds=LowercaseDict({"0x2222222222222222222222222222222222222222": MaxiFeeKind.fixed}),
        fixed_fees=LowercaseDict({"0x2222222222222222222222222222222222222222": Decimal("0.02")}),
    )
    probe = make_probe(vault_id="new-maxi", strategy="0x2222222222222222222222222222222222222222", call=45)
    performance = calculate_performance_fee(classify_fee_generation(probe), split, rules)
    assert performance.total == Decimal("0.02")

    # Old listed strategy is not special anymore
    probe = make_probe(vault_id="avax-maxi", strategy="0xca077eEC87e2621F5B09AFE47C42BAF88c6Af18c", call=45)
    performance = calculate_performance_fee(classify_fee_generation(probe), split, rules)
    assert performance.total == Decimal("0.045")


def test_maxi_rules_from_dict():
    rules = MaxiFeeRules.from_dict(
        {
            "perMilleCallFee": ["0x436D5127F16fAC1F021733dda090b5E6DE30b3bB"],
            "fixed": {"0xca077eEC87e2621F5B09AFE47C42BAF88c6Af18c": "0.005"},
        }
    )
    assert rules.get_kind("0x436d5127f16fac1f021733dda090b5e6de30b3bb") == MaxiFeeKind.per_mille_call_fee
    assert rules.get_fixed_fee("0xCA077EEC87E2621F5B09AFE47C42BAF88C6AF18C") == Decimal("0.005")
    assert rules.get_kind("0x87056F5E8Dce0fD71605E6E291C6a3B53cbc3818") is None


def test_withdraw_fee(make_probe, split, now):
    probe = make_probe(call=500, strategist=0, beefy=4000, maxFee=10000, withdraw2=10, withdrawMax2=10000)
    assert derive_vault_fee_breakdown(probe, split, now).withdraw == Decimal("0.001")


def test_withdraw_fee_paused(make_probe, split, now):
    """Paused strategy charges no withdraw fee."""
    probe = make_probe(call=500, strategist=0, beefy=4000, maxFee=10000, withdraw=10, withdrawMax=10000, paused=True)
    assert derive_vault_fee_breakdown(probe, split, now).withdraw == 0


def test_withdraw_fee_no_max(make_probe, split, now):
    probe = make_probe(call=500, strategist=0, beefy=4000, maxFee=10000, withdraw=10)
    assert derive_vault_fee_breakdown(probe, split, now).withdraw == 0


def test_withdraw_fee_aggregate(make_probe, split, now):
    probe = make_probe(
        allFees=AllFeesStruct(performance=PerformanceFeeStruct(1, 1, 0, 0), deposit=0, withdraw=10),
        withdraw=50,
        withdrawMax=100,
    )
    fees = derive_vault_fee_breakdown(probe, split, now)
    assert fees.withdraw == Decimal("0.001")
    assert fees.deposit == 0
    assert fees.to_dict()["deposit"] == "0"


def test_idempotent(make_probe, split, now):
    """Same input gives the exactly same output."""
    probe = make_probe(call=111, strategist=112, beefy=777, maxFee=1000, withdraw=10, withdrawMax=10000)
    first = derive_vault_fee_breakdown(probe, split, now)
    second = derive_vault_fee_breakdown(probe, split, now)
    assert first == second
    assert first.to_dict() == second.to_dict()


def test_chain_split_used_for_house_fee(make_probe, now):
    """Different chain split, different treasury and stakers, same call fee."""
    split_a = FeeBatchSplit.from_treasury_fee("0x0000000000000000000000000000000000000001", 140)
    split_b = FeeBatchSplit.from_treasury_fee("0x0000000000000000000000000000000000000002", 640)
    probe = make_probe(call=111, strategist=112, beefy=777, maxFee=1000)

    a = derive_vault_fee_breakdown(probe, split_a, now).performance
    b = derive_vault_fee_breakdown(probe, split_b, now).performance
    assert a.call == b.call
    assert a.treasury + a.stakers == b.treasury + b.stakers
    assert b.treasury > a.treasury
