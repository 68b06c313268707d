"""Fee data models and their serialisation."""

import datetime
from decimal import Decimal

import pytest

from vault_fees.models import FeeBatchSplit, PerformanceFee, VaultFeeBreakdown, datetime_to_unix_ms, unix_ms_to_datetime


ADDRESS = "0x0000000000000000000000000000000000000001"


@pytest.mark.parametrize("treasury_fee", [0, 1, 140, 333, 640, 999, 1000])
def test_fee_batch_split_sums_to_one(treasury_fee):
    split = FeeBatchSplit.from_treasury_fee(ADDRESS, treasury_fee)
    assert split.treasury_split + split.staker_split == 1


def test_fee_batch_split_from_float_data():
    """Older caches stored floats."""
    split = FeeBatchSplit.from_dict({"address": ADDRESS, "treasurySplit": 0.14, "stakerSplit": 0.86})
    assert split.treasury_split == Decimal("0.14")
    assert split.treasury_split + split.staker_split == 1

    data = split.to_dict()
    assert data == {"address": ADDRESS, "treasurySplit": "0.14", "stakerSplit": "0.86"}
    assert FeeBatchSplit.from_dict(data) == split


def test_fee_batch_split_out_of_range():
    with pytest.raises(AssertionError):
        FeeBatchSplit.from_treasury_fee(ADDRESS, 1001)


def test_timestamps():
    ts = datetime.datetime(2024, 6, 1, 12, 0, 0)
    assert datetime_to_unix_ms(ts) == 1717243200000
    assert unix_ms_to_datetime(1717243200000) == ts


def test_vault_fee_breakdown_serialisation():
    fees = VaultFeeBreakdown(
        performance=PerformanceFee(
            total=Decimal("0.045"),
            call=Decimal("0.00225"),
            strategist=Decimal("0"),
            treasury=Decimal("0.00252"),
            stakers=Decimal("0.01548"),
        ),
        withdraw=Decimal("0.001"),
        deposit=None,
        last_updated=datetime.datetime(2024, 6, 1, 12, 0, 0),
    )
    data = fees.to_dict()
    assert data == {
        "performance": {
            "total": "0.045",
            "call": "0.00225",
            "strategist": "0",
            "treasury": "0.00252",
            "stakers": "0.01548",
        },
        "withdraw": "0.001",
        "lastUpdated": 1717243200000,
    }
    assert VaultFeeBreakdown.from_dict(data) == fees

    with_deposit = VaultFeeBreakdown(performance=fees.performance, withdraw=Decimal(0), deposit=Decimal("0.01"), last_updated=fees.last_updated)
    assert with_deposit.to_dict()["deposit"] == "0.01"
    assert VaultFeeBreakdown.from_dict(with_deposit.to_dict()).deposit == Decimal("0.01")
