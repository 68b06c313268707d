"""Fee data models.

- :py:class:`StrategyTarget` identifies a fee bearing strategy contract
- :py:class:`RawFeeProbe` is what we got back from the chain
- :py:class:`VaultFeeBreakdown` is what we serve

All fee fractions are :py:class:`decimal.Decimal`, as raw onchain values can exceed float precision.

The dictionary format of :py:meth:`VaultFeeBreakdown.to_dict` and :py:meth:`FeeBatchSplit.to_dict`
uses the camel case field names of the public fee API, so persisted caches
can be served as is.
"""

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from eth_typing import HexAddress

#: 0.1 = 10%
Percent = Decimal


def _to_decimal(value: Any) -> Decimal:
    """Read decimals from persisted data.

    Persisted as strings, but older caches may carry floats.
    """
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def datetime_to_unix_ms(ts: datetime.datetime) -> int:
    """Naive UTC datetime to JavaScript style millisecond timestamp."""
    assert ts.tzinfo is None, f"Expected naive UTC datetime, got {ts}"
    return int(ts.replace(tzinfo=datetime.timezone.utc).timestamp() * 1000)


def unix_ms_to_datetime(ms: int | float) -> datetime.datetime:
    """JavaScript style millisecond timestamp to naive UTC datetime."""
    return datetime.datetime.fromtimestamp(ms / 1000, tz=datetime.timezone.utc).replace(tzinfo=None)


@dataclass(slots=True, frozen=True)
class StrategyTarget:
    """One vault's fee-bearing strategy contract."""

    #: Vault id in the vault registry, e.g. ``cake-bnb-maxi``
    vault_id: str

    #: EVM chain id
    chain_id: int

    #: Strategy smart contract address
    strategy_address: HexAddress | str

    def __post_init__(self):
        assert type(self.vault_id) == str, f"Got: {self.vault_id}"
        assert type(self.chain_id) == int, f"Got: {self.chain_id}"
        assert self.strategy_address.startswith("0x"), f"Bad strategy address: {self.strategy_address}"


@dataclass(slots=True, frozen=True)
class PerformanceFeeStruct:
    """Raw ``getFees()`` return value.

    Solidity struct ``(uint256 total, uint256 beefy, uint256 call, uint256 strategist)``,
    all at 1e18 precision.
    """

    total: int
    beefy: int
    call: int
    strategist: int


@dataclass(slots=True, frozen=True)
class AllFeesStruct:
    """Raw ``getAllFees()`` return value.

    - ``performance``: see :py:class:`PerformanceFeeStruct`
    - ``deposit`` and ``withdraw`` in basis points, 10000 = 100%
    """

    performance: PerformanceFeeStruct
    deposit: int
    withdraw: int


@dataclass(slots=True, frozen=True)
class RawFeeProbe:
    """All fee accessor replies from one strategy.

    - One probe per strategy per refresh cycle
    - A reference is present in :py:attr:`values` only if the call succeeded and decoded
    - Discarded after classification
    """

    #: Which vault this probe belongs to
    vault_id: str

    #: Chain id
    chain_id: int

    #: Strategy contract address
    strategy: HexAddress | str

    #: Reference name -> decoded value.
    #:
    #: Values are ``int``, ``bool``, :py:class:`PerformanceFeeStruct` or :py:class:`AllFeesStruct`.
    #:
    values: dict[str, Any] = field(default_factory=dict)

    def get(self, reference: str) -> Any | None:
        """Get accessor reply or None if the accessor is not there."""
        return self.values.get(reference)

    def has(self, reference: str) -> bool:
        return reference in self.values

    def first(self, *references: str) -> Any | None:
        """Get the first present reply among alternative accessor names.

        Different strategy generations named the same value differently,
        e.g. ``callFee()`` and ``CALL_FEE()``.
        """
        for ref in references:
            value = self.values.get(ref)
            if value is not None:
                return value
        return None


@dataclass(slots=True, frozen=True)
class FeeBatchSplit:
    """How the house fee is split between treasury and stakers on a chain.

    - Read from the fee recipient (fee batch) contract of a chain
    - ``staker_split`` is always ``1 - treasury_split``
    """

    #: Fee recipient contract address
    address: HexAddress | str

    #: 0.14 = 14% of the house fee goes to treasury
    treasury_split: Percent

    #: The rest goes to stakers
    staker_split: Percent

    def __post_init__(self):
        assert isinstance(self.treasury_split, Decimal), f"Got {type(self.treasury_split)}"
        assert isinstance(self.staker_split, Decimal), f"Got {type(self.staker_split)}"
        assert 0 <= self.treasury_split <= 1, f"Treasury split out of range: {self.treasury_split}"
        assert self.treasury_split + self.staker_split == 1, f"Split does not sum up to one: {self.treasury_split} + {self.staker_split}"

    @staticmethod
    def from_treasury_fee(address: HexAddress | str, treasury_fee: int) -> "FeeBatchSplit":
        """Create split from the onchain ``treasuryFee()`` numerator.

        :param treasury_fee:
            Parts per 1000, e.g. 140 = 14%
        """
        assert type(treasury_fee) == int, f"Got: {treasury_fee}"
        treasury_split = Decimal(treasury_fee) / Decimal(1000)
        return FeeBatchSplit(
            address=address,
            treasury_split=treasury_split,
            staker_split=Decimal(1) - treasury_split,
        )

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "treasurySplit": str(self.treasury_split),
            "stakerSplit": str(self.staker_split),
        }

    @staticmethod
    def from_dict(data: dict) -> "FeeBatchSplit":
        # Staker split is always recalculated, so the invariant holds even for float persisted data
        treasury_split = _to_decimal(data["treasurySplit"])
        return FeeBatchSplit(
            address=data["address"],
            treasury_split=treasury_split,
            staker_split=Decimal(1) - treasury_split,
        )


@dataclass(slots=True, frozen=True)
class PerformanceFee:
    """Canonical performance fee breakdown.

    - All values are fractions of the harvested yield, 0.045 = 4.5%
    - ``call + strategist + treasury + stakers`` is expected, but not enforced, to equal ``total``.
      Legacy strategies report a fixed ``total``.
    """

    total: Percent
    call: Percent
    strategist: Percent
    treasury: Percent
    stakers: Percent

    def to_dict(self) -> dict:
        return {
            "total": str(self.total),
            "call": str(self.call),
            "strategist": str(self.strategist),
            "treasury": str(self.treasury),
            "stakers": str(self.stakers),
        }

    @staticmethod
    def from_dict(data: dict) -> "PerformanceFee":
        return PerformanceFee(
            total=_to_decimal(data["total"]),
            call=_to_decimal(data["call"]),
            strategist=_to_decimal(data["strategist"]),
            treasury=_to_decimal(data["treasury"]),
            stakers=_to_decimal(data["stakers"]),
        )


@dataclass(slots=True, frozen=True)
class VaultFeeBreakdown:
    """All fees of one vault."""

    performance: PerformanceFee

    #: Withdrawal fee, 0.001 = 0.1%
    withdraw: Percent

    #: Deposit fee.
    #:
    #: ``None`` means the strategy cannot tell its deposit fee
    #: and it is configured elsewhere. This is different from zero deposit fee.
    #:
    deposit: Percent | None

    #: When this breakdown was derived, naive UTC
    last_updated: datetime.datetime

    def to_dict(self) -> dict:
        data = {
            "performance": self.performance.to_dict(),
            "withdraw": str(self.withdraw),
            "lastUpdated": datetime_to_unix_ms(self.last_updated),
        }
        # Omit, not null, so we do not override deposit fees hardcoded in the vault configuration
        if self.deposit is not None:
            data["deposit"] = str(self.deposit)
        return data

    @staticmethod
    def from_dict(data: dict) -> "VaultFeeBreakdown":
        deposit = data.get("deposit")
        return VaultFeeBreakdown(
            performance=PerformanceFee.from_dict(data["performance"]),
            withdraw=_to_decimal(data["withdraw"]),
            deposit=_to_decimal(deposit) if deposit is not None else None,
            last_updated=unix_ms_to_datetime(data["lastUpdated"]),
        )
