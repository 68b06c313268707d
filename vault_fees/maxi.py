"""Maxi vault fee rules.

Maxi strategies charge a single call fee and many of them are frozen deployments
whose accessors do not mean what they say. These are special cased by the strategy address.

- The allow-lists are data, not logic: pass your own :py:class:`MaxiFeeRules`
  to route new deployments, or load them with :py:meth:`MaxiFeeRules.from_dict`
- Anything not listed uses ``callFee / (MAX_CALL_FEE or 1000)``
"""

import enum
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

from vault_fees.lower_case_dict import LowercaseDict


logger = logging.getLogger(__name__)


#: Default denominator when the strategy does not have ``MAX_CALL_FEE()``
DEFAULT_MAX_CALL_FEE = 1000

#: Legacy maxi strategies take 4.5% scaled by call fee share
LEGACY_MAXI_TOTAL = Decimal("0.045")


class MaxiFeeKind(enum.Enum):
    """How a listed maxi strategy charges fees."""

    #: ``callFee()`` is per mille of the harvest
    per_mille_call_fee = "per_mille_call_fee"

    #: ``0.045 * callFee / maxFee``
    legacy_call_share = "legacy_call_share"

    #: Hardcoded total, see :py:attr:`MaxiFeeRules.fixed_fees`
    fixed = "fixed"

    #: Call fee and rewards fee, both over ``maxFee``
    call_and_rewards = "call_and_rewards"


def _create_default_kinds() -> LowercaseDict:
    return LowercaseDict(
        {
            "0x436D5127F16fAC1F021733dda090b5E6DE30b3bB": MaxiFeeKind.per_mille_call_fee,
            "0xa9E6E271b27b20F65394914f8784B3B860dBd259": MaxiFeeKind.per_mille_call_fee,
            "0x24AAaB9DA14308bAf9d670e2a37369FE8Cb5Fe36": MaxiFeeKind.legacy_call_share,
            "0x22b3d90BDdC3Ad5F2948bE3914255C64Ebc8c9b3": MaxiFeeKind.legacy_call_share,
            "0xbCF1e02ac0c45729dC85F290C4A6AB35c4801cB1": MaxiFeeKind.legacy_call_share,
            "0xb25eB9105549627050AAB3A1c909fBD454014beA": MaxiFeeKind.legacy_call_share,
            # Avalanche maxi
            "0xca077eEC87e2621F5B09AFE47C42BAF88c6Af18c": MaxiFeeKind.fixed,
            # Old BIFI maxi
            "0x87056F5E8Dce0fD71605E6E291C6a3B53cbc3818": MaxiFeeKind.call_and_rewards,
        }
    )


def _create_default_fixed_fees() -> LowercaseDict:
    return LowercaseDict(
        {
            "0xca077eEC87e2621F5B09AFE47C42BAF88c6Af18c": Decimal("0.005"),
        }
    )


@dataclass(slots=True)
class MaxiFeeRules:
    """Strategy address -> how its maxi fee is calculated."""

    #: Strategy address -> rule kind, case insensitive
    kinds: LowercaseDict = field(default_factory=_create_default_kinds)

    #: Strategy address -> total fee for :py:attr:`MaxiFeeKind.fixed` strategies
    fixed_fees: LowercaseDict = field(default_factory=_create_default_fixed_fees)

    def __post_init__(self):
        for address, kind in self.kinds.items():
            assert isinstance(kind, MaxiFeeKind), f"Bad maxi kind for {address}: {kind}"
            if kind == MaxiFeeKind.fixed:
                assert address in self.fixed_fees, f"Fixed maxi strategy {address} lacks its fee"

    def get_kind(self, strategy: str) -> MaxiFeeKind | None:
        """Is this strategy special cased.

        :return:
            None for the generic ``callFee / maxCallFee`` formula
        """
        return self.kinds.get(strategy)

    def get_fixed_fee(self, strategy: str) -> Decimal:
        return self.fixed_fees[strategy]

    @staticmethod
    def from_dict(data: dict) -> "MaxiFeeRules":
        """Load rules.

        Example:

        .. code-block:: json

            {
                "perMilleCallFee": ["0x436D5127F16fAC1F021733dda090b5E6DE30b3bB"],
                "legacyCallShare": ["0x24AAaB9DA14308bAf9d670e2a37369FE8Cb5Fe36"],
                "fixed": {"0xca077eEC87e2621F5B09AFE47C42BAF88c6Af18c": "0.005"},
                "callAndRewards": ["0x87056F5E8Dce0fD71605E6E291C6a3B53cbc3818"]
            }

        """
        kinds = LowercaseDict()
        fixed_fees = LowercaseDict()

        for address in data.get("perMilleCallFee", []):
            kinds[address] = MaxiFeeKind.per_mille_call_fee

        for address in data.get("legacyCallShare", []):
            kinds[address] = MaxiFeeKind.legacy_call_share

        for address, fee in data.get("fixed", {}).items():
            kinds[address] = MaxiFeeKind.fixed
            fixed_fees[address] = Decimal(str(fee))

        for address in data.get("callAndRewards", []):
            kinds[address] = MaxiFeeKind.call_and_rewards

        return MaxiFeeRules(kinds=kinds, fixed_fees=fixed_fees)

    @staticmethod
    def from_json_file(path: Path) -> "MaxiFeeRules":
        assert isinstance(path, Path), f"Got {path}"
        rules = MaxiFeeRules.from_dict(json.loads(path.read_text()))
        logger.info("Loaded %d maxi fee rules from %s", len(rules.kinds), path)
        return rules
