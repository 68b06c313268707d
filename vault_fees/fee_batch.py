"""Treasury and staker split per chain.

- Each chain has a fee recipient (fee batch) contract telling how the house fee is split
- The split is ``treasuryFee()`` parts per 1000 to treasury, the rest to stakers
- Old fee batch contracts do not have ``treasuryFee()``, they use the historical 14% split
"""

import logging
from typing import Protocol

from eth_typing import HexAddress
from requests.exceptions import RequestException
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, Web3Exception

from vault_fees.abi import get_deployed_contract
from vault_fees.models import FeeBatchSplit
from vault_fees.provider import ChainWeb3Factory
from vault_fees.registry import ChainRegistry


logger = logging.getLogger(__name__)


#: Old fee batch contracts without ``treasuryFee()``: 140 / 1000 = 14%
DEFAULT_TREASURY_FEE = 140

#: Chain id -> treasury fee for chains where the call cannot be even estimated.
#:
#: ZKsync fee batch is not deployed yet, it uses the new split.
#:
TREASURY_FEE_OVERRIDES = {
    324: 640,
}


class TreasuryFeeUnavailable(Exception):
    """Could not read the treasury fee and no fallback applies.

    The previously known split of the chain is kept.
    """


class TreasuryFeeReader(Protocol):
    """Read ``treasuryFee()`` from a fee recipient contract."""

    def read_treasury_fee(self, chain_id: int, fee_recipient: HexAddress | str) -> int:
        """Get the treasury fee numerator.

        :return:
            Parts per 1000
        """


class Web3TreasuryFeeReader:
    """Read treasury fee over JSON-RPC."""

    def __init__(self, web3factory: ChainWeb3Factory):
        self.web3factory = web3factory

    def read_treasury_fee(self, chain_id: int, fee_recipient: HexAddress | str) -> int:
        web3 = self.web3factory(chain_id)
        fee_batch = get_deployed_contract(web3, "beefy/FeeBatch.json", fee_recipient)
        return fee_batch.functions.treasuryFee().call()


def resolve_treasury_fee(chain_id: int, e: Exception) -> int:
    """Figure out the treasury fee when ``treasuryFee()`` failed.

    :param chain_id:
        Chain where the call failed

    :param e:
        The failure

    :return:
        Fallback treasury fee, parts per 1000

    :raise TreasuryFeeUnavailable:
        We do not know a fallback for this failure
    """
    message = str(e)

    # Reverted: the method is not on the contract, so this must be an older split
    if isinstance(e, (ContractLogicError, BadFunctionCallOutput)) or "revert" in message or "correct ABI" in message:
        return DEFAULT_TREASURY_FEE

    override = TREASURY_FEE_OVERRIDES.get(chain_id)
    if override is not None and "cannot estimate gas" in message:
        logger.warning(
            "feeBatch.treasuryFee() failed on chain %d, using temporary treasury split of %d/1000",
            chain_id,
            override,
        )
        return override

    raise TreasuryFeeUnavailable(f"treasuryFee() failed on chain {chain_id}: {e}") from e


class FeeBatchRegistry:
    """Read treasury splits of all chains.

    Example:

    .. code-block:: python

        registry = FeeBatchRegistry(Web3TreasuryFeeReader(EnvironmentWeb3Factory()))
        splits = registry.refresh(chain_registry, previous={})
        print(splits[56].treasury_split)

    """

    def __init__(self, reader: TreasuryFeeReader):
        self.reader = reader

    def read_split(self, chain_id: int, fee_recipient: HexAddress | str) -> FeeBatchSplit:
        """Read the split of one chain, applying fallbacks.

        :raise TreasuryFeeUnavailable:
            No value and no fallback
        """
        try:
            treasury_fee = self.reader.read_treasury_fee(chain_id, fee_recipient)
        except (ValueError, Web3Exception, RequestException, ConnectionError) as e:
            treasury_fee = resolve_treasury_fee(chain_id, e)

        treasury_fee = int(treasury_fee)
        if not 0 <= treasury_fee <= 1000:
            raise TreasuryFeeUnavailable(f"treasuryFee() on chain {chain_id} returned {treasury_fee}, expected parts per 1000")

        return FeeBatchSplit.from_treasury_fee(fee_recipient, treasury_fee)

    def refresh(
        self,
        chain_registry: ChainRegistry,
        previous: dict[int, FeeBatchSplit],
    ) -> dict[int, FeeBatchSplit]:
        """Refresh splits of all chains.

        - Chains we fail to read keep their previous split
        - A failure on one chain does not stop other chains
        - Chains without a fee recipient are skipped

        :param chain_registry:
            Which chains and their fee recipients

        :param previous:
            Currently known splits

        :return:
            New chain id -> split mapping. ``previous`` is not modified.
        """
        splits = dict(previous)

        for chain_id in chain_registry.get_chain_ids():
            fee_recipient = chain_registry.get_fee_recipient(chain_id)
            if not fee_recipient:
                logger.warning("Chain %d has no fee recipient configured, skipping treasury split", chain_id)
                continue

            try:
                splits[chain_id] = self.read_split(chain_id, fee_recipient)
            except TreasuryFeeUnavailable as e:
                logger.error("Error updating fee batch on chain %d: %s", chain_id, e)
                continue
            except Exception as e:
                logger.exception("Unexpected error updating fee batch on chain %d: %s", chain_id, e)
                continue

            logger.info("Chain %d treasury split is %s", chain_id, splits[chain_id].treasury_split)

        logger.info("Fee batches updated, we know splits for %d chains", len(splits))
        return splits
