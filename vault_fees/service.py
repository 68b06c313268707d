"""Vault fee refresh service.

- Keeps vault fees and chain treasury splits warm in memory
- Refreshes fees of stale vaults every few minutes, all chains in parallel
- A failing chain or multicall batch never stops other chains, we serve stale data instead
- Persists both caches as full snapshots, so a restart does not need to refresh everything

Example:

.. code-block:: python

    service = create_web3_fee_service(
        vault_registry=StaticVaultRegistry.from_json_file(Path("vaults.json")),
        chain_registry=StaticChainRegistry.from_json_file(Path("chains.json")),
        config=FeeServiceConfig.from_env(),
    )
    service.start()

    # Any thread, any time
    fee = service.get_total_performance_fee_for_vault("cake-bnb")

"""

import datetime
import enum
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable

import futureproof

from vault_fees.config import FEE_BATCH_KEY, VAULT_FEES_KEY, FeeServiceConfig
from vault_fees.fee_batch import FeeBatchRegistry, Web3TreasuryFeeReader
from vault_fees.maxi import MaxiFeeRules
from vault_fees.models import FeeBatchSplit, StrategyTarget, VaultFeeBreakdown
from vault_fees.multicall import MulticallTransport, Web3MulticallTransport
from vault_fees.normaliser import derive_vault_fee_breakdown
from vault_fees.probe import fetch_fee_probes
from vault_fees.provider import EnvironmentWeb3Factory
from vault_fees.registry import ChainRegistry, VaultRegistry
from vault_fees.storage import JSONKeyValueStore, KeyValueStore, MemoryKeyValueStore
from vault_fees.utils import create_thread_pool_executor, native_datetime_utc_now


logger = logging.getLogger(__name__)


#: Returns naive UTC now
Clock = Callable[[], datetime.datetime]


class ServiceState(enum.Enum):
    """Where the service is in its life."""

    #: Caches loaded from storage, treasury splits not yet read
    initialising = "initialising"

    #: Treasury splits read
    warm = "warm"

    #: Fee cycles running
    running = "running"


class ChainRefreshStatus(enum.Enum):
    #: Probed and derived fees
    refreshed = "refreshed"

    #: All vaults fresh
    up_to_date = "up_to_date"

    #: No Multicall3 on this chain
    no_multicall = "no_multicall"

    #: Treasury split not known, cannot split house fees
    no_fee_batch = "no_fee_batch"

    #: Unexpected failure, see the error
    failed = "failed"


@dataclass(slots=True)
class ChainRefreshResult:
    """Outcome of refreshing one chain.

    Chain workers return this instead of raising.
    """

    chain_id: int

    status: ChainRefreshStatus

    #: Vault id -> new fees
    fees: dict[str, VaultFeeBreakdown] = field(default_factory=dict)

    #: Vaults we probed, but could not figure out the fees
    unclassified: list[str] = field(default_factory=list)

    #: Vaults lost because their multicall batch failed
    failed_vaults: list[str] = field(default_factory=list)

    #: Stale vaults we tried to refresh
    stale_count: int = 0

    error: Exception | None = None


@dataclass(slots=True)
class RefreshCycleResult:
    """Outcome of one fee refresh cycle."""

    started_at: datetime.datetime

    #: Chain id -> outcome
    chains: dict[int, ChainRefreshResult] = field(default_factory=dict)

    duration: datetime.timedelta | None = None

    def get_updated_count(self) -> int:
        return sum(len(c.fees) for c in self.chains.values())

    def get_failed_chains(self) -> list[int]:
        return [c.chain_id for c in self.chains.values() if c.status == ChainRefreshStatus.failed]


class VaultFeeService:
    """Owns vault fee and treasury split caches.

    - The service is the only writer of the caches, readers get snapshots
    - Create with :py:meth:`create` so the caches are loaded from the storage
    - Run the refresh loop in a background thread with :py:meth:`start`,
      or drive cycles yourself with :py:meth:`refresh_fee_batches` and :py:meth:`refresh_vault_fees`
    """

    def __init__(
        self,
        vault_registry: VaultRegistry,
        chain_registry: ChainRegistry,
        transport: MulticallTransport,
        fee_batch_registry: FeeBatchRegistry,
        store: KeyValueStore,
        config: FeeServiceConfig | None = None,
        maxi_rules: MaxiFeeRules | None = None,
        clock: Clock = native_datetime_utc_now,
    ):
        """
        :param vault_registry:
            Which vaults to track

        :param chain_registry:
            Chains with their fee recipient and multicall addresses

        :param transport:
            How to do multicalls

        :param fee_batch_registry:
            How to read treasury splits

        :param store:
            Where to persist caches

        :param config:
            Intervals and batch sizes

        :param maxi_rules:
            Maxi vault special cases

        :param clock:
            Replace current time in tests
        """
        self.vault_registry = vault_registry
        self.chain_registry = chain_registry
        self.transport = transport
        self.fee_batch_registry = fee_batch_registry
        self.store = store
        self.config = config or FeeServiceConfig()
        self.maxi_rules = maxi_rules or MaxiFeeRules()
        self.clock = clock

        self.state = ServiceState.initialising

        self._vault_fees: dict[str, VaultFeeBreakdown] = {}
        self._fee_batches: dict[int, FeeBatchSplit] = {}

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def __repr__(self):
        return f"<VaultFeeService {self.state.value}, {len(self._vault_fees)} vaults, {len(self._fee_batches)} chains>"

    @staticmethod
    def create(*args, **kwargs) -> "VaultFeeService":
        """Create the service and load caches from storage.

        Takes the same arguments as the constructor.
        """
        service = VaultFeeService(*args, **kwargs)
        service.load_caches()
        return service

    def load_caches(self):
        """Hydrate caches from storage.

        Entries we cannot read are dropped and will be refreshed.
        """
        stored_fees = self.store.get(VAULT_FEES_KEY) or {}
        for vault_id, data in stored_fees.items():
            try:
                self._vault_fees[vault_id] = VaultFeeBreakdown.from_dict(data)
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                logger.warning("Dropping unreadable cached fees for vault %s: %s", vault_id, e)

        stored_batches = self.store.get(FEE_BATCH_KEY) or {}
        for chain_id, data in stored_batches.items():
            try:
                self._fee_batches[int(chain_id)] = FeeBatchSplit.from_dict(data)
            except (KeyError, TypeError, ValueError, ArithmeticError, AssertionError) as e:
                logger.warning("Dropping unreadable cached fee batch for chain %s: %s", chain_id, e)

        logger.info("Loaded cached fees for %d vaults and treasury splits for %d chains", len(self._vault_fees), len(self._fee_batches))

    def get_vault_fees(self) -> dict[str, VaultFeeBreakdown]:
        """All known vault fees.

        - Never blocks
        - May be stale
        - Returns a copy you can hold on to
        """
        return dict(self._vault_fees)

    def get_fee_batches(self) -> dict[int, FeeBatchSplit]:
        return dict(self._fee_batches)

    def get_total_performance_fee_for_vault(self, vault_id: str) -> Decimal:
        """Total performance fee of a vault.

        :return:
            The default fee if we do not know the vault
        """
        fees = self._vault_fees.get(vault_id)
        if fees is None:
            return self.config.default_performance_fee
        return fees.performance.total

    def refresh_fee_batches(self) -> dict[int, FeeBatchSplit]:
        """Read treasury splits of all chains and persist them.

        Runs once on start, call again if fee batch contracts change.
        """
        splits = self.fee_batch_registry.refresh(self.chain_registry, self._fee_batches)

        for chain_id, split in splits.items():
            self._fee_batches[chain_id] = split

        # Splits are usable from memory even if persisting fails
        if self.state == ServiceState.initialising:
            self.state = ServiceState.warm

        self.store.set(FEE_BATCH_KEY, {str(chain_id): split.to_dict() for chain_id, split in self._fee_batches.items()})

        return self.get_fee_batches()

    def select_stale_vaults(
        self,
        vaults: list[StrategyTarget],
        now: datetime.datetime,
    ) -> list[StrategyTarget]:
        """Pick vaults whose fees need to be refreshed.

        - Vaults we have never seen
        - Vaults whose fees are older than the cache expiry
        """
        stale = []
        for vault in vaults:
            fees = self._vault_fees.get(vault.vault_id)
            if fees is None or now - fees.last_updated > self.config.cache_expiry:
                stale.append(vault)
        return stale

    def refresh_chain(
        self,
        chain_id: int,
        vaults: list[StrategyTarget],
        now: datetime.datetime,
    ) -> ChainRefreshResult:
        """Refresh fees of stale vaults on one chain.

        - Executed in a worker thread
        - Does not touch the caches, the results are merged by :py:meth:`refresh_vault_fees`
        - Does not raise
        """
        try:
            multicall_address = self.chain_registry.get_multicall_address(chain_id)
            if not multicall_address:
                logger.warning("Skipping chain %d fees as no multicall address found", chain_id)
                return ChainRefreshResult(chain_id=chain_id, status=ChainRefreshStatus.no_multicall)

            split = self._fee_batches.get(chain_id)
            if split is None:
                logger.warning("Skipping chain %d fees as its treasury split is unknown", chain_id)
                return ChainRefreshResult(chain_id=chain_id, status=ChainRefreshStatus.no_fee_batch)

            stale = self.select_stale_vaults(vaults, now)
            if not stale:
                logger.debug("Chain %d: all %d vaults have fresh fees", chain_id, len(vaults))
                return ChainRefreshResult(chain_id=chain_id, status=ChainRefreshStatus.up_to_date)

            result = ChainRefreshResult(chain_id=chain_id, status=ChainRefreshStatus.refreshed, stale_count=len(stale))

            probes = fetch_fee_probes(
                self.transport,
                chain_id=chain_id,
                multicall_address=multicall_address,
                targets=stale,
                batch_size=self.config.get_batch_size(chain_id),
                max_workers=self.config.max_batch_workers,
            )

            result.failed_vaults = [t.vault_id for t in probes.failed_targets]

            for probe in probes.probes:
                fees = derive_vault_fee_breakdown(
                    probe,
                    split,
                    now,
                    maxi_rules=self.maxi_rules,
                    maxi_pattern=self.config.maxi_pattern,
                )
                if fees is None:
                    result.unclassified.append(probe.vault_id)
                else:
                    result.fees[probe.vault_id] = fees

            logger.info(
                "Chain %d: %d stale vaults, %d refreshed, %d unclassified, %d lost to failed batches",
                chain_id,
                len(stale),
                len(result.fees),
                len(result.unclassified),
                len(result.failed_vaults),
            )
            return result
        except Exception as e:
            logger.exception("Fee update error on chain %d", chain_id)
            return ChainRefreshResult(chain_id=chain_id, status=ChainRefreshStatus.failed, error=e)

    def refresh_vault_fees(self) -> RefreshCycleResult:
        """Run one fee refresh cycle.

        - All chains are refreshed in parallel
        - After all chains have settled, merge new fees to the cache and persist once
        """
        now = self.clock()
        cycle = RefreshCycleResult(started_at=now)

        if self.state != ServiceState.running:
            self.state = ServiceState.running

        vaults_by_chain: dict[int, list[StrategyTarget]] = defaultdict(list)
        for vault in self.vault_registry.list_vaults():
            vaults_by_chain[vault.chain_id].append(vault)

        chain_ids = self.chain_registry.get_chain_ids()

        unknown_chains = set(vaults_by_chain.keys()) - set(chain_ids)
        if unknown_chains:
            logger.warning("Vaults on chains not in the chain registry, ignored: %s", sorted(unknown_chains))

        logger.info("Updating vault fees on %d chains", len(chain_ids))

        if chain_ids:
            executor = create_thread_pool_executor(len(chain_ids), self.config.max_chain_workers)
            tm = futureproof.TaskManager(executor, error_policy=futureproof.ErrorPolicyEnum.RAISE)
            for chain_id in chain_ids:
                tm.submit(self.refresh_chain, chain_id, vaults_by_chain.get(chain_id, []), now)

            for task in tm.as_completed():
                chain_result: ChainRefreshResult = task.result
                cycle.chains[chain_result.chain_id] = chain_result

        # Per key replacement, readers may be iterating a snapshot
        for chain_result in cycle.chains.values():
            for vault_id, fees in chain_result.fees.items():
                self._vault_fees[vault_id] = fees

        self.save_vault_fees()

        cycle.duration = self.clock() - now
        logger.info("Updated vault fees, %d vaults refreshed, took %s", cycle.get_updated_count(), cycle.duration)
        return cycle

    def save_vault_fees(self):
        """Persist the vault fee snapshot."""
        self.store.set(VAULT_FEES_KEY, {vault_id: fees.to_dict() for vault_id, fees in self._vault_fees.items()})

    def run_forever(self):
        """Refresh loop.

        - Treasury splits once
        - Wait the initial delay
        - Refresh fees, sleep, repeat until :py:meth:`stop`
        """
        try:
            self.refresh_fee_batches()
        except Exception:
            # Persisting may fail, we still know the splits in memory
            logger.exception("Fee batch refresh failed")

        if self._stop_event.wait(self.config.init_delay.total_seconds()):
            return

        while not self._stop_event.is_set():
            try:
                self.refresh_vault_fees()
            except Exception:
                logger.exception("Vault fee refresh cycle failed, retrying in %s", self.config.refresh_interval)

            if self._stop_event.wait(self.config.refresh_interval.total_seconds()):
                break

        logger.info("Vault fee refresh loop stopped")

    def start(self):
        """Start the refresh loop in a background thread."""
        assert self._thread is None, "Already started"
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="vault-fee-refresh", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None):
        """Stop the refresh loop.

        The current cycle finishes first.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


def create_web3_fee_service(
    vault_registry: VaultRegistry,
    chain_registry: ChainRegistry,
    config: FeeServiceConfig | None = None,
    web3factory: EnvironmentWeb3Factory | None = None,
    maxi_rules: MaxiFeeRules | None = None,
) -> VaultFeeService:
    """Create a fee service talking to JSON-RPC nodes.

    - JSON-RPC URLs come from ``JSON_RPC_<CHAIN>`` environment variables
    - Caches persist to :py:attr:`FeeServiceConfig.database`, or stay in memory if not set
    """
    config = config or FeeServiceConfig()
    web3factory = web3factory or EnvironmentWeb3Factory()

    if config.database:
        store = JSONKeyValueStore(config.database)
    else:
        store = MemoryKeyValueStore()

    return VaultFeeService.create(
        vault_registry=vault_registry,
        chain_registry=chain_registry,
        transport=Web3MulticallTransport(web3factory),
        fee_batch_registry=FeeBatchRegistry(Web3TreasuryFeeReader(web3factory)),
        store=store,
        config=config,
        maxi_rules=maxi_rules,
    )
