"""Scan fees of all vaults once and print them.

- Read chains and vaults from JSON files
- Read treasury splits, then run one fee refresh cycle
- Print a fee table and a per chain summary

Usage:

.. code-block:: shell

    export JSON_RPC_BINANCE=...
    export JSON_RPC_POLYGON=...
    export CHAINS=chains.json
    export VAULTS=vaults.json
    python scripts/scan-vault-fees.py

To persist results across runs:

.. code-block:: shell

    export VAULT_FEES_DATABASE=~/.cache/vault-fees.sqlite

"""

import logging
import os
from pathlib import Path

from tabulate import tabulate

from vault_fees.config import FeeServiceConfig
from vault_fees.maxi import MaxiFeeRules
from vault_fees.registry import StaticChainRegistry, StaticVaultRegistry
from vault_fees.service import create_web3_fee_service
from vault_fees.utils import setup_console_logging


logger = logging.getLogger(__name__)


def main():
    setup_console_logging(default_log_level="info", log_file=Path("logs/scan-vault-fees.log"))

    chains_file = os.environ.get("CHAINS")
    vaults_file = os.environ.get("VAULTS")
    assert chains_file, "Set CHAINS environment variable to chain configuration JSON file"
    assert vaults_file, "Set VAULTS environment variable to vault list JSON file"

    maxi_file = os.environ.get("MAXI_RULES")
    maxi_rules = MaxiFeeRules.from_json_file(Path(maxi_file).expanduser()) if maxi_file else None

    config = FeeServiceConfig.from_env()

    service = create_web3_fee_service(
        vault_registry=StaticVaultRegistry.from_json_file(Path(vaults_file).expanduser()),
        chain_registry=StaticChainRegistry.from_json_file(Path(chains_file).expanduser()),
        config=config,
        maxi_rules=maxi_rules,
    )

    splits = service.refresh_fee_batches()
    cycle = service.refresh_vault_fees()

    rows = []
    for vault_id, fees in sorted(service.get_vault_fees().items()):
        rows.append(
            {
                "Vault": vault_id,
                "Total": f"{fees.performance.total:.4%}",
                "Call": f"{fees.performance.call:.4%}",
                "Strategist": f"{fees.performance.strategist:.4%}",
                "Treasury": f"{fees.performance.treasury:.4%}",
                "Stakers": f"{fees.performance.stakers:.4%}",
                "Withdraw": f"{fees.withdraw:.2%}",
                "Deposit": f"{fees.deposit:.2%}" if fees.deposit is not None else "-",
            }
        )

    print(tabulate(rows, headers="keys", tablefmt="fancy_grid"))

    summary = []
    for chain_id, result in sorted(cycle.chains.items()):
        split = splits.get(chain_id)
        summary.append(
            {
                "Chain": chain_id,
                "Status": result.status.value,
                "Treasury split": split.treasury_split if split else "-",
                "Stale": result.stale_count,
                "Refreshed": len(result.fees),
                "Unclassified": len(result.unclassified),
                "Lost to failed batches": len(result.failed_vaults),
            }
        )

    print(tabulate(summary, headers="keys", tablefmt="fancy_grid"))
    print(f"Refreshed {cycle.get_updated_count()} vaults in {cycle.duration}")


if __name__ == "__main__":
    main()
