"""JSON-RPC connections per chain.

- Read JSON-RPC URLs from ``JSON_RPC_<CHAIN NAME>`` environment variables
- Create :py:class:`web3.Web3` connections across threads
"""

import logging
import os
from threading import local
from typing import Protocol
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry
from web3 import HTTPProvider, Web3

from vault_fees.chain import CHAIN_NAMES


logger = logging.getLogger(__name__)


_web3_thread_local_cache = local()


def get_json_rpc_env(chain: int) -> str:
    """Get the JSON-RPC URL environment variable based on the chain id.

    - Map chain id to a name and from there to environment variables.
    """
    chain_name = CHAIN_NAMES.get(chain)
    assert chain_name, f"CHAIN_NAMES not configured for chain if {chain}"
    return f"JSON_RPC_{chain_name.upper()}"


def read_json_rpc_url(chain: int) -> str:
    """Read JSON-RPC URL from environment variable based on the chain id.

    :raises ValueError: If the environment variable is not set for the given chain.
    """
    assert type(chain) is int, f"Chain ID must be an integer: {type(chain)}"
    env_var = get_json_rpc_env(chain)
    json_rpc_url = os.environ.get(env_var)
    if not json_rpc_url:
        raise ValueError(f"Environment variable {env_var} is not set for chain {chain}")
    return json_rpc_url


def get_url_domain(url: str) -> str:
    """Redact URL so that only domain is displayed.

    Some services e.g. infura use path as an API key.
    """
    parsed = urlparse(url)
    if parsed.port in (80, 443, None):
        return parsed.hostname
    else:
        return f"{parsed.hostname}:{parsed.port}"


class ChainWeb3Factory(Protocol):
    """Create a Web3 connection for a chain.

    - Web3 connection cannot be passed across thread boundaries,
      so every worker thread asks the factory
    """

    def __call__(self, chain_id: int) -> Web3:
        """Get a Web3 connection.

        :param chain_id:
            Which chain we want to talk to

        :return:
            Web3 connection
        """


class EnvironmentWeb3Factory:
    """Create Web3 connections from ``JSON_RPC_<CHAIN>`` environment variables.

    - Construct the web3 connection only once per thread and chain
    - HTTP 1.1 keep-alive and connection retries with :py:mod:`requests`
    """

    def __init__(
        self,
        rpc_urls: dict[int, str] | None = None,
        timeout: float = 30.0,
        retries: int = 3,
    ):
        """
        :param rpc_urls:
            Chain id -> JSON-RPC URL overrides.

            Chains not listed are read from environment.

        :param timeout:
            HTTP request timeout in seconds

        :param retries:
            Connection retries by urllib3
        """
        self.rpc_urls = rpc_urls or {}
        self.timeout = timeout
        self.retries = retries

    def __repr__(self):
        return f"<EnvironmentWeb3Factory overrides for chains {list(self.rpc_urls.keys())}>"

    def get_rpc_url(self, chain_id: int) -> str:
        url = self.rpc_urls.get(chain_id)
        if url:
            return url
        return read_json_rpc_url(chain_id)

    def __call__(self, chain_id: int) -> Web3:
        per_chain = getattr(_web3_thread_local_cache, "per_chain", None)
        if per_chain is None:
            per_chain = _web3_thread_local_cache.per_chain = {}

        web3 = per_chain.get(chain_id)
        if web3 is not None:
            return web3

        url = self.get_rpc_url(chain_id)

        # https://stackoverflow.com/a/47475019/315168
        session = requests.Session()
        if self.retries >= 1:
            retry = Retry(connect=self.retries, backoff_factor=0.5)
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("http://", adapter)
            session.mount("https://", adapter)

        provider = HTTPProvider(url, request_kwargs={"timeout": self.timeout}, session=session)
        web3 = Web3(provider)

        logger.info("Created web3 connection for chain %d using %s", chain_id, get_url_domain(url))

        per_chain[chain_id] = web3
        return web3
