"""JSON-RPC configuration from environment."""

import pytest

from vault_fees.chain import get_chain_id_by_name
from vault_fees.provider import get_json_rpc_env, read_json_rpc_url


def test_get_json_rpc_env():
    assert get_json_rpc_env(56) == "JSON_RPC_BINANCE"
    assert get_json_rpc_env(137) == "JSON_RPC_POLYGON"
    assert get_json_rpc_env(43114) == "JSON_RPC_AVALANCHE"


def test_chain_name_aliases():
    assert get_chain_id_by_name("Binance") == 56
    assert get_chain_id_by_name("bsc") == 56
    assert get_chain_id_by_name("avax") == 43114


def test_read_json_rpc_url(monkeypatch):
    monkeypatch.setenv("JSON_RPC_BINANCE", "https://bsc.example.com")
    assert read_json_rpc_url(56) == "https://bsc.example.com"

    monkeypatch.delenv("JSON_RPC_POLYGON", raising=False)
    with pytest.raises(ValueError):
        read_json_rpc_url(137)
