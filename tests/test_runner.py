"""Tests for building the watcher from settings."""

import json

import pytest

from stablewallet.chain.rpc import JsonRpcChain
from stablewallet.config import get_settings
from stablewallet.errors import ConfigurationError
from stablewallet.scanner.runner import create_watcher_from_settings

from conftest import DAI_ADDRESS, USDC_ADDRESS, VAULT_ADDRESS

DEPLOYED_USDC = "0x" + "c0" * 20


@pytest.fixture
def deployment_env(tmp_path, monkeypatch):
    (tmp_path / "amoy.json").write_text(
        json.dumps(
            {
                "chainId": 80002,
                "contracts": {"Vault": VAULT_ADDRESS},
                "tokens": {"USDC": DEPLOYED_USDC, "DAI": "0x" + "11" * 20},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("DEPLOYMENTS_PATH", str(tmp_path))
    monkeypatch.setenv("RPC_URL", "http://127.0.0.1:8545")
    monkeypatch.setenv("DAI_TOKEN_ADDRESS", DAI_ADDRESS)
    monkeypatch.setenv("CONFIRMATIONS", "12")
    get_settings.cache_clear()

    yield tmp_path

    get_settings.cache_clear()


@pytest.mark.asyncio
async def test_watcher_built_from_deployment(deployment_env):
    """Test that deployment tokens apply and environment overrides win."""
    watcher = create_watcher_from_settings(interval_ms=500)

    try:
        assert isinstance(watcher.chain, JsonRpcChain)
        assert watcher.vault_address == VAULT_ADDRESS
        assert watcher.confirmations == 12
        assert watcher.poll_interval == 0.5
        assert watcher.chain_id == 80002
        assert watcher.tokens.get("USDC", watcher.network).address == DEPLOYED_USDC
        assert watcher.tokens.get("USDC", watcher.network).decimals == 6
        assert watcher.tokens.get("DAI", watcher.network).address == DAI_ADDRESS
        assert watcher.tokens.asset_for_token(USDC_ADDRESS, watcher.network) is None
    finally:
        await watcher.chain.close()


def test_missing_deployment_file(deployment_env):
    (deployment_env / "amoy.json").unlink()

    with pytest.raises(ConfigurationError, match="Deployment file not found"):
        create_watcher_from_settings()


def test_missing_rpc_url(deployment_env, monkeypatch):
    monkeypatch.delenv("RPC_URL")
    get_settings.cache_clear()

    with pytest.raises(ConfigurationError, match="RPC_URL"):
        create_watcher_from_settings()
