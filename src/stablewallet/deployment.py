"""Deployment descriptor loading.

Contract addresses come from ``<deployments_path>/<network>.json`` where the
network name is selected by chain id. Expected shape::

    {"chainId": 80002, "contracts": {"Vault": "0x..."}, "tokens": {"USDT": "0x..."}}
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from stablewallet.errors import ConfigurationError

logger = logging.getLogger(__name__)

CHAIN_ID_TO_NETWORK = {
    80002: "amoy",
    80001: "mumbai",
    5: "goerli",
    137: "polygon",
    31337: "localhost",
}

VAULT_CONTRACT = "Vault"


@dataclass
class Deployment:
    """Contracts deployed on one network."""

    network: str
    chain_id: int
    contracts: dict[str, str] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def contract(self, name: str) -> str:
        """Get a contract address by name (lowercase).

        Raises:
            ConfigurationError: If the contract is not in the deployment
        """
        address = self.contracts.get(name)
        if not address:
            raise ConfigurationError(
                f"Contract {name} not found in deployment for {self.network} ({self.chain_id})"
            )
        return address.lower()

    @property
    def vault_address(self) -> str:
        return self.contract(VAULT_CONTRACT)


def load_deployment(chain_id: int, deployments_path: str = "deployments") -> Deployment:
    """Load the deployment descriptor for a chain id.

    Args:
        chain_id: EVM chain id
        deployments_path: Directory containing <network>.json files

    Returns:
        Deployment

    Raises:
        ConfigurationError: Unsupported chain id, missing file, or invalid JSON
    """
    network = CHAIN_ID_TO_NETWORK.get(chain_id)
    if network is None:
        supported = ", ".join(f"{cid} ({name})" for cid, name in CHAIN_ID_TO_NETWORK.items())
        raise ConfigurationError(f"Unsupported CHAIN_ID: {chain_id}. Supported: {supported}.")

    path = Path(deployments_path) / f"{network}.json"
    if not path.exists():
        raise ConfigurationError(
            f"Deployment file not found: {path}. Run deployment for network {network!r} first."
        )

    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in deployment file {path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read deployment file {path}: {e}")

    if not isinstance(parsed, dict):
        raise ConfigurationError(f"Deployment file {path} must contain a JSON object")

    contracts = parsed.get("contracts", {})
    tokens = parsed.get("tokens", {})
    if not isinstance(contracts, dict) or not isinstance(tokens, dict):
        raise ConfigurationError(f"Deployment file {path}: contracts and tokens must be objects")

    logger.info(f"Loaded deployment {network} ({chain_id}) with {len(contracts)} contracts")

    return Deployment(
        network=network,
        chain_id=chain_id,
        contracts={str(k): str(v) for k, v in contracts.items()},
        tokens={str(k).upper(): str(v) for k, v in tokens.items()},
        raw=parsed,
    )


def get_deployment(settings: Optional[Any] = None) -> Deployment:
    """Load the deployment selected by settings.chain_id."""
    if settings is None:
        from stablewallet.config import get_settings

        settings = get_settings()
    return load_deployment(settings.chain_id, settings.deployments_path)
