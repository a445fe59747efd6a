"""Stablecoin token registry.

Maps (asset, network) to the ERC-20 contract and its decimals. Defaults are
the POLYGON_AMOY test deployments; addresses can be overridden from settings
or from the deployment descriptor.
"""

from dataclasses import dataclass
from typing import Optional

from stablewallet.errors import UnsupportedAssetError
from stablewallet.hdwallet.base import normalize_address, normalize_asset, normalize_network


@dataclass(frozen=True)
class TokenInfo:
    """ERC-20 token known to the wallet."""

    asset: str
    network: str
    address: Optional[str]  # lowercase 0x..., None if not deployed
    decimals: int


# ======================
# Token Configurations
# ======================

DEFAULT_TOKENS: dict[str, dict[str, TokenInfo]] = {
    "POLYGON_AMOY": {
        "USDT": TokenInfo(
            asset="USDT",
            network="POLYGON_AMOY",
            address="0x83e4d17029a1a81d5f4bbd1d3ef1c1c91f35022f",
            decimals=6,
        ),
        "USDC": TokenInfo(
            asset="USDC",
            network="POLYGON_AMOY",
            address="0x23c6cda5c992acddc99cb8df1164d42d20e77838",
            decimals=6,
        ),
        # No canonical DAI on Amoy; configure DAI_TOKEN_ADDRESS
        "DAI": TokenInfo(asset="DAI", network="POLYGON_AMOY", address=None, decimals=18),
    },
}

# Networks that share another network's token table
NETWORK_ALIASES = {
    "POLYGON": "POLYGON_AMOY",
}


def resolve_network(network: str) -> str:
    net = normalize_network(network)
    return NETWORK_ALIASES.get(net, net)


class TokenRegistry:
    """Token lookups with per-deployment address overrides."""

    def __init__(self, overrides: Optional[dict[str, str]] = None, network: str = "POLYGON_AMOY"):
        """Initialize the registry.

        Args:
            overrides: Asset code -> contract address for ``network``
            network: Network the overrides apply to
        """
        self._tokens = {net: dict(table) for net, table in DEFAULT_TOKENS.items()}
        if overrides:
            net = resolve_network(network)
            table = self._tokens.setdefault(net, {})
            for asset, address in overrides.items():
                code = normalize_asset(asset)
                current = table.get(code)
                decimals = current.decimals if current else 18
                table[code] = TokenInfo(
                    asset=code,
                    network=net,
                    address=normalize_address(address),
                    decimals=decimals,
                )

    def get(self, asset: str, network: str) -> TokenInfo:
        """Get token info for an asset on a network.

        Raises:
            UnsupportedAssetError: If the asset is unknown on the network
        """
        net = resolve_network(network)
        token = self._tokens.get(net, {}).get(normalize_asset(asset))
        if token is None:
            raise UnsupportedAssetError(f"Unsupported asset {asset} on {network}")
        return token

    def get_address(self, asset: str, network: str) -> str:
        """Get the token contract address.

        Raises:
            UnsupportedAssetError: If the asset is unknown or has no address configured
        """
        token = self.get(asset, network)
        if not token.address:
            raise UnsupportedAssetError(f"Token address not configured for {asset} on {network}")
        return token.address

    def asset_for_token(self, address: str, network: str) -> Optional[TokenInfo]:
        """Reverse lookup by contract address."""
        addr = normalize_address(address)
        for token in self._tokens.get(resolve_network(network), {}).values():
            if token.address == addr:
                return token
        return None

    def list_tokens(self, network: str) -> list[TokenInfo]:
        return list(self._tokens.get(resolve_network(network), {}).values())


_registry: Optional[TokenRegistry] = None


def get_token_registry() -> TokenRegistry:
    """Get the token registry configured from settings."""
    global _registry
    if _registry is None:
        from stablewallet.config import get_settings

        settings = get_settings()
        _registry = TokenRegistry(settings.get_token_overrides(), settings.default_network)
    return _registry


def get_token_info(asset: str, network: str) -> TokenInfo:
    return get_token_registry().get(asset, network)


def asset_for_token(address: str, network: str) -> Optional[TokenInfo]:
    return get_token_registry().asset_for_token(address, network)
