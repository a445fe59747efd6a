"""HD wallet base types.

Keys are derived deterministically from a BIP-39 mnemonic along BIP-44
paths. Derived private keys are never stored: they are recomputed from the
mnemonic and the derivation index whenever they are needed.
"""

from dataclasses import dataclass, field

# Networks we derive custodial addresses for
SUPPORTED_NETWORKS = ("POLYGON_AMOY", "POLYGON")

# Assets that may be attached to a derived address
SUPPORTED_ASSETS = ("USDT", "USDC", "DAI")


@dataclass
class AddressInfo:
    """Information about a derived address."""

    address: str  # lowercase 0x...
    derivation_path: str
    index: int
    change: int = 0  # 0 = receiving, 1 = change


@dataclass
class DerivedKey:
    """A derived key pair. Lives only in memory for the duration of a call."""

    address: str  # lowercase 0x...
    checksum_address: str
    derivation_path: str
    index: int
    private_key: str = field(repr=False)  # 0x-prefixed hex


def normalize_network(network: str) -> str:
    return str(network or "").strip().upper()


def normalize_asset(asset: str) -> str:
    return str(asset or "").strip().upper()


def normalize_address(address: str) -> str:
    return str(address or "").strip().lower()
