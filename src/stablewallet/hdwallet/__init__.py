"""HD Wallet module for deterministic key derivation."""

from stablewallet.hdwallet.base import (
    SUPPORTED_ASSETS,
    SUPPORTED_NETWORKS,
    AddressInfo,
    DerivedKey,
)
from stablewallet.hdwallet.eth import (
    EVMHDWallet,
    address_from_private_key,
    generate_mnemonic,
    get_derivation_path,
    validate_mnemonic,
)

__all__ = [
    "AddressInfo",
    "DerivedKey",
    "EVMHDWallet",
    "SUPPORTED_ASSETS",
    "SUPPORTED_NETWORKS",
    "address_from_private_key",
    "generate_mnemonic",
    "get_derivation_path",
    "validate_mnemonic",
]
