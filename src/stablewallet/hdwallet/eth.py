"""EVM HD wallet using BIP-39 mnemonics and BIP-44 paths.

Derivation path: m/44'/60'/0'/0/index (hardened up to the account level)
Address format: 0x... (stored lowercase, checksum kept for display)

The same keys are valid on Ethereum, Polygon and every other EVM chain.
"""

from bip_utils import (
    Bip32Secp256k1,
    Bip39MnemonicGenerator,
    Bip39MnemonicValidator,
    Bip39SeedGenerator,
    Bip39WordsNum,
    EthAddrEncoder,
)
from eth_account import Account

from stablewallet.hdwallet.base import AddressInfo, DerivedKey

PURPOSE = 44
COIN_TYPE = 60  # ETH coin type for all EVM chains
ACCOUNT = 0

_WORDS_NUM = {
    12: Bip39WordsNum.WORDS_NUM_12,
    24: Bip39WordsNum.WORDS_NUM_24,
}


def generate_mnemonic(words: int = 12) -> str:
    """Generate a fresh BIP-39 mnemonic from the OS CSPRNG.

    Args:
        words: 12 or 24

    Returns:
        Space separated mnemonic phrase
    """
    if words not in _WORDS_NUM:
        raise ValueError(f"Unsupported mnemonic length: {words} (expected 12 or 24)")
    return Bip39MnemonicGenerator().FromWordsNumber(_WORDS_NUM[words]).ToStr()


def validate_mnemonic(phrase: str) -> bool:
    """Check BIP-39 word list membership and checksum."""
    return Bip39MnemonicValidator().IsValid(phrase.strip())


def get_derivation_path(index: int, change: int = 0) -> str:
    return f"m/{PURPOSE}'/{COIN_TYPE}'/{ACCOUNT}'/{change}/{index}"


def address_from_private_key(private_key: str) -> str:
    """Compute the lowercase address controlled by a private key."""
    return Account.from_key(private_key).address.lower()


class EVMHDWallet:
    """EVM HD wallet backed by a mnemonic.

    Example:
        wallet = EVMHDWallet(mnemonic)
        key = wallet.derive_key(0)
        # DerivedKey(address="0x...", derivation_path="m/44'/60'/0'/0/0", ...)
    """

    def __init__(self, mnemonic: str, passphrase: str = ""):
        """Initialize from a mnemonic phrase.

        Raises:
            ValueError: If the mnemonic is not a valid BIP-39 phrase
        """
        phrase = mnemonic.strip()
        if not validate_mnemonic(phrase):
            raise ValueError("Invalid BIP-39 mnemonic")
        seed = Bip39SeedGenerator(phrase).Generate(passphrase)
        self._root = Bip32Secp256k1.FromSeed(seed)

    def __repr__(self) -> str:
        return "EVMHDWallet(<redacted>)"

    def derive_key(self, index: int, change: int = 0) -> DerivedKey:
        """Derive the key pair at the given index."""
        if index < 0:
            raise ValueError(f"Derivation index must be non-negative (got {index})")

        path = get_derivation_path(index, change)
        child = self._root.DerivePath(path)

        # ETH addresses hash the uncompressed public key
        pubkey = child.PublicKey().RawUncompressed().ToBytes()
        checksum_address = EthAddrEncoder.EncodeKey(pubkey)

        return DerivedKey(
            address=checksum_address.lower(),
            checksum_address=checksum_address,
            derivation_path=path,
            index=index,
            private_key="0x" + child.PrivateKey().Raw().ToHex(),
        )

    def derive_address(self, index: int, change: int = 0) -> AddressInfo:
        """Derive only the public address at the given index."""
        key = self.derive_key(index, change)
        return AddressInfo(
            address=key.address,
            derivation_path=key.derivation_path,
            index=index,
            change=change,
        )
