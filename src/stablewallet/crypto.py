"""Envelope encryption for long-lived secrets (mnemonics, raw private keys).

Each secret gets its own random salt and IV. The AES-256-GCM key is derived
from the master secret and the salt with scrypt, so a stored envelope is
self-contained: given the master secret, nothing else is needed to decrypt it.
"""

import base64
import binascii
import os
import secrets
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from stablewallet.config import MIN_MASTER_KEY_LENGTH, get_settings
from stablewallet.errors import ConfigurationError, IntegrityError


SALT_LEN = 16
IV_LEN = 12
KEY_LEN = 32
TAG_LEN = 16

# Bound into every ciphertext; bump the version to invalidate old envelopes.
AAD = b"stable-wallet-v1"


@dataclass(frozen=True)
class SecretEnvelope:
    """Encrypted payload plus the randomness needed to re-derive its key.

    All fields are base64 strings.
    """

    cipher_text: str
    salt: str
    iv: str
    auth_tag: str

    def to_dict(self) -> dict:
        return {
            "cipher_text": self.cipher_text,
            "salt": self.salt,
            "iv": self.iv,
            "auth_tag": self.auth_tag,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SecretEnvelope":
        """Build an envelope from its stored form.

        Raises:
            IntegrityError: If a field is missing
        """
        try:
            return cls(
                cipher_text=data["cipher_text"],
                salt=data["salt"],
                iv=data["iv"],
                auth_tag=data["auth_tag"],
            )
        except (KeyError, TypeError):
            raise IntegrityError("Invalid envelope: missing cipher_text, salt, iv, or auth_tag")

    def __repr__(self) -> str:
        return "SecretEnvelope(<redacted>)"


def generate_master_key() -> str:
    """Generate a random master secret suitable for MASTER_KEY."""
    return secrets.token_urlsafe(48)


class EnvelopeCipher:
    """Encrypts and decrypts secrets under a master key.

    Usage:
        cipher = EnvelopeCipher(master_key)
        envelope = cipher.encrypt("abandon abandon ...")
        phrase = cipher.decrypt(envelope)
    """

    def __init__(self, master_key: Optional[str], n: int = 16384, r: int = 8, p: int = 1):
        """Initialize with the master secret and scrypt work factors.

        Raises:
            ConfigurationError: If the master key is missing or too short
        """
        if not master_key or len(master_key) < MIN_MASTER_KEY_LENGTH:
            raise ConfigurationError(
                f"MASTER_KEY must be set (min {MIN_MASTER_KEY_LENGTH} characters). "
                "Use KMS in production."
            )
        self._master = master_key.encode("utf-8")
        self._n = n
        self._r = r
        self._p = p

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = Scrypt(salt=salt, length=KEY_LEN, n=self._n, r=self._r, p=self._p)
        return kdf.derive(self._master)

    def encrypt(self, plaintext: str) -> SecretEnvelope:
        """Encrypt one secret into a fresh envelope."""
        if not plaintext or not isinstance(plaintext, str):
            raise ValueError("plaintext is required")

        salt = os.urandom(SALT_LEN)
        iv = os.urandom(IV_LEN)
        key = self._derive_key(salt)

        # AESGCM appends the 16-byte tag to the ciphertext
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), AAD)
        cipher_text, tag = sealed[:-TAG_LEN], sealed[-TAG_LEN:]

        return SecretEnvelope(
            cipher_text=base64.b64encode(cipher_text).decode(),
            salt=base64.b64encode(salt).decode(),
            iv=base64.b64encode(iv).decode(),
            auth_tag=base64.b64encode(tag).decode(),
        )

    def decrypt(self, envelope: SecretEnvelope) -> str:
        """Decrypt an envelope.

        Raises:
            IntegrityError: If the envelope is malformed, was tampered with,
                or was sealed under a different master key
        """
        try:
            salt = base64.b64decode(envelope.salt, validate=True)
            iv = base64.b64decode(envelope.iv, validate=True)
            tag = base64.b64decode(envelope.auth_tag, validate=True)
            cipher_text = base64.b64decode(envelope.cipher_text, validate=True)
        except (binascii.Error, ValueError, TypeError):
            raise IntegrityError("Invalid envelope encoding")

        if len(salt) != SALT_LEN or len(iv) != IV_LEN or len(tag) != TAG_LEN:
            raise IntegrityError("Invalid envelope: unexpected salt, iv, or tag length")

        key = self._derive_key(salt)
        try:
            plain = AESGCM(key).decrypt(iv, cipher_text + tag, AAD)
        except InvalidTag:
            raise IntegrityError("Envelope authentication failed")

        return plain.decode("utf-8")

    def rotate(self, envelope: SecretEnvelope, target: "EnvelopeCipher") -> SecretEnvelope:
        """Re-encrypt an envelope under another master key.

        Args:
            envelope: Envelope sealed under this cipher's master key
            target: Cipher holding the new master key

        Returns:
            New envelope sealed under the target key
        """
        return target.encrypt(self.decrypt(envelope))


def get_cipher() -> EnvelopeCipher:
    """Get a cipher configured from settings.

    Raises:
        ConfigurationError: If MASTER_KEY is missing or too short
    """
    settings = get_settings()
    return EnvelopeCipher(
        settings.master_key,
        n=settings.scrypt_n,
        r=settings.scrypt_r,
        p=settings.scrypt_p,
    )
