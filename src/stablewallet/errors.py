"""Error taxonomy for the custodial core.

Every error carries a stable ``code`` and an ``http_status`` hint so that the
HTTP layer (an external collaborator) can map kinds to distinct responses
without inspecting messages.
"""

from decimal import Decimal
from typing import Optional


class WalletCoreError(Exception):
    """Base class for all custodial core errors."""

    code = "wallet_core_error"
    http_status = 500


class ConfigurationError(WalletCoreError):
    """Master key or RPC/deployment configuration missing or invalid."""

    code = "configuration_error"
    http_status = 503


class IntegrityError(WalletCoreError):
    """Envelope authentication failed (tampered data or wrong master key)."""

    code = "integrity_error"
    http_status = 500


class NoMnemonicError(WalletCoreError):
    """No mnemonic record exists for the principal yet."""

    code = "no_mnemonic"
    http_status = 409

    def __init__(self, principal_id: str):
        self.principal_id = principal_id
        super().__init__(
            f"No mnemonic for principal {principal_id}. Create one before deriving addresses."
        )


class RateLimitedError(WalletCoreError):
    """Too many attempts inside the current window."""

    code = "rate_limited"
    http_status = 429

    def __init__(self, message: str, retry_after: float = 0.0):
        self.retry_after = retry_after
        super().__init__(message)


class InsufficientBalanceError(WalletCoreError):
    """Debit larger than the available balance."""

    code = "insufficient_balance"
    http_status = 422

    def __init__(self, wallet_id: str, asset: str, available: Decimal, requested: Decimal):
        self.wallet_id = wallet_id
        self.asset = asset
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient balance: have {available} {asset}, need {requested}"
        )


class VerificationError(WalletCoreError):
    """On-chain evidence does not support the claimed operation."""

    code = "verification_failed"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class DuplicateError(WalletCoreError):
    """Transaction hash already settled. Callers treat this as a no-op."""

    code = "duplicate"
    http_status = 200

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Transaction {tx_hash} already processed")


class ConfirmationRequiredError(WalletCoreError):
    """Key export attempted without explicit confirmation."""

    code = "confirmation_required"
    http_status = 403


class AddressNotFoundError(WalletCoreError):
    """Address unknown, not HD-derived, or owned by another principal."""

    code = "address_not_found"
    http_status = 404


class DerivationMismatchError(WalletCoreError):
    """Re-derived address does not match the stored address."""

    code = "derivation_mismatch"
    http_status = 500


class WalletNotFoundError(WalletCoreError):
    code = "wallet_not_found"
    http_status = 404


class UnsupportedAssetError(WalletCoreError, ValueError):
    code = "unsupported_asset"
    http_status = 400


class InvalidAmountError(WalletCoreError, ValueError):
    code = "invalid_amount"
    http_status = 400


class InvalidTransitionError(WalletCoreError, ValueError):
    code = "invalid_transition"
    http_status = 409


class RpcError(WalletCoreError):
    """Blockchain RPC transport or JSON-RPC level failure."""

    code = "rpc_error"
    http_status = 502
