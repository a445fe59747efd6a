"""Fixed-point amount handling.

Balances are kept in cents-equivalent units: every amount is rounded to two
decimal places (half-up) before it touches the ledger.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from stablewallet.errors import InvalidAmountError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

AmountLike = Union[Decimal, int, float, str]


def quantize_amount(value: AmountLike) -> Decimal:
    """Round an amount to 2 decimals.

    Floats go through ``str`` first so ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(f"Invalid amount: {value!r}")


def require_positive(value: AmountLike, name: str = "amount") -> Decimal:
    """Quantize and reject zero or negative amounts."""
    amount = quantize_amount(value)
    if amount <= ZERO:
        raise InvalidAmountError(f"{name} must be greater than 0 (got {amount})")
    return amount


def require_non_negative(value: AmountLike, name: str = "amount") -> Decimal:
    amount = quantize_amount(value)
    if amount < ZERO:
        raise InvalidAmountError(f"{name} must not be negative (got {amount})")
    return amount


def from_base_units(raw: int, decimals: int) -> Decimal:
    """Convert an on-chain integer amount to a ledger amount."""
    return quantize_amount(Decimal(int(raw)).scaleb(-decimals))


def to_base_units(amount: AmountLike, decimals: int) -> int:
    """Convert a human amount to on-chain integer units (truncating)."""
    if isinstance(amount, float):
        amount = str(amount)
    value = Decimal(amount).scaleb(decimals)
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def to_cents(amount: AmountLike) -> int:
    return int(quantize_amount(amount).scaleb(2))


def from_cents(cents: int) -> Decimal:
    return Decimal(int(cents)).scaleb(-2).quantize(CENT)
