"""Event log codecs and deposit reference helpers.

Only the events the wallet consumes are modelled:

- Vault ``Deposited(address indexed user, address indexed token, uint256 amount, string reference)``
- ERC-20 / ERC-721 ``Transfer(address indexed from, address indexed to, uint256 value)``
- MockSwap ``Swap(address indexed user, address tokenIn, address tokenOut,
  uint256 amountIn, uint256 amountOut, uint256 fee)``
"""

import re
import secrets
from dataclasses import dataclass
from typing import Optional

from eth_abi import decode, encode
from eth_utils import decode_hex, encode_hex, keccak

from stablewallet.chain.base import LogEntry

DEPOSITED_SIGNATURE = "Deposited(address,address,uint256,string)"
TRANSFER_SIGNATURE = "Transfer(address,address,uint256)"
SWAP_SIGNATURE = "Swap(address,address,address,uint256,uint256,uint256)"

ZERO_ADDRESS = "0x" + "00" * 20

# Deposit attribution: exact "w_" prefix + 24 hex wallet id
DEPOSIT_REFERENCE_PREFIX = "w_"
_REFERENCE_RE = re.compile(r"w_([0-9a-fA-F]{24})")


def event_topic(signature: str) -> str:
    """Topic0 for an event signature."""
    return encode_hex(keccak(text=signature))


DEPOSITED_TOPIC = event_topic(DEPOSITED_SIGNATURE)
TRANSFER_TOPIC = event_topic(TRANSFER_SIGNATURE)
SWAP_TOPIC = event_topic(SWAP_SIGNATURE)


def format_deposit_reference(wallet_id: str) -> str:
    """Build the reference string a depositor passes to the vault."""
    if parse_deposit_reference(DEPOSIT_REFERENCE_PREFIX + wallet_id) is None:
        raise ValueError(f"Wallet id must be 24 hex characters: {wallet_id!r}")
    return DEPOSIT_REFERENCE_PREFIX + wallet_id


def parse_deposit_reference(reference: Optional[str]) -> Optional[str]:
    """Extract the wallet id from a deposit reference.

    Returns:
        Lowercase wallet id, or None if the reference is malformed
    """
    if not isinstance(reference, str):
        return None
    match = _REFERENCE_RE.fullmatch(reference)
    if match is None:
        return None
    return match.group(1).lower()


def address_to_topic(address: str) -> str:
    return "0x" + address.lower().replace("0x", "").rjust(64, "0")


def topic_to_address(topic: str) -> str:
    return "0x" + topic.lower()[-40:]


def random_tx_hash() -> str:
    return "0x" + secrets.token_hex(32)


@dataclass
class DepositEvent:
    """Decoded Deposited event."""

    user: str
    token: str
    amount: int  # base units
    reference: str
    tx_hash: str
    block_number: int
    log_index: int = 0


@dataclass
class TransferEvent:
    """Decoded Transfer event (value is the tokenId for ERC-721)."""

    token: str
    from_address: str
    to_address: str
    value: int
    tx_hash: str
    block_number: int
    log_index: int = 0


@dataclass
class SwapEvent:
    """Decoded MockSwap Swap event."""

    user: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    fee: int
    tx_hash: str
    block_number: int


def decode_deposited(log: LogEntry) -> DepositEvent:
    """Decode a Deposited log.

    Raises:
        ValueError: If the log is not a well-formed Deposited event
    """
    if len(log.topics) != 3 or log.topics[0].lower() != DEPOSITED_TOPIC:
        raise ValueError(f"Not a Deposited event: {log.tx_hash}")
    try:
        amount, reference = decode(["uint256", "string"], decode_hex(log.data))
    except Exception as e:
        raise ValueError(f"Malformed Deposited data in {log.tx_hash}: {e}")
    return DepositEvent(
        user=topic_to_address(log.topics[1]),
        token=topic_to_address(log.topics[2]),
        amount=amount,
        reference=reference,
        tx_hash=log.tx_hash,
        block_number=log.block_number,
        log_index=log.log_index,
    )


def decode_transfer(log: LogEntry) -> TransferEvent:
    """Decode an ERC-20 (value in data) or ERC-721 (tokenId indexed) Transfer.

    Raises:
        ValueError: If the log is not a Transfer event
    """
    if not log.topics or log.topics[0].lower() != TRANSFER_TOPIC:
        raise ValueError(f"Not a Transfer event: {log.tx_hash}")

    if len(log.topics) == 4:
        value = int(log.topics[3], 16)
    elif len(log.topics) == 3:
        try:
            (value,) = decode(["uint256"], decode_hex(log.data))
        except Exception as e:
            raise ValueError(f"Malformed Transfer data in {log.tx_hash}: {e}")
    else:
        raise ValueError(f"Unexpected Transfer topics in {log.tx_hash}")

    return TransferEvent(
        token=log.address.lower(),
        from_address=topic_to_address(log.topics[1]),
        to_address=topic_to_address(log.topics[2]),
        value=value,
        tx_hash=log.tx_hash,
        block_number=log.block_number,
        log_index=log.log_index,
    )


def decode_swap(log: LogEntry) -> SwapEvent:
    """Decode a MockSwap Swap log.

    Raises:
        ValueError: If the log is not a well-formed Swap event
    """
    if len(log.topics) != 2 or log.topics[0].lower() != SWAP_TOPIC:
        raise ValueError(f"Not a Swap event: {log.tx_hash}")
    try:
        token_in, token_out, amount_in, amount_out, fee = decode(
            ["address", "address", "uint256", "uint256", "uint256"], decode_hex(log.data)
        )
    except Exception as e:
        raise ValueError(f"Malformed Swap data in {log.tx_hash}: {e}")
    return SwapEvent(
        user=topic_to_address(log.topics[1]),
        token_in=token_in.lower(),
        token_out=token_out.lower(),
        amount_in=amount_in,
        amount_out=amount_out,
        fee=fee,
        tx_hash=log.tx_hash,
        block_number=log.block_number,
    )


# Encoders (simulated chain and tests)


def encode_deposited(
    contract: str,
    user: str,
    token: str,
    amount: int,
    reference: str,
    tx_hash: str,
    block_number: int,
    log_index: int = 0,
) -> LogEntry:
    return LogEntry(
        address=contract.lower(),
        topics=[DEPOSITED_TOPIC, address_to_topic(user), address_to_topic(token)],
        data=encode_hex(encode(["uint256", "string"], [amount, reference])),
        block_number=block_number,
        tx_hash=tx_hash,
        log_index=log_index,
    )


def encode_transfer(
    token: str,
    from_address: str,
    to_address: str,
    value: int,
    tx_hash: str,
    block_number: int,
    log_index: int = 0,
    nft: bool = False,
) -> LogEntry:
    topics = [TRANSFER_TOPIC, address_to_topic(from_address), address_to_topic(to_address)]
    if nft:
        topics.append("0x" + format(value, "064x"))
        data = "0x"
    else:
        data = encode_hex(encode(["uint256"], [value]))
    return LogEntry(
        address=token.lower(),
        topics=topics,
        data=data,
        block_number=block_number,
        tx_hash=tx_hash,
        log_index=log_index,
    )


def encode_swap(
    contract: str,
    user: str,
    token_in: str,
    token_out: str,
    amount_in: int,
    amount_out: int,
    fee: int,
    tx_hash: str,
    block_number: int,
    log_index: int = 0,
) -> LogEntry:
    data = encode(
        ["address", "address", "uint256", "uint256", "uint256"],
        [token_in, token_out, amount_in, amount_out, fee],
    )
    return LogEntry(
        address=contract.lower(),
        topics=[SWAP_TOPIC, address_to_topic(user)],
        data=encode_hex(data),
        block_number=block_number,
        tx_hash=tx_hash,
        log_index=log_index,
    )
