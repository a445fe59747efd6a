"""Read-only EVM chain access and event codecs."""

from stablewallet.chain.base import ChainReader, LogEntry, Receipt
from stablewallet.chain.events import (
    DepositEvent,
    TransferEvent,
    format_deposit_reference,
    parse_deposit_reference,
)
from stablewallet.chain.rpc import JsonRpcChain, get_chain_reader
from stablewallet.chain.simulated import SimulatedChain

__all__ = [
    "ChainReader",
    "DepositEvent",
    "JsonRpcChain",
    "LogEntry",
    "Receipt",
    "SimulatedChain",
    "TransferEvent",
    "format_deposit_reference",
    "get_chain_reader",
    "parse_deposit_reference",
]
