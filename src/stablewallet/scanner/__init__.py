"""Vault deposit watching."""

from stablewallet.scanner.watcher import (
    CycleResult,
    DepositOutcome,
    DepositWatcher,
    WatcherState,
)

__all__ = [
    "CycleResult",
    "DepositOutcome",
    "DepositWatcher",
    "WatcherState",
]
