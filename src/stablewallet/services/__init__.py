"""Wallet core services."""

from stablewallet.services.keys import (
    DerivedAddressResult,
    HDKeyService,
    RecoveredKey,
    RequestContext,
)
from stablewallet.services.ledger import LedgerService, NewTransaction, SwapResult
from stablewallet.services.settlement import (
    OffChainSettlement,
    OnChainSettlement,
    SettlementRequest,
    SettlementResult,
    SettlementService,
)
from stablewallet.services.verification import OnchainVerifier, SwapProof, TransferProof

__all__ = [
    "DerivedAddressResult",
    "HDKeyService",
    "LedgerService",
    "NewTransaction",
    "OffChainSettlement",
    "OnChainSettlement",
    "OnchainVerifier",
    "RecoveredKey",
    "RequestContext",
    "SettlementRequest",
    "SettlementResult",
    "SettlementService",
    "SwapProof",
    "SwapResult",
    "TransferProof",
]
