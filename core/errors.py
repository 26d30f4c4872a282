"""
Error taxonomy for the order/certificate lifecycle.

Every error here is raised BEFORE local state is touched. Callers
(the Marketplace controller) report each one to the notification sink
exactly once and re-raise it; nothing is auto-retried.
"""

from enum import Enum
from typing import Optional


class RejectionCause(Enum):
    """Why a submission never reached the ledger."""
    DECLINED = "declined"                 # Wallet refused to sign
    PREFLIGHT = "preflight"               # Gas estimate reverted / insufficient balance
    NETWORK = "network"                   # RPC unreachable before acceptance
    INVALID_PAYLOAD = "invalid_payload"   # Intent payload incomplete for its kind


class FailureReason(Enum):
    """Why an accepted transaction did not confirm (as observed by us)."""
    TIMEOUT = "timeout"
    CHAIN_ERROR = "chain_error"


class MarketplaceError(Exception):
    """Base for all lifecycle errors. `user_message` is what the sink shows."""

    title = "Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.user_message = message


class NotConnected(MarketplaceError):
    title = "Wallet not connected"

    def __init__(self, message: str = "Please connect your wallet."):
        super().__init__(message)


class SubmissionRejected(MarketplaceError):
    title = "Transaction rejected"

    def __init__(self, message: str, cause: RejectionCause = RejectionCause.DECLINED):
        super().__init__(message)
        self.cause = cause


class InvalidTransition(MarketplaceError):
    title = "Action not allowed"


class TransactionFailed(MarketplaceError):
    """Accepted by the ledger but not confirmed. Local state was NOT mutated."""

    title = "Transaction failed"

    def __init__(self, reason: FailureReason, detail: str = "", tx_hash: Optional[str] = None):
        message = f"Transaction {reason.value}" + (f": {detail}" if detail else "")
        super().__init__(message)
        self.reason = reason
        self.detail = detail
        self.tx_hash = tx_hash


class LedgerReadError(MarketplaceError):
    title = "Ledger read failed"
