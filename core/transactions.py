"""
Transaction handle & outcome types shared by submitter, tracker and ledger.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import FailureReason
from .intents import IntentKind


class OutcomeStatus(Enum):
    PENDING = "pending"           # Accepted by the wallet, not yet seen by the ledger
    CONFIRMING = "confirming"     # In the ledger's pending block / queue
    CONFIRMED = "confirmed"       # Terminal: applied on the ledger
    FAILED = "failed"             # Terminal: reverted, dropped, or timed out

    @property
    def is_terminal(self) -> bool:
        return self in (OutcomeStatus.CONFIRMED, OutcomeStatus.FAILED)


# Position in the per-handle sequence; FAILED may follow any non-terminal state.
_RANK = {
    OutcomeStatus.PENDING: 0,
    OutcomeStatus.CONFIRMING: 1,
    OutcomeStatus.CONFIRMED: 2,
    OutcomeStatus.FAILED: 2,
}


@dataclass(frozen=True)
class TransactionHandle:
    """Opaque reference to a submitted, not-yet-resolved transaction."""
    tx_hash: str
    kind: IntentKind
    submitted_at: float = field(default_factory=time.time)
    chain: str = ""
    order_id: Optional[str] = None

    def short(self) -> str:
        return f"{self.tx_hash[:12]}..." if len(self.tx_hash) > 12 else self.tx_hash


@dataclass(frozen=True)
class TransactionOutcome:
    """One observed state of a handle. Derived, never stored on records."""
    status: OutcomeStatus
    reason: Optional[FailureReason] = None
    detail: str = ""
    result: dict = field(default_factory=dict)   # Decoded event args on CONFIRMED

    @property
    def rank(self) -> int:
        return _RANK[self.status]

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def confirmed(self) -> bool:
        return self.status == OutcomeStatus.CONFIRMED

    @classmethod
    def pending(cls) -> "TransactionOutcome":
        return cls(OutcomeStatus.PENDING)

    @classmethod
    def confirming(cls) -> "TransactionOutcome":
        return cls(OutcomeStatus.CONFIRMING)

    @classmethod
    def succeeded(cls, result: Optional[dict] = None) -> "TransactionOutcome":
        return cls(OutcomeStatus.CONFIRMED, result=dict(result or {}))

    @classmethod
    def failed(cls, reason: FailureReason, detail: str = "") -> "TransactionOutcome":
        return cls(OutcomeStatus.FAILED, reason=reason, detail=detail)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
        }
