"""
Transaction Submitter - intent → exactly one outbound ledger call

Guarantees:
- Connection Guard runs first; a disconnected session never reaches the wallet
- Payload is validated/encoded locally before anything is sent
- At most one sign_and_submit per call, no internal retry
- An intent object is consumed once; a retry must be a NEW intent

Returns as soon as the node accepted the transaction. The handle means
"accepted for processing", not "applied" - see tracker.py.
"""

import logging

from .errors import SubmissionRejected, RejectionCause
from .intents import TransactionIntent
from .transactions import TransactionHandle
from .wallet import WalletSession, require_identity

logger = logging.getLogger("onchainfarm.submitter")

_MAX_CONSUMED_IDS = 5000


class TransactionSubmitter:

    def __init__(self):
        self._consumed: dict[str, bool] = {}   # intent_id → True (insertion ordered, capped)
        self._submitted: int = 0
        self._rejected: int = 0

    def _consume(self, intent: TransactionIntent):
        if intent.intent_id in self._consumed:
            raise SubmissionRejected(
                "This request was already submitted. Start a new one to retry.",
                RejectionCause.INVALID_PAYLOAD,
            )
        self._consumed[intent.intent_id] = True
        if len(self._consumed) > _MAX_CONSUMED_IDS:
            self._consumed.pop(next(iter(self._consumed)))

    async def submit(self, session: WalletSession, intent: TransactionIntent) -> TransactionHandle:
        identity = require_identity(session)
        call = intent.encode()
        self._consume(intent)

        try:
            tx_hash = await session.provider.sign_and_submit(identity, call)
        except SubmissionRejected as e:
            self._rejected += 1
            logger.warning(
                f"SUBMIT REJECTED [{intent.kind.value}] ({e.cause.value}): {e.user_message}"
            )
            raise

        self._submitted += 1
        handle = TransactionHandle(
            tx_hash=tx_hash,
            kind=intent.kind,
            chain=str(identity.chain_id),
            order_id=intent.order_id,
        )
        logger.info(
            f"SUBMITTED [{intent.kind.value}] {call.contract}.{call.method} "
            f"from {identity.short()} → {handle.short()}"
        )
        return handle

    def get_status(self) -> dict:
        return {"submitted": self._submitted, "rejected": self._rejected}
