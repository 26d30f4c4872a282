"""
Confirmation Tracker - handle → finite, ordered outcome sequence

    async for outcome in tracker.observe(handle):
        ...   # Pending → Confirming → Confirmed | Failed(reason)

Per-handle guarantees:
- Sequence starts at Pending and ends at exactly one terminal outcome
- States never go backwards; consecutive duplicates are collapsed
- No state is skipped: a ledger jump Pending → Confirmed reports Confirming first
- No terminal within the wait window → Failed(Timeout). The transaction may
  still land later; that late confirmation is NOT absorbed into local state
- Not restartable: a handle can be observed once

Stopping consumption early (break / aclose) only means local disinterest;
the submitted transaction is still on its way.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from .constants import MARKET_RULES
from .errors import FailureReason
from .ledger import LedgerClient
from .transactions import OutcomeStatus, TransactionHandle, TransactionOutcome

logger = logging.getLogger("onchainfarm.tracker")

_MAX_OBSERVED_HANDLES = 5000


class ConfirmationTracker:

    def __init__(self, ledger: LedgerClient,
                 timeout: float = MARKET_RULES.CONFIRMATION_TIMEOUT_SECONDS):
        self._ledger = ledger
        self.timeout = timeout
        self._observed: dict[str, bool] = {}                 # tx_hash → True (capped)
        self._current: dict[str, tuple[TransactionHandle, TransactionOutcome]] = {}

    def observe(self, handle: TransactionHandle) -> AsyncIterator[TransactionOutcome]:
        if handle.tx_hash in self._observed:
            raise ValueError(f"Handle {handle.short()} is already being observed or resolved")
        self._observed[handle.tx_hash] = True
        if len(self._observed) > _MAX_OBSERVED_HANDLES:
            self._observed.pop(next(iter(self._observed)))
        return self._sequence(handle)

    async def _sequence(self, handle: TransactionHandle) -> AsyncIterator[TransactionOutcome]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        raw = self._ledger.watch(handle)

        last = TransactionOutcome.pending()
        self._current[handle.tx_hash] = (handle, last)
        try:
            yield last

            while True:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError
                    outcome = await asyncio.wait_for(raw.__anext__(), remaining)
                except asyncio.TimeoutError:
                    outcome = TransactionOutcome.failed(
                        FailureReason.TIMEOUT, f"no confirmation within {self.timeout:g}s"
                    )
                except StopAsyncIteration:
                    outcome = TransactionOutcome.failed(
                        FailureReason.CHAIN_ERROR, "ledger stopped reporting before a result"
                    )

                if outcome.rank < last.rank:
                    continue
                if outcome.status == last.status:
                    continue

                if outcome.confirmed and last.status == OutcomeStatus.PENDING:
                    last = TransactionOutcome.confirming()
                    self._current[handle.tx_hash] = (handle, last)
                    yield last

                last = outcome
                self._current[handle.tx_hash] = (handle, last)
                yield outcome

                if outcome.is_terminal:
                    if outcome.confirmed:
                        logger.info(f"TX CONFIRMED [{handle.kind.value}]: {handle.short()}")
                    else:
                        logger.warning(
                            f"TX FAILED [{handle.kind.value}] ({outcome.reason.value}): "
                            f"{handle.short()} {outcome.detail}"
                        )
                    return
        finally:
            self._current.pop(handle.tx_hash, None)
            aclose = getattr(raw, "aclose", None)
            if aclose is not None:
                await aclose()

    async def resolve(
        self,
        handle: TransactionHandle,
        on_outcome: Optional[Callable[[TransactionOutcome], None]] = None,
    ) -> TransactionOutcome:
        """Consume the whole sequence and return the terminal outcome."""
        last = None
        async for outcome in self.observe(handle):
            if on_outcome:
                on_outcome(outcome)
            last = outcome
        return last

    def current(self, handle: TransactionHandle) -> Optional[TransactionOutcome]:
        """Latest outcome of an in-flight handle (None once resolved)."""
        entry = self._current.get(handle.tx_hash)
        return entry[1] if entry else None

    def in_flight(self) -> list[dict]:
        return [
            {
                "tx_hash": h.tx_hash,
                "kind": h.kind.value,
                "order_id": h.order_id,
                "submitted_at": h.submitted_at,
                **outcome.to_dict(),
            }
            for h, outcome in self._current.values()
        ]
