"""
Marketplace - the controller behind every storefront action

One place that wires the lifecycle together:

    UI action → Connection Guard → local precondition → Submitter
              → Tracker → (Confirmed) OrderBook / CertificateRegistry
              → Notification Sink

Every public operation reports its result to the sink exactly once
(success or error) and re-raises errors to the caller. Nothing is
retried here; a retry is a new call with a new intent.

Usage:
    market = Marketplace(ledger, LogNotifier(), data_dir=Path("data"))
    order = await market.purchase(session, product_id=7, quantity=1,
                                  price="0.025", delivery_address="12 Farm Lane")
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from .certificates import CertificateIssuer, CertificateRegistry
from .constants import MARKET_RULES, MARKETPLACE
from .errors import InvalidTransition, MarketplaceError, TransactionFailed
from .intents import IntentKind, TransactionIntent
from .ledger import LedgerClient
from .models import Certificate, Order, OrderStatus
from .notifier import LogNotifier
from .orders import OrderBook
from .submitter import TransactionSubmitter
from .tracker import ConfirmationTracker
from .transactions import TransactionHandle, TransactionOutcome
from .wallet import WalletSession, require_identity

logger = logging.getLogger("onchainfarm.marketplace")

OutcomeCallback = Optional[Callable[[TransactionOutcome], None]]

_ZERO_ADDRESS = "0x" + "0" * 40

_MAX_RAW_SUBMISSIONS = 5000


@dataclass
class _RawSubmission:
    """A submit() result waiting for observe()."""
    intent: TransactionIntent
    handle: TransactionHandle
    address: str
    release: Callable[[], None]


# (title, message) shown on success, per intent kind
SUCCESS_MESSAGES = {
    IntentKind.LIST_PRODUCT: ("Product Listed Successfully!", "Your product is now available on the marketplace"),
    IntentKind.PURCHASE: ("Purchase Successful!", "Your order has been placed onchain"),
    IntentKind.UPDATE_ORDER_STATUS: ("Status Updated", "Order status has been updated successfully"),
    IntentKind.VERIFY_DELIVERY: ("Delivery Verified", "Delivery verified on blockchain."),
    IntentKind.MINT_CERTIFICATE: ("Certificate Minted!", "NFT certificate has been minted successfully"),
}


class Marketplace:

    def __init__(
        self,
        ledger: LedgerClient,
        notifier: Optional[LogNotifier] = None,
        timeout: float = MARKET_RULES.CONFIRMATION_TIMEOUT_SECONDS,
        data_dir: Optional[Path] = None,
    ):
        self.ledger = ledger
        self.notifier = notifier or LogNotifier()
        self.submitter = TransactionSubmitter()
        self.tracker = ConfirmationTracker(ledger, timeout=timeout)
        self.orders = OrderBook()
        self.certificates = CertificateRegistry()
        self.issuer = CertificateIssuer(self.submitter, self.tracker, self.orders, self.certificates)
        self._data_dir = Path(data_dir) if data_dir else None
        self._raw_submissions: dict[str, _RawSubmission] = {}   # tx_hash → entry (capped)

    # ============================================================
    # STATE
    # ============================================================

    def load_state(self):
        if not self._data_dir:
            return
        self.orders.load_state(self._data_dir / "orders.json")
        self.certificates.load_state(self._data_dir / "certificates.json")

    def _save_state(self):
        if not self._data_dir:
            return
        try:
            self.orders.save_state(self._data_dir / "orders.json")
            self.certificates.save_state(self._data_dir / "certificates.json")
        except OSError as e:
            # The ledger already holds the fact; the local copy is rebuilt on next confirm
            logger.error(f"Failed to save marketplace state: {e}")

    # ============================================================
    # INTERNALS
    # ============================================================

    def _report(self, error: MarketplaceError):
        self.notifier.error(error.title, error.user_message)

    def _precheck(self, intent: TransactionIntent):
        """Local, ledger-independent lifecycle gate for a raw intent."""
        p = intent.payload
        if intent.kind == IntentKind.UPDATE_ORDER_STATUS:
            self.orders.check_transition(p.order_id, p.status)
        elif intent.kind == IntentKind.VERIFY_DELIVERY:
            self.orders.check_transition(p.order_id, OrderStatus.VERIFIED, p.proof)
        elif intent.kind == IntentKind.MINT_CERTIFICATE and p.order_id:
            self.issuer.check_order(p.order_id)

    def _settle(self, intent: TransactionIntent, handle: TransactionHandle,
                outcome: TransactionOutcome, address: str):
        """Map a terminal outcome onto local state. Failed → TransactionFailed."""
        if not outcome.confirmed:
            raise TransactionFailed(outcome.reason, outcome.detail, handle.tx_hash)

        if intent.kind in (IntentKind.PURCHASE, IntentKind.UPDATE_ORDER_STATUS, IntentKind.VERIFY_DELIVERY):
            record = self.orders.apply(intent, handle, outcome, buyer=address)
        elif intent.kind == IntentKind.MINT_CERTIFICATE:
            record = self.certificates.record(intent, handle, outcome)
        else:
            record = {
                "product_id": str(outcome.result["productId"]) if "productId" in outcome.result else None,
                "tx_hash": handle.tx_hash,
            }
        self._save_state()
        return record

    async def _run(self, session: WalletSession, intent: TransactionIntent,
                   on_outcome: OutcomeCallback = None):
        identity = require_identity(session)
        handle = await self.submitter.submit(session, intent)
        outcome = await self.tracker.resolve(handle, on_outcome)
        return self._settle(intent, handle, outcome, identity.address)

    def _succeed(self, kind: IntentKind, detail: str = ""):
        title, message = SUCCESS_MESSAGES[kind]
        self.notifier.success(title, f"{message}{detail}")

    # ============================================================
    # RAW INTENT / HANDLE
    # ============================================================

    def _hold(self, intent: TransactionIntent) -> Callable[[], None]:
        """Claim the per-order slot a raw intent needs. Returns its release."""
        order_id = intent.order_id
        if intent.kind in (IntentKind.UPDATE_ORDER_STATUS, IntentKind.VERIFY_DELIVERY):
            self.orders.hold(order_id)
            return lambda: self.orders.release(order_id)
        if intent.kind == IntentKind.MINT_CERTIFICATE and order_id:
            self.issuer.hold(order_id)
            return lambda: self.issuer.release(order_id)
        return lambda: None

    def _drop_stale_submissions(self):
        """Forget handles nobody observed within the confirmation window."""
        cutoff = time.time() - self.tracker.timeout
        stale = [h for h, entry in self._raw_submissions.items() if entry.handle.submitted_at < cutoff]
        while len(self._raw_submissions) - len(stale) >= _MAX_RAW_SUBMISSIONS:
            stale.append(next(h for h in self._raw_submissions if h not in stale))
        for tx_hash in stale:
            entry = self._raw_submissions.pop(tx_hash)
            entry.release()
            logger.warning(f"Dropped unobserved handle {entry.handle.short()} [{entry.intent.kind.value}]")

    async def submit(self, session: WalletSession, intent: TransactionIntent) -> TransactionHandle:
        """
        Submit any intent; observe() the handle to drive it to a result.
        Handles not observed within the confirmation window are dropped.
        """
        self._drop_stale_submissions()
        try:
            identity = require_identity(session)
            self._precheck(intent)
            release = self._hold(intent)
            try:
                handle = await self.submitter.submit(session, intent)
            except BaseException:
                release()
                raise
        except MarketplaceError as e:
            self._report(e)
            raise
        self._raw_submissions[handle.tx_hash] = _RawSubmission(intent, handle, identity.address, release)
        return handle

    async def observe(self, handle: TransactionHandle) -> AsyncIterator[TransactionOutcome]:
        """
        Yield the handle's outcomes; the terminal one is applied/reported
        before it is yielded. Only handles from submit() are accepted.
        """
        entry = self._raw_submissions.pop(handle.tx_hash, None)
        if entry is None:
            raise ValueError(f"Unknown handle {handle.short()}")

        try:
            async for outcome in self.tracker.observe(handle):
                if outcome.is_terminal:
                    try:
                        self._settle(entry.intent, handle, outcome, entry.address)
                    except TransactionFailed as e:
                        self._report(e)
                    except MarketplaceError as e:
                        self._report(e)
                        raise
                    else:
                        self._succeed(entry.intent.kind)
                yield outcome
        finally:
            entry.release()

    # ============================================================
    # STOREFRONT ACTIONS
    # ============================================================

    async def list_product(self, session: WalletSession, name: str, description: str,
                           image_url: str, price: str, quantity: int, category: str,
                           location: str, on_outcome: OutcomeCallback = None) -> dict:
        intent = TransactionIntent.list_product(
            name=name, description=description, image_url=image_url, price=price,
            quantity=quantity, category=category, location=location,
        )
        try:
            listing = await self._run(session, intent, on_outcome)
        except MarketplaceError as e:
            self._report(e)
            raise
        self._succeed(intent.kind)
        return listing

    async def purchase(self, session: WalletSession, product_id: int, quantity: int,
                       price: str, delivery_address: str,
                       on_outcome: OutcomeCallback = None) -> Order:
        intent = TransactionIntent.purchase(product_id, quantity, price, delivery_address)
        try:
            order = await self._run(session, intent, on_outcome)
        except MarketplaceError as e:
            self._report(e)
            raise
        self._succeed(intent.kind, f" (order #{order.id})")
        return order

    async def update_order_status(self, session: WalletSession, order_id: str, status,
                                  on_outcome: OutcomeCallback = None) -> Order:
        """Farmer side: Ordered → Shipped → Delivered."""
        try:
            require_identity(session)
            try:
                target = OrderStatus.parse(status)
            except (KeyError, ValueError):
                raise InvalidTransition(f"Unknown order status: {status!r}")
            if target not in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
                raise InvalidTransition("Status updates can only mark an order Shipped or Delivered.")
            self.orders.check_transition(order_id, target)

            intent = TransactionIntent.update_order_status(order_id, target)
            with self.orders.reserve(order_id):
                order = await self._run(session, intent, on_outcome)
        except MarketplaceError as e:
            self._report(e)
            raise
        self._succeed(intent.kind)
        return order

    async def verify_delivery(self, session: WalletSession, order_id: str, proof: str,
                              on_outcome: OutcomeCallback = None) -> Order:
        """Buyer side: Delivered → Verified, recording the delivery proof."""
        try:
            require_identity(session)
            self.orders.check_transition(order_id, OrderStatus.VERIFIED, proof)

            intent = TransactionIntent.verify_delivery(order_id, proof)
            with self.orders.reserve(order_id):
                order = await self._run(session, intent, on_outcome)
        except MarketplaceError as e:
            self._report(e)
            raise
        self._succeed(intent.kind)
        return order

    async def mint_certificate(self, session: WalletSession, order_id: str, recipient: str,
                               product_name: str, is_organic: bool = True,
                               on_outcome: OutcomeCallback = None) -> Certificate:
        try:
            certificate = await self.issuer.mint_certificate(
                session, order_id, recipient, product_name, is_organic, on_outcome
            )
        except MarketplaceError as e:
            self._report(e)
            raise
        self._save_state()
        self._succeed(IntentKind.MINT_CERTIFICATE, f" (token #{certificate.token_id})")
        return certificate

    async def mint_standalone_certificate(self, session: WalletSession, product_id: int,
                                          product_name: str, is_organic: bool, recipient: str,
                                          verified: bool = False,
                                          on_outcome: OutcomeCallback = None) -> Certificate:
        try:
            certificate = await self.issuer.mint_standalone(
                session, product_id, product_name, is_organic, recipient, verified, on_outcome
            )
        except MarketplaceError as e:
            self._report(e)
            raise
        self._save_state()
        self._succeed(IntentKind.MINT_CERTIFICATE, f" (token #{certificate.token_id})")
        return certificate

    # ============================================================
    # READS
    # ============================================================

    async def track_order(self, order_id: str) -> Optional[dict]:
        """
        Local order + history when we hold it; otherwise a read-only
        ledger snapshot (never written to the order book). None if unknown.
        """
        order = self.orders.get(order_id)
        if order is not None:
            certificate = self.certificates.for_order(order.id)
            return {
                "source": "local",
                "order": {**order.to_dict(), "explorer_url": self.ledger.get_explorer_url(order.tx_hash)},
                "history": [e.to_dict() for e in self.orders.history(order.id)],
                "certificate": certificate.to_dict() if certificate else None,
            }

        try:
            numeric_id = int(order_id)
        except ValueError:
            return None
        try:
            raw = await self.ledger.read(MARKETPLACE, "getOrder", (numeric_id,))
        except MarketplaceError as e:
            self._report(e)
            raise

        oid, product, farmer, buyer, status, proof, timestamp = raw
        if not buyer or buyer == _ZERO_ADDRESS:
            return None
        snapshot = Order(
            id=str(oid),
            status=OrderStatus(int(status)),
            product=str(product),
            farmer=farmer,
            buyer=buyer,
            timestamp=float(timestamp),
            delivery_proof=proof or None,
        )
        return {"source": "ledger", "order": snapshot.to_dict(), "history": [], "certificate": None}

    async def farmer_products(self, farmer_address: str) -> list[int]:
        try:
            product_ids = await self.ledger.read(MARKETPLACE, "getFarmerProducts", (farmer_address,))
        except MarketplaceError as e:
            self._report(e)
            raise
        return [int(p) for p in product_ids]

    def get_status(self) -> dict:
        return {
            "orders": self.orders.get_status(),
            "certificates": len(self.certificates.list_certificates()),
            "submitter": self.submitter.get_status(),
            "ledger": self.ledger.get_status(),
            "in_flight": self.tracker.in_flight(),
        }
