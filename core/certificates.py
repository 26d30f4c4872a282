"""
Certificate Issuance Flow - mint an NFT certificate for a verified order

Same submit/confirm pattern as order transitions, gated on the lifecycle:
- Order-bound: order must be Verified and must not already have a certificate
- Standalone: caller must explicitly assert the product is verified
- Confirmed → immutable Certificate with the minted token id (append-only)
- Failed → nothing recorded, TransactionFailed raised; retrying is a fresh mint
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from .errors import InvalidTransition, TransactionFailed
from .intents import IntentKind, TransactionIntent
from .models import Certificate, OrderStatus
from .orders import OrderBook
from .storage import read_json, write_json_atomic
from .submitter import TransactionSubmitter
from .tracker import ConfirmationTracker
from .transactions import TransactionHandle, TransactionOutcome
from .wallet import WalletSession, require_identity

logger = logging.getLogger("onchainfarm.certificates")


class CertificateRegistry:
    """Append-only record of confirmed certificates."""

    def __init__(self):
        self._certificates: list[Certificate] = []
        self._by_order: dict[str, Certificate] = {}
        self._applied: set[str] = set()

    def for_order(self, order_id: str) -> Optional[Certificate]:
        return self._by_order.get(str(order_id))

    def list_certificates(self, recipient: str = "") -> list[Certificate]:
        if not recipient:
            return list(self._certificates)
        return [c for c in self._certificates if c.recipient.lower() == recipient.lower()]

    def record(self, intent: TransactionIntent, handle: TransactionHandle,
               outcome: TransactionOutcome) -> Optional[Certificate]:
        """Create the record for a CONFIRMED mint. Anything else records nothing."""
        if intent.kind != IntentKind.MINT_CERTIFICATE:
            raise ValueError(f"{intent.kind.value} is not a certificate mint")
        if not outcome.confirmed:
            return None
        if handle.tx_hash in self._applied:
            return next(c for c in self._certificates if c.tx_hash == handle.tx_hash)
        if "tokenId" not in outcome.result:
            raise InvalidTransition("Mint confirmed but the ledger reported no token id.")

        p = intent.payload
        if p.order_id and p.order_id in self._by_order:
            existing = self._by_order[p.order_id]
            logger.warning(
                f"Mint {handle.short()} (token #{outcome.result['tokenId']}) refused: "
                f"order {p.order_id} already holds token #{existing.token_id}"
            )
            raise InvalidTransition(f"Order {p.order_id} already has a certificate.")
        certificate = Certificate(
            product_id=str(p.product_id),
            product_name=p.product_name,
            is_organic=bool(p.is_organic),
            recipient=p.recipient,
            token_id=str(outcome.result["tokenId"]),
            tx_hash=handle.tx_hash,
            order_id=p.order_id,
        )
        self._certificates.append(certificate)
        self._applied.add(handle.tx_hash)
        if certificate.order_id:
            self._by_order[certificate.order_id] = certificate

        logger.info(
            f"CERTIFICATE #{certificate.token_id} minted for product {certificate.product_id}"
            + (f" (order {certificate.order_id})" if certificate.order_id else "")
        )
        return certificate

    def save_state(self, path: str | Path):
        write_json_atomic(path, {"certificates": [c.to_dict() for c in self._certificates]})

    def load_state(self, path: str | Path) -> bool:
        state = read_json(path)
        if state is None:
            return False
        self._certificates = [Certificate.from_dict(d) for d in state.get("certificates", [])]
        self._by_order = {c.order_id: c for c in self._certificates if c.order_id}
        self._applied = {c.tx_hash for c in self._certificates if c.tx_hash}
        logger.info(f"Certificate registry restored: {len(self._certificates)} certificates")
        return True


class CertificateIssuer:

    def __init__(self, submitter: TransactionSubmitter, tracker: ConfirmationTracker,
                 orders: OrderBook, registry: CertificateRegistry):
        self._submitter = submitter
        self._tracker = tracker
        self._orders = orders
        self.registry = registry
        self._minting: set[str] = set()      # order ids with a mint in flight

    def check_order(self, order_id: str):
        """Local gate for an order-bound mint. Raises InvalidTransition."""
        order = self._orders.get(order_id)
        if order is None:
            raise InvalidTransition(f"Order {order_id} not found.")
        if order.status != OrderStatus.VERIFIED:
            raise InvalidTransition(
                f"Order {order_id} is {order.status.title}; certificates require a verified delivery."
            )
        if self.registry.for_order(order.id) is not None:
            raise InvalidTransition(f"Order {order_id} already has a certificate.")
        if order.id in self._minting:
            raise InvalidTransition(f"A certificate for order {order_id} is already being minted.")
        return order

    def hold(self, order_id: str):
        """Claim the order's single mint slot until release()."""
        order_id = str(order_id)
        if order_id in self._minting:
            raise InvalidTransition(f"A certificate for order {order_id} is already being minted.")
        self._minting.add(order_id)

    def release(self, order_id: str):
        self._minting.discard(str(order_id))

    async def mint_certificate(
        self,
        session: WalletSession,
        order_id: str,
        recipient: str,
        product_name: str,
        is_organic: bool = True,
        on_outcome: Optional[Callable[[TransactionOutcome], None]] = None,
    ) -> Certificate:
        require_identity(session)
        order = self.check_order(order_id)
        try:
            product_id = int(order.product)
        except ValueError:
            raise InvalidTransition(f"Order {order_id} has no numeric product id.")

        intent = TransactionIntent.mint_certificate(
            product_id, product_name, is_organic, recipient, order_id=order.id
        )
        self.hold(order.id)
        try:
            return await self._mint(session, intent, on_outcome)
        finally:
            self.release(order.id)

    async def mint_standalone(
        self,
        session: WalletSession,
        product_id: int,
        product_name: str,
        is_organic: bool,
        recipient: str,
        verified: bool = False,
        on_outcome: Optional[Callable[[TransactionOutcome], None]] = None,
    ) -> Certificate:
        """Mint without an order; the caller must assert verification explicitly."""
        require_identity(session)
        if not verified:
            raise InvalidTransition("Standalone certificates require an explicit verified assertion.")
        intent = TransactionIntent.mint_certificate(product_id, product_name, is_organic, recipient)
        return await self._mint(session, intent, on_outcome)

    async def _mint(self, session, intent, on_outcome) -> Certificate:
        handle = await self._submitter.submit(session, intent)
        outcome = await self._tracker.resolve(handle, on_outcome)
        if not outcome.confirmed:
            raise TransactionFailed(outcome.reason, outcome.detail, handle.tx_hash)
        return self.registry.record(intent, handle, outcome)
