"""
Order Lifecycle Machine

    (none) --Purchase confirmed-------------------> Ordered
    Ordered --UpdateOrderStatus(Shipped) confirmed--> Shipped
    Shipped --UpdateOrderStatus(Delivered) confirmed--> Delivered
    Delivered --VerifyDelivery(proof) confirmed----> Verified   (terminal)

Rules:
- Only apply() mutates an order, and only for a CONFIRMED outcome
- check_transition() is the local precondition gate, run BEFORE submission
- One transition in flight per order (reserve/release around submit+resolve)
- Re-applying an already applied tx hash is a no-op
- Each applied transition appends exactly one TrackingEvent (never trimmed)
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Optional

from .errors import InvalidTransition
from .intents import IntentKind, TransactionIntent
from .models import Order, OrderStatus, TrackingEvent
from .storage import read_json, write_json_atomic
from .transactions import TransactionHandle, TransactionOutcome

logger = logging.getLogger("onchainfarm.orders")


NEXT_STATUS = {
    OrderStatus.ORDERED: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.DELIVERED,
    OrderStatus.DELIVERED: OrderStatus.VERIFIED,
}


class OrderBook:
    """Local, confirmed-only view of orders plus their tracking history."""

    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._events: dict[str, list[TrackingEvent]] = {}
        self._applied: dict[str, str] = {}        # tx_hash → order_id
        self._in_flight: set[str] = set()         # order ids with a transition pending

    # ============================================================
    # READS
    # ============================================================

    def get(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(str(order_id))
        return replace(order) if order else None

    def list_orders(self, address: str = "") -> list[Order]:
        """All orders, or only those where address is buyer or farmer."""
        addr = address.lower()
        return [
            replace(o) for o in self._orders.values()
            if not addr or addr in (o.buyer.lower(), o.farmer.lower())
        ]

    def history(self, order_id: str) -> list[TrackingEvent]:
        return sorted(self._events.get(str(order_id), []), key=lambda e: e.timestamp)

    def is_in_flight(self, order_id: str) -> bool:
        return str(order_id) in self._in_flight

    # ============================================================
    # PRECONDITIONS
    # ============================================================

    def check_transition(self, order_id: str, target: OrderStatus,
                         proof: Optional[str] = None, *, ignore_in_flight: bool = False) -> Order:
        """Raise InvalidTransition unless `order_id` may move to `target` now."""
        order = self._orders.get(str(order_id))
        if order is None:
            raise InvalidTransition(f"Order {order_id} not found.")
        if not ignore_in_flight and order.id in self._in_flight:
            raise InvalidTransition(f"Order {order_id} already has a transaction in progress.")
        if order.status == OrderStatus.VERIFIED:
            raise InvalidTransition(f"Order {order_id} is already verified.")

        expected = NEXT_STATUS[order.status]
        if target != expected:
            raise InvalidTransition(
                f"Order {order_id} is {order.status.title}; it can only move to {expected.title}."
            )
        if target == OrderStatus.VERIFIED and not (proof or "").strip():
            raise InvalidTransition("A delivery proof is required to verify an order.")
        return replace(order)

    def hold(self, order_id: str):
        """Mark an order as having a transition in flight until release()."""
        order_id = str(order_id)
        if order_id in self._in_flight:
            raise InvalidTransition(f"Order {order_id} already has a transaction in progress.")
        self._in_flight.add(order_id)

    def release(self, order_id: str):
        self._in_flight.discard(str(order_id))

    @contextmanager
    def reserve(self, order_id: str):
        """hold() for the block's duration."""
        self.hold(order_id)
        try:
            yield
        finally:
            self.release(order_id)

    # ============================================================
    # APPLY - the only mutation path
    # ============================================================

    def apply(self, intent: TransactionIntent, handle: TransactionHandle,
              outcome: TransactionOutcome, buyer: str = "") -> Optional[Order]:
        """
        Apply a resolved outcome. Non-confirmed outcomes change nothing.
        Returns the updated order (None if nothing was applied).
        """
        if not outcome.confirmed:
            return None
        if handle.tx_hash in self._applied:
            logger.debug(f"Outcome {handle.short()} already applied - skipping")
            return self.get(self._applied[handle.tx_hash])

        result = outcome.result
        timestamp = float(result.get("timestamp") or time.time())

        if intent.kind == IntentKind.PURCHASE:
            if "orderId" not in result:
                raise InvalidTransition("Purchase confirmed but the ledger reported no order id.")
            order = Order(
                id=str(result["orderId"]),
                status=OrderStatus.ORDERED,
                product=str(result.get("productId", intent.payload.product_id)),
                farmer=str(result.get("farmer", "")),
                buyer=str(result.get("buyer") or buyer),
                timestamp=timestamp,
                tx_hash=handle.tx_hash,
            )
            if order.id in self._orders:
                raise InvalidTransition(f"Order {order.id} already exists locally.")
            self._orders[order.id] = order

        elif intent.kind in (IntentKind.UPDATE_ORDER_STATUS, IntentKind.VERIFY_DELIVERY):
            if intent.kind == IntentKind.VERIFY_DELIVERY:
                target, proof = OrderStatus.VERIFIED, intent.payload.proof
            else:
                target, proof = intent.payload.status, None
            self.check_transition(intent.payload.order_id, target, proof, ignore_in_flight=True)

            order = self._orders[intent.payload.order_id]
            order.status = target
            order.tx_hash = handle.tx_hash
            if target == OrderStatus.VERIFIED:
                order.delivery_proof = proof

        else:
            raise ValueError(f"{intent.kind.value} does not drive the order lifecycle")

        self._applied[handle.tx_hash] = order.id
        events = self._events.setdefault(order.id, [])
        events.append(TrackingEvent(
            order_id=order.id,
            event=order.status.label,
            timestamp=timestamp,
            tx_hash=handle.tx_hash,
        ))

        logger.info(f"ORDER {order.id} → {order.status.title} (tx {handle.short()})")
        return replace(order)

    # ============================================================
    # PERSISTENCE
    # ============================================================

    def save_state(self, path: str | Path):
        write_json_atomic(path, {
            "orders": [o.to_dict() for o in self._orders.values()],
            "events": {oid: [e.to_dict() for e in evs] for oid, evs in self._events.items()},
            "applied": self._applied,
        })
        logger.debug(f"Order book saved ({len(self._orders)} orders)")

    def load_state(self, path: str | Path) -> bool:
        """Restore a previously saved book. Returns False if no file exists."""
        state = read_json(path)
        if state is None:
            logger.info("No order book state found - starting fresh")
            return False

        self._orders = {o.id: o for o in (Order.from_dict(d) for d in state.get("orders", []))}
        self._events = {
            oid: [TrackingEvent(**e) for e in evs]
            for oid, evs in state.get("events", {}).items()
        }
        self._applied = dict(state.get("applied", {}))
        logger.info(f"Order book restored: {len(self._orders)} orders")
        return True

    def get_status(self) -> dict:
        by_status = {s.title: 0 for s in OrderStatus}
        for o in self._orders.values():
            by_status[o.status.title] += 1
        return {
            "orders": len(self._orders),
            "by_status": by_status,
            "in_flight": len(self._in_flight),
        }
