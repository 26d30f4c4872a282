"""
Data types for the order/certificate lifecycle.

Order and Certificate records are only ever constructed by the
OrderBook / CertificateRegistry from a confirmed transaction outcome
(or restored from their own saved state).
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional


class OrderStatus(Enum):
    """Lifecycle states of an order. Values match the contract's uint8 enum."""
    ORDERED = 0
    SHIPPED = 1
    DELIVERED = 2
    VERIFIED = 3

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @property
    def title(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value) -> "OrderStatus":
        """Accept an OrderStatus, its uint8 value, or its name ("Shipped")."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[str(value).strip().upper()]


_STATUS_LABELS = {
    OrderStatus.ORDERED: "Order Placed",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.VERIFIED: "Verified on Blockchain",
}


def is_order_verifiable(status: OrderStatus) -> bool:
    """Only a delivered order can be verified by the buyer."""
    return status == OrderStatus.DELIVERED


@dataclass
class Order:
    """Local view of an on-ledger order."""
    id: str
    status: OrderStatus
    product: str
    farmer: str
    buyer: str
    timestamp: float
    delivery_proof: Optional[str] = None
    tx_hash: str = ""              # Hash of the transaction that set the current status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.title,
            "status_label": self.status.label,
            "product": self.product,
            "farmer": self.farmer,
            "buyer": self.buyer,
            "delivery_proof": self.delivery_proof,
            "timestamp": self.timestamp,
            "tx_hash": self.tx_hash,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Order":
        return cls(
            id=str(data["id"]),
            status=OrderStatus.parse(data["status"]),
            product=data.get("product", ""),
            farmer=data.get("farmer", ""),
            buyer=data.get("buyer", ""),
            timestamp=float(data.get("timestamp", 0)),
            delivery_proof=data.get("delivery_proof"),
            tx_hash=data.get("tx_hash", ""),
        )


@dataclass(frozen=True)
class TrackingEvent:
    """One confirmed status change of an order (append-only audit log)."""
    order_id: str
    event: str
    timestamp: float
    tx_hash: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Certificate:
    """Ledger-minted proof record. token_id is set iff the mint confirmed."""
    product_id: str
    product_name: str
    is_organic: bool
    recipient: str
    token_id: Optional[str] = None
    tx_hash: Optional[str] = None
    order_id: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Certificate":
        return cls(
            product_id=str(data["product_id"]),
            product_name=data.get("product_name", ""),
            is_organic=bool(data.get("is_organic", False)),
            recipient=data.get("recipient", ""),
            token_id=data.get("token_id"),
            tx_hash=data.get("tx_hash"),
            order_id=data.get("order_id"),
        )
