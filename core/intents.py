"""
Transaction Intents - what a caller wants to change on the ledger

An intent is an immutable description of ONE state-changing call.
Each kind has a fixed encoding (contract + method + typed args):

    ListProduct        marketplace.listProduct(name, description, imageUrl, price, quantity, category, location)
    Purchase           marketplace.purchaseProduct(productId, quantity, deliveryAddress)  value=price
    UpdateOrderStatus  marketplace.updateOrderStatus(orderId, status)
    VerifyDelivery     marketplace.verifyDelivery(orderId, proof)
    MintCertificate    certificate.mintCertificate(productId, productName, isOrganic, recipient)

Prices are decimal strings in the chain's native unit ("0.025" ETH)
and are converted to wei at encoding time.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, localcontext
from enum import Enum
from typing import Optional, Union

from web3 import Web3

from .constants import MARKETPLACE, CERTIFICATE
from .errors import SubmissionRejected, RejectionCause
from .models import OrderStatus


class IntentKind(Enum):
    LIST_PRODUCT = "list_product"
    PURCHASE = "purchase"
    UPDATE_ORDER_STATUS = "update_order_status"
    VERIFY_DELIVERY = "verify_delivery"
    MINT_CERTIFICATE = "mint_certificate"


@dataclass(frozen=True)
class ContractCall:
    """Encoded call handed to the wallet provider."""
    contract: str          # MARKETPLACE | CERTIFICATE
    method: str
    args: tuple
    value_wei: int = 0


def _invalid(msg: str) -> SubmissionRejected:
    return SubmissionRejected(msg, RejectionCause.INVALID_PAYLOAD)


def _to_wei(price: str) -> int:
    try:
        amount = Decimal(str(price))
    except (InvalidOperation, ValueError):
        raise _invalid(f"price is not a number: {price!r}")
    if not amount.is_finite() or amount <= 0:
        raise _invalid(f"price must be positive: {price!r}")
    with localcontext() as ctx:
        ctx.prec = 999
        scaled = amount.scaleb(18)
        if scaled != scaled.to_integral_value():
            raise _invalid(f"price is finer than 1 wei: {price!r}")
    try:
        wei = int(Web3.to_wei(amount, "ether"))
    except ValueError:
        raise _invalid(f"price is out of range: {price!r}")
    if wei <= 0:
        raise _invalid(f"price must be positive: {price!r}")
    return wei


def _require_text(**fields):
    for name, value in fields.items():
        if not isinstance(value, str) or not value.strip():
            raise _invalid(f"{name} is required")


def _require_positive(**fields):
    for name, value in fields.items():
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise _invalid(f"{name} must be a positive integer")


def _order_id_int(order_id: str) -> int:
    try:
        value = int(order_id)
    except (TypeError, ValueError):
        raise _invalid(f"order_id must be numeric: {order_id!r}")
    if value < 0:
        raise _invalid("order_id must not be negative")
    return value


# ============================================================
# PAYLOADS
# ============================================================

@dataclass(frozen=True)
class ListProductPayload:
    name: str
    description: str
    image_url: str
    price: str
    quantity: int
    category: str
    location: str

    def encode(self) -> ContractCall:
        _require_text(
            name=self.name, description=self.description, image_url=self.image_url,
            category=self.category, location=self.location,
        )
        _require_positive(quantity=self.quantity)
        return ContractCall(
            MARKETPLACE, "listProduct",
            (self.name, self.description, self.image_url, _to_wei(self.price),
             self.quantity, self.category, self.location),
        )


@dataclass(frozen=True)
class PurchasePayload:
    product_id: int
    quantity: int
    price: str                 # total price in native unit
    delivery_address: str

    def encode(self) -> ContractCall:
        if not isinstance(self.product_id, int) or self.product_id < 0:
            raise _invalid("product_id must be a non-negative integer")
        _require_positive(quantity=self.quantity)
        _require_text(delivery_address=self.delivery_address)
        return ContractCall(
            MARKETPLACE, "purchaseProduct",
            (self.product_id, self.quantity, self.delivery_address),
            value_wei=_to_wei(self.price),
        )


@dataclass(frozen=True)
class UpdateOrderStatusPayload:
    order_id: str
    status: OrderStatus

    def encode(self) -> ContractCall:
        if self.status not in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            raise _invalid(f"status update only supports Shipped/Delivered, got {self.status.title}")
        return ContractCall(
            MARKETPLACE, "updateOrderStatus",
            (_order_id_int(self.order_id), self.status.value),
        )


@dataclass(frozen=True)
class VerifyDeliveryPayload:
    order_id: str
    proof: str

    def encode(self) -> ContractCall:
        _require_text(proof=self.proof)
        return ContractCall(
            MARKETPLACE, "verifyDelivery",
            (_order_id_int(self.order_id), self.proof),
        )


@dataclass(frozen=True)
class MintCertificatePayload:
    product_id: int
    product_name: str
    is_organic: bool
    recipient: str
    order_id: Optional[str] = None     # Local binding only, not sent on-chain

    def encode(self) -> ContractCall:
        if not isinstance(self.product_id, int) or self.product_id < 0:
            raise _invalid("product_id must be a non-negative integer")
        _require_text(product_name=self.product_name)
        if not Web3.is_address(self.recipient or ""):
            raise _invalid(f"recipient is not a valid address: {self.recipient!r}")
        return ContractCall(
            CERTIFICATE, "mintCertificate",
            (self.product_id, self.product_name, bool(self.is_organic),
             Web3.to_checksum_address(self.recipient)),
        )


Payload = Union[
    ListProductPayload,
    PurchasePayload,
    UpdateOrderStatusPayload,
    VerifyDeliveryPayload,
    MintCertificatePayload,
]

_PAYLOAD_TYPES = {
    IntentKind.LIST_PRODUCT: ListProductPayload,
    IntentKind.PURCHASE: PurchasePayload,
    IntentKind.UPDATE_ORDER_STATUS: UpdateOrderStatusPayload,
    IntentKind.VERIFY_DELIVERY: VerifyDeliveryPayload,
    IntentKind.MINT_CERTIFICATE: MintCertificatePayload,
}


# ============================================================
# INTENT
# ============================================================

@dataclass(frozen=True)
class TransactionIntent:
    """One state-changing operation. Immutable; submitted at most once."""
    kind: IntentKind
    payload: Payload
    intent_id: str = field(default_factory=lambda: uuid.uuid4().hex, compare=False)

    def encode(self) -> ContractCall:
        """Validate the payload for this kind and build the contract call."""
        expected = _PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise _invalid(
                f"{self.kind.value} intent needs {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )
        return self.payload.encode()

    @property
    def order_id(self) -> Optional[str]:
        return getattr(self.payload, "order_id", None)

    # --- constructors ---

    @classmethod
    def list_product(cls, **fields) -> "TransactionIntent":
        return cls(IntentKind.LIST_PRODUCT, ListProductPayload(**fields))

    @classmethod
    def purchase(cls, product_id: int, quantity: int, price: str,
                 delivery_address: str) -> "TransactionIntent":
        return cls(IntentKind.PURCHASE, PurchasePayload(product_id, quantity, price, delivery_address))

    @classmethod
    def update_order_status(cls, order_id: str, status) -> "TransactionIntent":
        return cls(
            IntentKind.UPDATE_ORDER_STATUS,
            UpdateOrderStatusPayload(str(order_id), OrderStatus.parse(status)),
        )

    @classmethod
    def verify_delivery(cls, order_id: str, proof: str) -> "TransactionIntent":
        return cls(IntentKind.VERIFY_DELIVERY, VerifyDeliveryPayload(str(order_id), proof))

    @classmethod
    def mint_certificate(cls, product_id: int, product_name: str, is_organic: bool,
                         recipient: str, order_id: Optional[str] = None) -> "TransactionIntent":
        return cls(
            IntentKind.MINT_CERTIFICATE,
            MintCertificatePayload(product_id, product_name, is_organic, recipient, order_id),
        )
