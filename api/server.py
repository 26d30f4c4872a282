"""
OnchainFarm API Server - FastAPI surface over the Marketplace controller

Endpoints:
- GET  /health                       Heartbeat, wallet + ledger + order book status
- GET  /wallet                       Connected identity (or null)
- POST /products                     List a product on-chain
- GET  /farmers/{address}/products   Product ids listed by a farmer (ledger read)
- POST /orders                       Purchase a product → order (Ordered)
- GET  /orders/{id}                  Track an order (local + history, or ledger snapshot)
- POST /orders/{id}/status           Farmer: mark Shipped / Delivered
- POST /orders/{id}/verify           Buyer: verify delivery with proof
- POST /orders/{id}/certificate      Mint certificate for a verified order
- POST /certificates                 Mint a standalone certificate
- GET  /certificates                 Minted certificates
- GET  /transactions                 In-flight transactions + current state
- GET  /notifications                Recent success/error notifications

Each write endpoint waits for the transaction to resolve and answers
with the confirmed record. This layer owns no lifecycle state.
"""

import os
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from core.errors import (
    FailureReason,
    InvalidTransition,
    LedgerReadError,
    MarketplaceError,
    NotConnected,
    RejectionCause,
    SubmissionRejected,
    TransactionFailed,
)
from core.marketplace import Marketplace
from core.wallet import WalletSession

logger = logging.getLogger("onchainfarm.api")


# ============================================================
# MODELS
# ============================================================

class ListProductRequest(BaseModel):
    name: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10, max_length=2000)
    image_url: str = Field(..., max_length=500)
    price: str = Field(..., max_length=40)             # native unit, e.g. "0.025"
    quantity: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=50)
    location: str = Field(..., min_length=3, max_length=200)


class PurchaseRequest(BaseModel):
    product_id: int = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    price: str = Field(..., max_length=40)
    delivery_address: str = Field(..., min_length=1, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: str                                        # "Shipped" | "Delivered"


class VerifyDeliveryRequest(BaseModel):
    proof: str = Field(..., min_length=1, max_length=2000)


class OrderCertificateRequest(BaseModel):
    recipient: str = Field(..., max_length=64)
    product_name: str = Field(..., min_length=1, max_length=200)
    is_organic: bool = True


class StandaloneCertificateRequest(BaseModel):
    product_id: int = Field(..., ge=0)
    product_name: str = Field(..., min_length=1, max_length=200)
    is_organic: bool
    recipient: str = Field(..., max_length=64)
    verified: bool = False


class IdentityResponse(BaseModel):
    connected: bool
    address: Optional[str] = None
    chain_id: Optional[int] = None


# ============================================================
# ERROR MAPPING
# ============================================================

def http_error(e: MarketplaceError) -> HTTPException:
    if isinstance(e, (NotConnected, InvalidTransition)):
        return HTTPException(409, e.user_message)
    if isinstance(e, SubmissionRejected):
        return HTTPException(502 if e.cause == RejectionCause.NETWORK else 400, e.user_message)
    if isinstance(e, TransactionFailed):
        return HTTPException(504 if e.reason == FailureReason.TIMEOUT else 502, e.user_message)
    if isinstance(e, LedgerReadError):
        return HTTPException(502, e.user_message)
    return HTTPException(500, e.user_message)


# ============================================================
# SERVER FACTORY
# ============================================================

def create_app(marketplace: Marketplace, session: WalletSession) -> FastAPI:
    """Create FastAPI app wired to one marketplace controller + wallet session."""

    app = FastAPI(
        title="OnchainFarm",
        description="Farm marketplace whose orders and certificates live on-chain.",
        version="0.1.0",
    )

    # CORS: allow all in dev, restrict in production via CORS_ORIGINS env var
    cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "wallet_connected": session.is_connected,
            "wallet": session.provider.get_status() if session.provider else {},
            **marketplace.get_status(),
        }

    @app.get("/wallet", response_model=IdentityResponse)
    async def wallet():
        identity = session.identity
        if identity is None:
            return IdentityResponse(connected=False)
        return IdentityResponse(connected=True, address=identity.address, chain_id=identity.chain_id)

    @app.post("/products")
    async def list_product(req: ListProductRequest):
        try:
            return await marketplace.list_product(session, **req.model_dump())
        except MarketplaceError as e:
            raise http_error(e)

    @app.get("/farmers/{address}/products")
    async def farmer_products(address: str):
        try:
            return {"farmer": address, "product_ids": await marketplace.farmer_products(address)}
        except MarketplaceError as e:
            raise http_error(e)

    @app.post("/orders")
    async def purchase(req: PurchaseRequest):
        try:
            order = await marketplace.purchase(session, **req.model_dump())
        except MarketplaceError as e:
            raise http_error(e)
        logger.info(f"ORDER CREATED: {order.id} | product {order.product}")
        return order.to_dict()

    @app.get("/orders/{order_id}")
    async def track_order(order_id: str):
        try:
            tracked = await marketplace.track_order(order_id)
        except MarketplaceError as e:
            raise http_error(e)
        if tracked is None:
            raise HTTPException(404, "Order not found")
        return tracked

    @app.post("/orders/{order_id}/status")
    async def update_status(order_id: str, req: StatusUpdateRequest):
        try:
            order = await marketplace.update_order_status(session, order_id, req.status)
        except MarketplaceError as e:
            raise http_error(e)
        return order.to_dict()

    @app.post("/orders/{order_id}/verify")
    async def verify_delivery(order_id: str, req: VerifyDeliveryRequest):
        try:
            order = await marketplace.verify_delivery(session, order_id, req.proof)
        except MarketplaceError as e:
            raise http_error(e)
        return order.to_dict()

    @app.post("/orders/{order_id}/certificate")
    async def mint_order_certificate(order_id: str, req: OrderCertificateRequest):
        try:
            certificate = await marketplace.mint_certificate(
                session, order_id, req.recipient, req.product_name, req.is_organic
            )
        except MarketplaceError as e:
            raise http_error(e)
        return certificate.to_dict()

    @app.post("/certificates")
    async def mint_standalone(req: StandaloneCertificateRequest):
        try:
            certificate = await marketplace.mint_standalone_certificate(session, **req.model_dump())
        except MarketplaceError as e:
            raise http_error(e)
        return certificate.to_dict()

    @app.get("/certificates")
    async def certificates(recipient: str = ""):
        return [c.to_dict() for c in marketplace.certificates.list_certificates(recipient)]

    @app.get("/transactions")
    async def transactions():
        return marketplace.tracker.in_flight()

    @app.get("/notifications")
    async def notifications(limit: int = 20):
        return marketplace.notifier.recent(min(limit, 200))

    return app
