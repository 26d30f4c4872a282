"""
OnchainFarm Constants - Protocol Rules & Contract Tables

Fixed values the lifecycle core depends on:
- Confirmation/timeout policy for submitted transactions
- Gas estimation buffer and RPC timeout
- Supported networks (RPC, chain id, explorer)
- Minimal ABIs: only the functions and events we call or decode

Nothing here is read from the environment. main.py overrides the
tunable ones (timeout, confirmations, poll interval) at startup.
"""

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class MarketRules:
    """Frozen dataclass = immutable at runtime."""

    # --- CONFIRMATION ---
    CONFIRMATION_TIMEOUT_SECONDS: Final[float] = 120.0   # Wait window before Failed(Timeout)
    REQUIRED_CONFIRMATIONS: Final[int] = 1               # Blocks on top of the inclusion block
    POLL_INTERVAL_SECONDS: Final[float] = 2.0            # Ledger watch poll interval

    # --- GAS ---
    GAS_BUFFER_RATIO: Final[float] = 1.2                 # estimate_gas * 1.2
    RPC_TIMEOUT_SECONDS: Final[int] = 30

    # --- WALLET ---
    MAX_TX_VALUE_ETH: Final[str] = "1.0"                 # Wallet declines above this value

    # --- HISTORY CAP ---
    MAX_NOTIFICATIONS: Final[int] = 200


MARKET_RULES = MarketRules()


# ============================================================
# NETWORKS (same set the storefront wallet modal offers)
# ============================================================

CHAIN_DEFAULTS = {
    "mainnet": {
        "rpc": "https://eth.llamarpc.com",
        "chain_id": 1,
        "explorer": "https://etherscan.io",
        "native_symbol": "ETH",
    },
    "base": {
        "rpc": "https://mainnet.base.org",
        "chain_id": 8453,
        "explorer": "https://basescan.org",
        "native_symbol": "ETH",
    },
    "polygon": {
        "rpc": "https://polygon-rpc.com",
        "chain_id": 137,
        "explorer": "https://polygonscan.com",
        "native_symbol": "POL",
    },
    "optimism": {
        "rpc": "https://mainnet.optimism.io",
        "chain_id": 10,
        "explorer": "https://optimistic.etherscan.io",
        "native_symbol": "ETH",
    },
    "arbitrum": {
        "rpc": "https://arb1.arbitrum.io/rpc",
        "chain_id": 42161,
        "explorer": "https://arbiscan.io",
        "native_symbol": "ETH",
    },
}

DEFAULT_CHAIN = "base"


def get_chain_config(chain: str) -> dict:
    """Look up a network by key. Raises KeyError for unknown chains."""
    if chain not in CHAIN_DEFAULTS:
        raise KeyError(f"Unsupported chain: {chain} (known: {sorted(CHAIN_DEFAULTS)})")
    return CHAIN_DEFAULTS[chain]


# ============================================================
# CONTRACT REFERENCES
# ============================================================

MARKETPLACE = "marketplace"
CERTIFICATE = "certificate"


# ============================================================
# MINIMAL ABI - marketplace
# ============================================================

MARKETPLACE_ABI = [
    # listProduct(name, description, imageUrl, price, quantity, category, location)
    {
        "inputs": [
            {"name": "name", "type": "string"},
            {"name": "description", "type": "string"},
            {"name": "imageUrl", "type": "string"},
            {"name": "price", "type": "uint256"},
            {"name": "quantity", "type": "uint256"},
            {"name": "category", "type": "string"},
            {"name": "location", "type": "string"},
        ],
        "name": "listProduct",
        "outputs": [{"name": "productId", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    # purchaseProduct(productId, quantity, deliveryAddress) payable
    {
        "inputs": [
            {"name": "productId", "type": "uint256"},
            {"name": "quantity", "type": "uint256"},
            {"name": "deliveryAddress", "type": "string"},
        ],
        "name": "purchaseProduct",
        "outputs": [{"name": "orderId", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function",
    },
    # updateOrderStatus(orderId, status) - farmer marks Shipped / Delivered
    {
        "inputs": [
            {"name": "orderId", "type": "uint256"},
            {"name": "status", "type": "uint8"},
        ],
        "name": "updateOrderStatus",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    # verifyDelivery(orderId, proof) - buyer confirms receipt
    {
        "inputs": [
            {"name": "orderId", "type": "uint256"},
            {"name": "proof", "type": "string"},
        ],
        "name": "verifyDelivery",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    # getOrder(orderId) → (id, product, farmer, buyer, status, deliveryProof, timestamp)
    {
        "inputs": [{"name": "orderId", "type": "uint256"}],
        "name": "getOrder",
        "outputs": [
            {"name": "id", "type": "uint256"},
            {"name": "product", "type": "string"},
            {"name": "farmer", "type": "address"},
            {"name": "buyer", "type": "address"},
            {"name": "status", "type": "uint8"},
            {"name": "deliveryProof", "type": "string"},
            {"name": "timestamp", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    # getFarmerProducts(farmer) → uint256[]
    {
        "inputs": [{"name": "farmer", "type": "address"}],
        "name": "getFarmerProducts",
        "outputs": [{"name": "", "type": "uint256[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "productId", "type": "uint256"},
            {"indexed": True, "name": "farmer", "type": "address"},
            {"indexed": False, "name": "price", "type": "uint256"},
        ],
        "name": "ProductListed",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "orderId", "type": "uint256"},
            {"indexed": True, "name": "productId", "type": "uint256"},
            {"indexed": False, "name": "buyer", "type": "address"},
            {"indexed": False, "name": "farmer", "type": "address"},
            {"indexed": False, "name": "quantity", "type": "uint256"},
        ],
        "name": "OrderPlaced",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "orderId", "type": "uint256"},
            {"indexed": False, "name": "status", "type": "uint8"},
        ],
        "name": "OrderStatusUpdated",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "orderId", "type": "uint256"},
            {"indexed": False, "name": "proof", "type": "string"},
        ],
        "name": "DeliveryVerified",
        "type": "event",
    },
]


# ============================================================
# MINIMAL ABI - certificate NFT
# ============================================================

CERTIFICATE_ABI = [
    {
        "inputs": [
            {"name": "productId", "type": "uint256"},
            {"name": "productName", "type": "string"},
            {"name": "isOrganic", "type": "bool"},
            {"name": "recipient", "type": "address"},
        ],
        "name": "mintCertificate",
        "outputs": [{"name": "tokenId", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "tokenId", "type": "uint256"},
            {"indexed": True, "name": "productId", "type": "uint256"},
            {"indexed": False, "name": "recipient", "type": "address"},
        ],
        "name": "CertificateMinted",
        "type": "event",
    },
]


CONTRACT_ABIS = {
    MARKETPLACE: MARKETPLACE_ABI,
    CERTIFICATE: CERTIFICATE_ABI,
}
