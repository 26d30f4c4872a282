"""
OnchainFarm - main entry point

Reads configuration from the environment (.env supported), builds the
ledger client, wallet session and marketplace controller, and serves
the API.

Usage:
    python main.py              # Start the server
    uvicorn main:app            # Or directly via uvicorn
"""

import os
import re
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from web3 import Web3

# ============================================================
# BOOTSTRAP
# ============================================================

load_dotenv()

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


class _SecretMaskingFilter(logging.Filter):
    """Redact 64-char hex strings (private keys) from all log output."""
    _PATTERN = re.compile(r'(?<![0-9a-fA-F])([0-9a-fA-F]{64})(?![0-9a-fA-F])')

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._PATTERN.sub('[REDACTED]', record.msg)
        if record.args:
            formatted = record.getMessage()
            if self._PATTERN.search(formatted):
                record.msg = self._PATTERN.sub('[REDACTED]', formatted)
                record.args = None
        return True


_mask_filter = _SecretMaskingFilter()
for _h in logging.root.handlers:
    _h.addFilter(_mask_filter)

logger = logging.getLogger("onchainfarm.main")


# ============================================================
# MODULE IMPORTS
# ============================================================

from core.constants import MARKET_RULES, DEFAULT_CHAIN
from core.errors import NotConnected
from core.ledger import Web3Ledger
from core.marketplace import Marketplace
from core.notifier import LogNotifier, WebhookNotifier
from core.wallet import LocalKeyWallet, WalletSession
from api.server import create_app


# ============================================================
# WIRING
# ============================================================

def build_marketplace() -> tuple[Marketplace, WalletSession]:
    """Construct ledger, wallet session and controller from environment."""
    chain = os.getenv("CHAIN", DEFAULT_CHAIN)
    data_dir = Path(os.getenv("DATA_DIR", "data"))

    ledger = Web3Ledger(
        rpc_url=os.getenv("RPC_URL", ""),
        marketplace_address=os.getenv("MARKETPLACE_ADDRESS", ""),
        certificate_address=os.getenv("CERTIFICATE_ADDRESS", ""),
        chain=chain,
        confirmations=int(os.getenv("CONFIRMATIONS", str(MARKET_RULES.REQUIRED_CONFIRMATIONS))),
        poll_interval=float(os.getenv("POLL_INTERVAL_SECONDS", str(MARKET_RULES.POLL_INTERVAL_SECONDS))),
    )

    webhook_url = os.getenv("NOTIFY_WEBHOOK_URL", "")
    notifier = WebhookNotifier(webhook_url) if webhook_url else LogNotifier()

    marketplace = Marketplace(
        ledger,
        notifier,
        timeout=float(os.getenv(
            "CONFIRMATION_TIMEOUT_SECONDS", str(MARKET_RULES.CONFIRMATION_TIMEOUT_SECONDS)
        )),
        data_dir=data_dir,
    )
    marketplace.load_state()

    max_value_wei = Web3.to_wei(os.getenv("MAX_TX_VALUE_ETH", MARKET_RULES.MAX_TX_VALUE_ETH), "ether")
    provider = LocalKeyWallet(os.getenv("WALLET_PRIVATE_KEY", ""), ledger, max_value_wei=max_value_wei)
    session = WalletSession(provider)

    logger.info(f"Marketplace ready on {chain} | data_dir={data_dir}")
    return marketplace, session


def create_onchainfarm_app():
    marketplace, session = build_marketplace()

    @asynccontextmanager
    async def lifespan(app):
        """Connect the wallet at startup; close outbound sessions at shutdown."""
        try:
            await session.connect()
        except NotConnected as e:
            logger.warning(f"Wallet not connected: {e.user_message} - write endpoints will return 409")
        yield
        session.disconnect()
        if isinstance(marketplace.notifier, WebhookNotifier):
            await marketplace.notifier.close()

    app = create_app(marketplace, session)
    app.router.lifespan_context = lifespan
    return app


# ============================================================
# ENTRY POINT
# ============================================================

app = create_onchainfarm_app()

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("DEV", "").lower() in ("1", "true", "yes")

    logger.info(f"Starting server on {host}:{port} (reload={reload})")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=LOG_LEVEL.lower(),
    )
