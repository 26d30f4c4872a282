"""
Ledger Client - Reads & Transaction Watching over web3.py

The ledger is the external system of record. This module only:
- reads view functions (getOrder, getFarmerProducts)
- watches a submitted transaction hash until it is mined + confirmed,
  yielding raw outcomes for the ConfirmationTracker

Design:
- Sync Web3 calls wrapped in run_in_executor() (same as every chain call here)
- Embedded minimal ABI from constants.py
- Transient RPC errors while watching are logged and polling continues;
  the tracker's wait window bounds how long that can go on
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.logs import DISCARD

from .constants import (
    MARKET_RULES,
    MARKETPLACE,
    CERTIFICATE,
    CONTRACT_ABIS,
    DEFAULT_CHAIN,
    get_chain_config,
)
from .errors import FailureReason, LedgerReadError
from .intents import IntentKind
from .transactions import TransactionHandle, TransactionOutcome

logger = logging.getLogger("onchainfarm.ledger")


# Event emitted by each intent kind; its args become outcome.result
EVENT_FOR_KIND = {
    IntentKind.LIST_PRODUCT: (MARKETPLACE, "ProductListed"),
    IntentKind.PURCHASE: (MARKETPLACE, "OrderPlaced"),
    IntentKind.UPDATE_ORDER_STATUS: (MARKETPLACE, "OrderStatusUpdated"),
    IntentKind.VERIFY_DELIVERY: (MARKETPLACE, "DeliveryVerified"),
    IntentKind.MINT_CERTIFICATE: (CERTIFICATE, "CertificateMinted"),
}


class LedgerClient(ABC):
    """Read + watch contract of the external ledger."""

    @abstractmethod
    async def read(self, contract_ref: str, method: str, args: tuple = ()):
        """Call a view function. Raises LedgerReadError."""
        ...

    @abstractmethod
    def watch(self, handle: TransactionHandle) -> AsyncIterator[TransactionOutcome]:
        """Yield raw outcomes for a handle until a terminal one."""
        ...

    def get_explorer_url(self, tx_hash: str) -> str:
        return ""

    def get_status(self) -> dict:
        return {}


class Web3Ledger(LedgerClient):
    """
    web3.py ledger client for one chain.

    Usage:
        ledger = Web3Ledger(rpc_url, marketplace_address, certificate_address, chain="base")
        order = await ledger.read("marketplace", "getOrder", (7,))
    """

    def __init__(
        self,
        rpc_url: str = "",
        marketplace_address: str = "",
        certificate_address: str = "",
        chain: str = DEFAULT_CHAIN,
        confirmations: int = MARKET_RULES.REQUIRED_CONFIRMATIONS,
        poll_interval: float = MARKET_RULES.POLL_INTERVAL_SECONDS,
        w3: Optional[Web3] = None,
    ):
        chain_cfg = get_chain_config(chain)
        self.chain = chain
        self.explorer = chain_cfg["explorer"]
        self.confirmations = max(1, int(confirmations))
        self.poll_interval = poll_interval

        if w3 is None:
            rpc_url = rpc_url or chain_cfg["rpc"]
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": MARKET_RULES.RPC_TIMEOUT_SECONDS}))
        self.w3 = w3

        self._contracts = {}
        for ref, address in ((MARKETPLACE, marketplace_address), (CERTIFICATE, certificate_address)):
            if not address:
                logger.warning(f"No {ref} contract address - {ref} calls disabled")
                continue
            self._contracts[ref] = self.w3.eth.contract(
                address=Web3.to_checksum_address(address), abi=CONTRACT_ABIS[ref]
            )
            logger.info(f"Ledger {chain}: {ref} at {address[:10]}...")

    def contract(self, contract_ref: str):
        """Contract object by reference. Raises KeyError if not configured."""
        if contract_ref not in self._contracts:
            raise KeyError(f"{contract_ref} contract not configured")
        return self._contracts[contract_ref]

    # ============================================================
    # READS
    # ============================================================

    async def read(self, contract_ref: str, method: str, args: tuple = ()):
        try:
            fn = getattr(self.contract(contract_ref).functions, method)(*args)
            return await asyncio.get_running_loop().run_in_executor(None, fn.call)
        except KeyError as e:
            raise LedgerReadError(str(e).strip("'"))
        except (OSError, ValueError, Web3Exception) as e:
            logger.warning(f"Ledger read {contract_ref}.{method}{args} failed: {e}")
            raise LedgerReadError(f"{method} failed: {e}")

    # ============================================================
    # WATCH
    # ============================================================

    def _receipt_or_none(self, tx_hash: str):
        try:
            return self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    def _seen_by_node(self, tx_hash: str) -> bool:
        try:
            return self.w3.eth.get_transaction(tx_hash) is not None
        except TransactionNotFound:
            return False

    def _decode(self, handle: TransactionHandle, receipt) -> dict:
        """Decode the kind's event from the receipt + attach block info."""
        result = {"block_number": receipt["blockNumber"]}
        try:
            block = self.w3.eth.get_block(receipt["blockNumber"])
            result["timestamp"] = float(block["timestamp"])
        except (OSError, ValueError, Web3Exception) as e:
            logger.debug(f"Block timestamp unavailable for {handle.short()}: {e}")
            result["timestamp"] = time.time()

        contract_ref, event_name = EVENT_FOR_KIND[handle.kind]
        if contract_ref in self._contracts:
            event = getattr(self._contracts[contract_ref].events, event_name)()
            logs = event.process_receipt(receipt, errors=DISCARD)
            if logs:
                result.update(dict(logs[0]["args"]))
        return result

    async def watch(self, handle: TransactionHandle) -> AsyncIterator[TransactionOutcome]:
        loop = asyncio.get_running_loop()
        tx_hash = handle.tx_hash

        while True:
            try:
                receipt = await loop.run_in_executor(None, self._receipt_or_none, tx_hash)
                if receipt is None:
                    seen = await loop.run_in_executor(None, self._seen_by_node, tx_hash)
                    yield TransactionOutcome.confirming() if seen else TransactionOutcome.pending()
                elif receipt["status"] != 1:
                    logger.warning(f"TX REVERTED [{self.chain}]: {handle.short()}")
                    yield TransactionOutcome.failed(FailureReason.CHAIN_ERROR, "transaction reverted")
                    return
                else:
                    head = await loop.run_in_executor(None, lambda: self.w3.eth.block_number)
                    depth = head - receipt["blockNumber"] + 1
                    if depth >= self.confirmations:
                        result = await loop.run_in_executor(None, self._decode, handle, receipt)
                        yield TransactionOutcome.succeeded(result)
                        return
                    yield TransactionOutcome.confirming()
            except (OSError, Web3Exception) as e:
                # Transient: keep polling until the tracker's window closes
                logger.warning(f"Watch {handle.short()} RPC error: {e}")

            await asyncio.sleep(self.poll_interval)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{self.explorer}/tx/{tx_hash}"

    def get_status(self) -> dict:
        return {
            "chain": self.chain,
            "contracts": sorted(self._contracts),
            "confirmations": self.confirmations,
            "poll_interval": self.poll_interval,
        }
