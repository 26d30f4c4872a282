"""
Wallet - Identity, Connection Guard & Signing Providers

The wallet is the ONLY writer of the connected identity. The lifecycle
core reads it through an injected WalletSession and never stores it.

    session = WalletSession(LocalKeyWallet(private_key, ledger))
    await session.connect()
    identity = require_identity(session)       # raises NotConnected

Providers report rejection distinctly from network failure:
- DECLINED   wallet refused to sign (value cap, wrong account)
- PREFLIGHT  gas estimate reverted / insufficient balance / node refused
- NETWORK    RPC unreachable before the transaction was accepted
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from .constants import MARKET_RULES
from .errors import NotConnected, SubmissionRejected, RejectionCause
from .intents import ContractCall

logger = logging.getLogger("onchainfarm.wallet")


@dataclass(frozen=True)
class Identity:
    """The connected wallet."""
    address: str
    chain_id: int = 0

    def short(self) -> str:
        return f"{self.address[:10]}..."


# ============================================================
# PROVIDER - abstract base for signing backends
# ============================================================

class WalletProvider(ABC):
    """Signs and submits contract calls for one account."""

    @abstractmethod
    async def connect(self) -> Identity:
        """Establish the account identity. Raises NotConnected on failure."""
        ...

    @abstractmethod
    async def sign_and_submit(self, identity: Identity, call: ContractCall) -> str:
        """
        Sign and broadcast exactly one transaction.
        Returns the tx hash (0x-prefixed hex) once the node accepted it.
        Raises SubmissionRejected (with a cause) if it was not accepted.
        """
        ...

    def get_status(self) -> dict:
        return {}


# ============================================================
# SESSION + CONNECTION GUARD
# ============================================================

class WalletSession:
    """Holds the provider and the identity it established (if any)."""

    def __init__(self, provider: Optional[WalletProvider] = None):
        self.provider = provider
        self._identity: Optional[Identity] = None

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_connected(self) -> bool:
        return self._identity is not None

    async def connect(self) -> Identity:
        if self.provider is None:
            raise NotConnected("No wallet provider configured.")
        self._identity = await self.provider.connect()
        logger.info(f"Wallet connected: {self._identity.short()} (chain {self._identity.chain_id})")
        return self._identity

    def disconnect(self):
        if self._identity:
            logger.info(f"Wallet disconnected: {self._identity.short()}")
        self._identity = None


def require_identity(session: Optional[WalletSession]) -> Identity:
    """Connection Guard: every state-changing operation starts here."""
    if session is None or session.identity is None or session.provider is None:
        raise NotConnected()
    return session.identity


# ============================================================
# LOCAL KEY WALLET - eth-account signer over web3.py
# ============================================================

class LocalKeyWallet(WalletProvider):
    """
    Signs with a private key held by this process.

    Reuses the ledger's Web3 connection and contracts. Sync web3 calls
    are run in the default executor so the event loop never blocks.
    Declines any call whose attached value exceeds max_value_wei.
    """

    def __init__(self, private_key: str, ledger, max_value_wei: Optional[int] = None):
        self._private_key = private_key
        self._ledger = ledger
        if max_value_wei is None:
            max_value_wei = Web3.to_wei(MARKET_RULES.MAX_TX_VALUE_ETH, "ether")
        self._max_value_wei = int(max_value_wei)
        self._address = ""
        self._tx_count = 0

    async def connect(self) -> Identity:
        if not self._private_key:
            raise NotConnected("No wallet key configured.")
        try:
            self._address = Account.from_key(self._private_key).address
        except (ValueError, TypeError) as e:
            # Never echo the key itself
            logger.error(f"Invalid wallet private key: {type(e).__name__}")
            raise NotConnected("Wallet key is invalid.")

        w3 = self._ledger.w3
        try:
            chain_id = await asyncio.get_running_loop().run_in_executor(None, lambda: w3.eth.chain_id)
        except OSError as e:
            logger.warning(f"Wallet connect: RPC unreachable: {e}")
            raise NotConnected("Cannot reach the network RPC.")
        return Identity(address=self._address, chain_id=int(chain_id))

    async def sign_and_submit(self, identity: Identity, call: ContractCall) -> str:
        if identity.address.lower() != self._address.lower():
            raise SubmissionRejected(
                f"Wallet is not {identity.short()}", RejectionCause.DECLINED
            )
        if call.value_wei > self._max_value_wei:
            raise SubmissionRejected(
                f"Value {call.value_wei} wei exceeds wallet cap {self._max_value_wei} wei",
                RejectionCause.DECLINED,
            )

        w3 = self._ledger.w3
        try:
            contract = self._ledger.contract(call.contract)
        except KeyError:
            raise SubmissionRejected(f"{call.contract} contract not configured", RejectionCause.PREFLIGHT)
        tx_fn = getattr(contract.functions, call.method)(*call.args)

        def _execute() -> str:
            # Build transaction
            try:
                tx = tx_fn.build_transaction({
                    "from": self._address,
                    "nonce": w3.eth.get_transaction_count(self._address),
                    "gasPrice": w3.eth.gas_price,
                    "chainId": identity.chain_id,
                    "value": call.value_wei,
                })
            except OSError as e:
                raise SubmissionRejected(f"Network error: {e}", RejectionCause.NETWORK)

            # Preflight: gas estimate + 20% buffer, then balance check
            try:
                gas_estimate = w3.eth.estimate_gas(tx)
                balance = w3.eth.get_balance(self._address)
            except OSError as e:
                raise SubmissionRejected(f"Network error: {e}", RejectionCause.NETWORK)
            except (ContractLogicError, ValueError, Web3Exception) as e:
                raise SubmissionRejected(f"Preflight failed: {e}", RejectionCause.PREFLIGHT)

            tx["gas"] = int(gas_estimate * MARKET_RULES.GAS_BUFFER_RATIO)
            needed = call.value_wei + tx["gas"] * tx["gasPrice"]
            if balance < needed:
                raise SubmissionRejected(
                    f"Insufficient balance: have {balance} wei, need {needed} wei",
                    RejectionCause.PREFLIGHT,
                )

            # Sign and send (no receipt wait - the tracker owns that)
            signed = w3.eth.account.sign_transaction(tx, self._private_key)
            try:
                tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
            except OSError as e:
                raise SubmissionRejected(f"Network error: {e}", RejectionCause.NETWORK)
            except (ValueError, Web3Exception) as e:
                raise SubmissionRejected(f"Node refused transaction: {e}", RejectionCause.PREFLIGHT)
            return w3.to_hex(tx_hash)

        tx_hash = await asyncio.get_running_loop().run_in_executor(None, _execute)
        self._tx_count += 1
        return tx_hash

    def get_status(self) -> dict:
        return {
            "address": self._address[:10] + "..." if self._address else "",
            "tx_count": self._tx_count,
            "max_value_wei": self._max_value_wei,
        }
