"""Shared fakes: a scripted wallet provider and a scripted ledger."""

import asyncio

import pytest

from core.errors import FailureReason, LedgerReadError, SubmissionRejected, RejectionCause
from core.ledger import LedgerClient
from core.marketplace import Marketplace
from core.notifier import LogNotifier, NotificationKind
from core.transactions import TransactionOutcome
from core.wallet import Identity, WalletProvider, WalletSession

BUYER = "0x1111111111111111111111111111111111111111"
FARMER = "0x2222222222222222222222222222222222222222"

PENDING = TransactionOutcome.pending()
CONFIRMING = TransactionOutcome.confirming()


def confirmed(**result):
    return TransactionOutcome.succeeded(result)


def chain_error(detail="transaction reverted"):
    return TransactionOutcome.failed(FailureReason.CHAIN_ERROR, detail)


class FakeWallet(WalletProvider):
    """Records every submitted call; hands out sequential tx hashes."""

    def __init__(self, address=BUYER, chain_id=8453):
        self.address = address
        self.chain_id = chain_id
        self.calls = []
        self.reject_with = None

    async def connect(self):
        return Identity(self.address, self.chain_id)

    async def sign_and_submit(self, identity, call):
        if self.reject_with is not None:
            raise self.reject_with
        self.calls.append(call)
        return "0x" + f"{len(self.calls):064x}"

    def get_status(self):
        return {"address": self.address, "tx_count": len(self.calls)}


class ScriptedLedger(LedgerClient):
    """watch() replays the next queued script; read() answers from a dict."""

    def __init__(self):
        self.scripts = []
        self.reads = {}
        self.watched = []

    def script(self, *outcomes, hang=False):
        self.scripts.append((list(outcomes), hang))

    async def read(self, contract_ref, method, args=()):
        key = (method, tuple(args))
        if key not in self.reads:
            raise LedgerReadError(f"{method} failed")
        return self.reads[key]

    async def watch(self, handle):
        self.watched.append(handle)
        outcomes, hang = self.scripts.pop(0)
        for outcome in outcomes:
            await asyncio.sleep(0)
            yield outcome
        if hang:
            await asyncio.sleep(3600)

    def get_explorer_url(self, tx_hash):
        return f"https://explorer.test/tx/{tx_hash}"

    def get_status(self):
        return {"chain": "test", "pending_scripts": len(self.scripts)}


def purchase_script(ledger, order_id=1, product_id=7):
    ledger.script(
        PENDING, CONFIRMING,
        confirmed(orderId=order_id, productId=product_id, buyer=BUYER, farmer=FARMER, timestamp=1000.0),
    )


def errors(notifier):
    return [n for n in notifier.history if n.kind == NotificationKind.ERROR]


def successes(notifier):
    return [n for n in notifier.history if n.kind == NotificationKind.SUCCESS]


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def ledger():
    return ScriptedLedger()


@pytest.fixture
def notifier():
    return LogNotifier()


@pytest.fixture
def session(wallet):
    s = WalletSession(wallet)
    s._identity = Identity(wallet.address, wallet.chain_id)
    return s


@pytest.fixture
def disconnected(wallet):
    return WalletSession(wallet)


@pytest.fixture
def market(ledger, notifier):
    return Marketplace(ledger, notifier, timeout=0.5)


@pytest.fixture
def reject():
    def _make(cause=RejectionCause.DECLINED, msg="User rejected the request"):
        return SubmissionRejected(msg, cause)
    return _make
