from unittest.mock import MagicMock

import pytest
from web3.exceptions import TransactionNotFound

from core.constants import CERTIFICATE, MARKETPLACE
from core.errors import FailureReason, LedgerReadError
from core.intents import IntentKind
from core.ledger import Web3Ledger
from core.transactions import OutcomeStatus, TransactionHandle

MARKET_ADDR = "0x" + "a" * 40


def _ledger(confirmations=1):
    w3 = MagicMock()
    ledger = Web3Ledger(marketplace_address=MARKET_ADDR, confirmations=confirmations,
                        poll_interval=0, w3=w3)
    return ledger, w3


async def _take(ledger, handle, n):
    stream = ledger.watch(handle)
    outcomes = [await stream.__anext__() for _ in range(n)]
    await stream.aclose()
    return outcomes


HANDLE = TransactionHandle("0x" + "ab" * 32, IntentKind.PURCHASE)


def test_only_configured_contracts_are_available():
    ledger, _ = _ledger()
    assert ledger.contract(MARKETPLACE) is not None
    with pytest.raises(KeyError):
        ledger.contract(CERTIFICATE)
    assert ledger.get_status()["contracts"] == [MARKETPLACE]


@pytest.mark.asyncio
async def test_unknown_then_mined_transaction():
    ledger, w3 = _ledger()
    receipt = {"status": 1, "blockNumber": 10}
    w3.eth.get_transaction_receipt.side_effect = [TransactionNotFound("not yet"), receipt]
    w3.eth.get_transaction.side_effect = TransactionNotFound("unknown")
    w3.eth.block_number = 10
    w3.eth.get_block.return_value = {"timestamp": 1700}
    event = w3.eth.contract.return_value.events.OrderPlaced.return_value
    event.process_receipt.return_value = [{"args": {"orderId": 3, "productId": 7}}]

    pending, done = await _take(ledger, HANDLE, 2)

    assert pending.status == OutcomeStatus.PENDING
    assert done.confirmed
    assert done.result == {"block_number": 10, "timestamp": 1700.0, "orderId": 3, "productId": 7}


@pytest.mark.asyncio
async def test_seen_but_unmined_is_confirming():
    ledger, w3 = _ledger()
    w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not yet")
    w3.eth.get_transaction.return_value = {"hash": HANDLE.tx_hash}
    (outcome,) = await _take(ledger, HANDLE, 1)
    assert outcome.status == OutcomeStatus.CONFIRMING


@pytest.mark.asyncio
async def test_waits_for_required_depth():
    ledger, w3 = _ledger(confirmations=3)
    w3.eth.get_transaction_receipt.return_value = {"status": 1, "blockNumber": 10}
    w3.eth.block_number = 10
    (outcome,) = await _take(ledger, HANDLE, 1)
    assert outcome.status == OutcomeStatus.CONFIRMING


@pytest.mark.asyncio
async def test_reverted_receipt_is_chain_error():
    ledger, w3 = _ledger()
    w3.eth.get_transaction_receipt.return_value = {"status": 0, "blockNumber": 10}
    (outcome,) = await _take(ledger, HANDLE, 1)
    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.reason == FailureReason.CHAIN_ERROR


@pytest.mark.asyncio
async def test_transient_rpc_error_keeps_polling():
    ledger, w3 = _ledger()
    w3.eth.get_transaction_receipt.side_effect = [OSError("connection reset"),
                                                  {"status": 0, "blockNumber": 10}]
    (outcome,) = await _take(ledger, HANDLE, 1)
    assert outcome.status == OutcomeStatus.FAILED
    assert w3.eth.get_transaction_receipt.call_count == 2


@pytest.mark.asyncio
async def test_read_calls_view_function():
    ledger, w3 = _ledger()
    functions = w3.eth.contract.return_value.functions
    functions.getFarmerProducts.return_value.call.return_value = [1, 2]
    assert await ledger.read(MARKETPLACE, "getFarmerProducts", ("0xfarmer",)) == [1, 2]
    functions.getFarmerProducts.assert_called_with("0xfarmer")


@pytest.mark.asyncio
async def test_read_failures_become_ledger_read_errors():
    ledger, w3 = _ledger()
    w3.eth.contract.return_value.functions.getOrder.return_value.call.side_effect = OSError("down")
    with pytest.raises(LedgerReadError):
        await ledger.read(MARKETPLACE, "getOrder", (1,))
    with pytest.raises(LedgerReadError, match="not configured"):
        await ledger.read(CERTIFICATE, "mintCertificate")


def test_explorer_url():
    ledger, _ = _ledger()
    assert ledger.get_explorer_url("0xabc") == "https://basescan.org/tx/0xabc"
