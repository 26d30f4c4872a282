from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError

from core.errors import NotConnected, RejectionCause, SubmissionRejected
from core.intents import TransactionIntent
from core.wallet import Identity, LocalKeyWallet, WalletSession

ACCOUNT = Account.create()


def _ledger(balance=10**18, gas=21_000):
    ledger = MagicMock()
    w3 = ledger.w3
    w3.eth.chain_id = 8453
    w3.eth.gas_price = 10
    w3.eth.get_transaction_count.return_value = 0
    w3.eth.estimate_gas.return_value = gas
    w3.eth.get_balance.return_value = balance
    w3.eth.send_raw_transaction.return_value = b"\x12" * 32
    w3.to_hex.side_effect = Web3.to_hex
    fn = ledger.contract.return_value.functions.purchaseProduct.return_value
    fn.build_transaction.side_effect = lambda params: dict(params)
    return ledger


async def _connected(ledger, **kwargs):
    wallet = LocalKeyWallet(ACCOUNT.key.hex(), ledger, **kwargs)
    identity = await wallet.connect()
    return wallet, identity


def _call(price="0.025"):
    return TransactionIntent.purchase(7, 1, price, "12 Farm Lane").encode()


@pytest.mark.asyncio
async def test_connect_derives_identity():
    session = WalletSession(LocalKeyWallet(ACCOUNT.key.hex(), _ledger()))
    identity = await session.connect()
    assert identity == Identity(ACCOUNT.address, 8453)
    assert session.is_connected
    session.disconnect()
    assert session.identity is None


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", "nothex"])
async def test_missing_or_bad_key_is_not_connected(key):
    with pytest.raises(NotConnected):
        await LocalKeyWallet(key, _ledger()).connect()


@pytest.mark.asyncio
async def test_signs_and_sends_with_buffered_gas():
    ledger = _ledger()
    wallet, identity = await _connected(ledger)

    tx_hash = await wallet.sign_and_submit(identity, _call())

    assert tx_hash == "0x" + "12" * 32
    tx = ledger.w3.eth.account.sign_transaction.call_args[0][0]
    assert tx["gas"] == 25_200
    assert tx["value"] == 25_000_000_000_000_000
    assert tx["chainId"] == 8453
    assert wallet.get_status()["tx_count"] == 1


@pytest.mark.asyncio
async def test_value_over_cap_is_declined():
    ledger = _ledger()
    wallet, identity = await _connected(ledger, max_value_wei=10**15)
    with pytest.raises(SubmissionRejected) as exc:
        await wallet.sign_and_submit(identity, _call())
    assert exc.value.cause == RejectionCause.DECLINED
    ledger.w3.eth.send_raw_transaction.assert_not_called()


@pytest.mark.asyncio
async def test_other_identity_is_declined():
    wallet, _ = await _connected(_ledger())
    with pytest.raises(SubmissionRejected) as exc:
        await wallet.sign_and_submit(Identity("0x" + "3" * 40, 8453), _call())
    assert exc.value.cause == RejectionCause.DECLINED


@pytest.mark.asyncio
async def test_unconfigured_contract_fails_preflight():
    ledger = _ledger()
    ledger.contract.side_effect = KeyError("marketplace contract not configured")
    wallet, identity = await _connected(ledger)
    with pytest.raises(SubmissionRejected) as exc:
        await wallet.sign_and_submit(identity, _call())
    assert exc.value.cause == RejectionCause.PREFLIGHT


@pytest.mark.asyncio
async def test_reverting_estimate_fails_preflight():
    ledger = _ledger()
    ledger.w3.eth.estimate_gas.side_effect = ContractLogicError("execution reverted: sold out")
    wallet, identity = await _connected(ledger)
    with pytest.raises(SubmissionRejected) as exc:
        await wallet.sign_and_submit(identity, _call())
    assert exc.value.cause == RejectionCause.PREFLIGHT


@pytest.mark.asyncio
async def test_insufficient_balance_fails_preflight():
    ledger = _ledger(balance=1000)
    wallet, identity = await _connected(ledger)
    with pytest.raises(SubmissionRejected, match="Insufficient balance") as exc:
        await wallet.sign_and_submit(identity, _call())
    assert exc.value.cause == RejectionCause.PREFLIGHT


@pytest.mark.asyncio
async def test_unreachable_rpc_is_network_rejection():
    ledger = _ledger()
    ledger.w3.eth.send_raw_transaction.side_effect = ConnectionError("refused")
    wallet, identity = await _connected(ledger)
    with pytest.raises(SubmissionRejected) as exc:
        await wallet.sign_and_submit(identity, _call())
    assert exc.value.cause == RejectionCause.NETWORK
