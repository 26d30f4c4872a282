import pytest

from core.errors import FailureReason
from core.intents import IntentKind
from core.tracker import ConfirmationTracker
from core.transactions import OutcomeStatus, TransactionHandle

from conftest import CONFIRMING, PENDING, chain_error, confirmed

P, C, OK, FAIL = (OutcomeStatus.PENDING, OutcomeStatus.CONFIRMING,
                  OutcomeStatus.CONFIRMED, OutcomeStatus.FAILED)


def _handle(tx_hash="0xabc123"):
    return TransactionHandle(tx_hash, IntentKind.PURCHASE)


async def _statuses(tracker, handle):
    return [o async for o in tracker.observe(handle)]


@pytest.mark.asyncio
async def test_happy_path_sequence(ledger):
    ledger.script(PENDING, CONFIRMING, confirmed(orderId=1))
    outcomes = await _statuses(ConfirmationTracker(ledger), _handle())
    assert [o.status for o in outcomes] == [P, C, OK]
    assert outcomes[-1].result == {"orderId": 1}


@pytest.mark.asyncio
async def test_duplicates_and_regressions_are_dropped(ledger):
    ledger.script(CONFIRMING, PENDING, CONFIRMING, CONFIRMING, confirmed())
    outcomes = await _statuses(ConfirmationTracker(ledger), _handle())
    assert [o.status for o in outcomes] == [P, C, OK]


@pytest.mark.asyncio
async def test_confirming_is_reported_when_ledger_skips_it(ledger):
    ledger.script(PENDING, confirmed())
    outcomes = await _statuses(ConfirmationTracker(ledger), _handle())
    assert [o.status for o in outcomes] == [P, C, OK]


@pytest.mark.asyncio
async def test_reverted_transaction_fails_with_chain_error(ledger):
    ledger.script(CONFIRMING, chain_error())
    outcomes = await _statuses(ConfirmationTracker(ledger), _handle())
    assert [o.status for o in outcomes] == [P, C, FAIL]
    assert outcomes[-1].reason == FailureReason.CHAIN_ERROR


@pytest.mark.asyncio
async def test_no_result_within_window_is_timeout(ledger):
    ledger.script(CONFIRMING, hang=True)
    outcomes = await _statuses(ConfirmationTracker(ledger, timeout=0.05), _handle())
    assert [o.status for o in outcomes] == [P, C, FAIL]
    assert outcomes[-1].reason == FailureReason.TIMEOUT


@pytest.mark.asyncio
async def test_ledger_going_quiet_is_chain_error(ledger):
    ledger.script(PENDING, CONFIRMING)
    outcomes = await _statuses(ConfirmationTracker(ledger), _handle())
    assert outcomes[-1].status == FAIL
    assert outcomes[-1].reason == FailureReason.CHAIN_ERROR


@pytest.mark.asyncio
async def test_nothing_follows_the_terminal_outcome(ledger):
    ledger.script(confirmed(), chain_error(), CONFIRMING)
    outcomes = await _statuses(ConfirmationTracker(ledger), _handle())
    assert [o.status for o in outcomes] == [P, C, OK]


@pytest.mark.asyncio
async def test_handle_cannot_be_observed_twice(ledger):
    ledger.script(confirmed())
    tracker = ConfirmationTracker(ledger)
    handle = _handle()
    await _statuses(tracker, handle)
    with pytest.raises(ValueError):
        tracker.observe(handle)


@pytest.mark.asyncio
async def test_stopping_early_releases_the_handle(ledger):
    ledger.script(CONFIRMING, confirmed())
    tracker = ConfirmationTracker(ledger)
    handle = _handle()

    sequence = tracker.observe(handle)
    first = await sequence.__anext__()
    assert first.status == P
    assert tracker.current(handle).status == P
    assert tracker.in_flight()[0]["tx_hash"] == handle.tx_hash

    await sequence.aclose()
    assert tracker.current(handle) is None
    assert tracker.in_flight() == []


@pytest.mark.asyncio
async def test_resolve_reports_each_outcome(ledger):
    ledger.script(PENDING, CONFIRMING, confirmed(tokenId=9))
    seen = []
    outcome = await ConfirmationTracker(ledger).resolve(_handle(), seen.append)
    assert outcome.confirmed
    assert [o.status for o in seen] == [P, C, OK]
