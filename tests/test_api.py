import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from core.errors import RejectionCause
from core.marketplace import Marketplace

from conftest import BUYER, CONFIRMING, FARMER, PENDING, chain_error, confirmed, purchase_script

ORDER = {"product_id": 7, "quantity": 1, "price": "0.025", "delivery_address": "12 Farm Lane"}


@pytest.fixture
def client(market, session):
    return TestClient(create_app(market, session))


def test_health_and_wallet(client):
    assert client.get("/health").json()["wallet_connected"] is True
    assert client.get("/wallet").json() == {"connected": True, "address": BUYER, "chain_id": 8453}


def test_health_reports_wallet_and_ledger(client, ledger):
    purchase_script(ledger)
    client.post("/orders", json=ORDER)
    health = client.get("/health").json()
    assert health["wallet"] == {"address": BUYER, "tx_count": 1}
    assert health["ledger"]["chain"] == "test"
    assert health["orders"]["orders"] == 1
    assert health["in_flight"] == []


def test_tracked_order_links_to_explorer(client, ledger):
    purchase_script(ledger)
    client.post("/orders", json=ORDER)
    order = client.get("/orders/1").json()["order"]
    assert order["explorer_url"] == f"https://explorer.test/tx/0x{1:064x}"


def test_disconnected_wallet_is_conflict(market, disconnected):
    client = TestClient(create_app(market, disconnected))
    assert client.get("/wallet").json()["connected"] is False
    resp = client.post("/orders", json=ORDER)
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Please connect your wallet."


def test_purchase_returns_confirmed_order(client, ledger):
    purchase_script(ledger)
    resp = client.post("/orders", json=ORDER)
    assert resp.status_code == 200
    assert resp.json()["id"] == "1"
    assert resp.json()["status"] == "Ordered"

    tracked = client.get("/orders/1").json()
    assert tracked["source"] == "local"
    assert tracked["history"][0]["event"] == "Order Placed"


@pytest.mark.parametrize("cause, code", [
    (RejectionCause.DECLINED, 400),
    (RejectionCause.PREFLIGHT, 400),
    (RejectionCause.NETWORK, 502),
])
def test_rejections_map_to_status_codes(client, wallet, reject, cause, code):
    wallet.reject_with = reject(cause)
    assert client.post("/orders", json=ORDER).status_code == code


def test_reverted_transaction_is_bad_gateway(client, ledger):
    ledger.script(PENDING, chain_error())
    assert client.post("/orders", json=ORDER).status_code == 502


def test_timeout_is_gateway_timeout(ledger, notifier, session):
    client = TestClient(create_app(Marketplace(ledger, notifier, timeout=0.05), session))
    ledger.script(CONFIRMING, hang=True)
    assert client.post("/orders", json=ORDER).status_code == 504


def test_invalid_transition_is_conflict(client, ledger):
    purchase_script(ledger)
    client.post("/orders", json=ORDER)
    resp = client.post("/orders/1/status", json={"status": "Delivered"})
    assert resp.status_code == 409


def test_status_update_and_history(client, ledger):
    purchase_script(ledger)
    client.post("/orders", json=ORDER)
    ledger.script(confirmed(orderId=1, status=1))
    resp = client.post("/orders/1/status", json={"status": "Shipped"})
    assert resp.status_code == 200
    assert resp.json()["status_label"] == "Shipped"
    assert len(client.get("/transactions").json()) == 0


def test_unknown_order_reads_ledger(client, ledger):
    ledger.reads[("getOrder", (5,))] = (5, 7, FARMER, BUYER, 1, "", 1234)
    assert client.get("/orders/5").json()["order"]["status"] == "Shipped"
    assert client.get("/orders/nope").status_code == 404
    assert client.get("/orders/99").status_code == 502


def test_standalone_certificate_requires_assertion(client, ledger):
    body = {"product_id": 7, "product_name": "Honey", "is_organic": True, "recipient": BUYER}
    assert client.post("/certificates", json=body).status_code == 409

    ledger.script(confirmed(tokenId=11))
    resp = client.post("/certificates", json={**body, "verified": True})
    assert resp.status_code == 200
    assert resp.json()["token_id"] == "11"
    assert len(client.get("/certificates", params={"recipient": BUYER}).json()) == 1


def test_listing_validation(client):
    resp = client.post("/products", json={"name": "x"})
    assert resp.status_code == 422


def test_notifications_feed(client, wallet, reject):
    wallet.reject_with = reject()
    client.post("/orders", json=ORDER)
    feed = client.get("/notifications").json()
    assert [n["kind"] for n in feed] == ["error"]
