import time
from datetime import datetime

from config import Config


def test_simulated_payment_echoes_order_and_amount(client):
    before = int(time.time() * 1000)
    res = client.post("/payment/simulate", json={"orderId": "order-42", "amount": 99.5})
    after = int(time.time() * 1000)

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True

    data = body["data"]
    assert data["order_id"] == "order-42"
    assert data["gross_amount"] == 99.5
    assert data["transaction_status"] == "capture"
    assert data["fraud_status"] == "accept"
    assert data["payment_type"] == "credit_card"

    assert data["transaction_id"].startswith("TXN_")
    assert before <= int(data["transaction_id"][4:]) <= after
    assert datetime.fromisoformat(data["transaction_time"].replace("Z", "+00:00"))


def test_simulated_payment_waits_for_the_delay(client, monkeypatch):
    monkeypatch.setattr(Config, "PAYMENT_DELAY_SECONDS", 0.2)
    start = time.monotonic()
    res = client.post("/payment/simulate", json={"orderId": "order-1", "amount": 10})
    assert res.status_code == 200
    assert time.monotonic() - start >= 0.2


def test_payment_requires_order_and_amount(client):
    assert client.post("/payment/simulate", json={"amount": 10}).status_code == 422
