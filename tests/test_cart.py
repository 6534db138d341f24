import json
import os

import pytest

from cart import CartStore
from config import CART_STORAGE_KEY

LATTE = {"id": "p-1", "name": "Latte", "price": 5.0, "category": "Coffee", "stock": 10}
BAGEL = {"id": "p-2", "name": "Bagel", "price": 3.0, "category": "Bakery", "stock": 4, "barcode": "777"}


@pytest.fixture
def cart(tmp_path):
    return CartStore(str(tmp_path))


def test_adding_same_product_twice_increments(cart):
    cart.add(LATTE)
    cart.add(LATTE)
    assert len(cart) == 1
    assert cart.get("p-1").quantity == 2


def test_setting_quantity_to_zero_removes_line(cart):
    cart.add(LATTE)
    cart.update_quantity("p-1", 0)
    assert cart.items == []

    cart.add(BAGEL)
    cart.update_quantity("p-2", -3)
    assert cart.get("p-2") is None


def test_update_quantity_and_remove(cart):
    cart.add(LATTE)
    cart.add(BAGEL)
    cart.update_quantity("p-1", 4)
    assert cart.get("p-1").quantity == 4

    cart.remove("p-2")
    assert [line.id for line in cart.items] == ["p-1"]


def test_total_sums_price_times_quantity(cart):
    cart.add(LATTE)
    cart.add(LATTE)
    cart.add(BAGEL)
    assert cart.total() == 13.00


def test_cart_survives_reload(tmp_path, cart):
    cart.add(LATTE)
    cart.add(BAGEL)
    cart.update_quantity("p-2", 3)

    with open(os.path.join(str(tmp_path), f"{CART_STORAGE_KEY}.json")) as f:
        saved = json.load(f)
    assert saved["version"] == 0
    assert [line["id"] for line in saved["state"]["cart"]] == ["p-1", "p-2"]

    reloaded = CartStore(str(tmp_path))
    assert reloaded.get("p-2").quantity == 3
    assert reloaded.get("p-2").barcode == "777"
    assert reloaded.total() == 14.0


def test_clear_is_persisted(tmp_path, cart):
    cart.add(LATTE)
    cart.clear()
    assert CartStore(str(tmp_path)).items == []


def test_unreadable_storage_starts_empty(tmp_path):
    with open(os.path.join(str(tmp_path), f"{CART_STORAGE_KEY}.json"), "w") as f:
        f.write("{not json")
    assert CartStore(str(tmp_path)).items == []


def test_to_order_builds_checkout_payload(cart):
    cart.add(LATTE)
    cart.add(BAGEL)
    cart.add(BAGEL)

    order = cart.to_order("card", customer_id="c-9")
    assert order.total == 11.0
    assert order.payment_method == "card"
    assert order.customer_id == "c-9"
    assert [(line.id, line.quantity, line.stock) for line in order.cart] == [("p-1", 1, 10), ("p-2", 2, 4)]

    payload = order.model_dump(by_alias=True)
    assert payload["paymentMethod"] == "card"
    assert payload["customerId"] == "c-9"
