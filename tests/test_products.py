import os

from config import Config


def test_create_then_list_returns_same_fields(client, create_product):
    created = create_product(name="Kopi Susu", price=18.75, category="Drinks", stock=40)

    res = client.get("/products")
    assert res.status_code == 200
    [listed] = [p for p in res.json() if p["id"] == created["id"]]
    assert listed["name"] == "Kopi Susu"
    assert listed["price"] == 18.75
    assert listed["category"] == "Drinks"
    assert listed["stock"] == 40
    assert listed["barcode"] is None


def test_list_is_sorted_by_name(client, create_product):
    for name in ["Teh Tarik", "Americano", "Latte"]:
        create_product(name=name)

    names = [p["name"] for p in client.get("/products").json()]
    assert names == ["Americano", "Latte", "Teh Tarik"]


def test_search_matches_name_category_and_barcode(client, create_product):
    create_product(name="Croissant", category="Bakery", barcode="899100")
    create_product(name="Flat White", category="Coffee", barcode="899200")

    assert [p["name"] for p in client.get("/products", params={"search": "bak"}).json()] == ["Croissant"]
    assert [p["name"] for p in client.get("/products", params={"search": "8992"}).json()] == ["Flat White"]
    assert [p["name"] for p in client.get("/products", params={"search": "WHITE"}).json()] == ["Flat White"]


def test_get_product_by_id(client, create_product):
    created = create_product()
    res = client.get(f"/products/{created['id']}")
    assert res.status_code == 200
    assert res.json()["name"] == created["name"]

    missing = client.get("/products/does-not-exist")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Product not found"}


def test_partial_update_keeps_other_fields(client, create_product):
    created = create_product(name="Matcha", price=20, category="Drinks", stock=5, barcode="123")

    res = client.patch(f"/products/{created['id']}", json={"stock": 12})
    assert res.status_code == 200
    body = res.json()
    assert body["stock"] == 12
    assert (body["name"], body["price"], body["category"], body["barcode"]) == ("Matcha", 20, "Drinks", "123")


def test_update_rejects_null_for_required_field(client, create_product):
    created = create_product()
    res = client.patch(f"/products/{created['id']}", json={"name": None})
    assert res.status_code == 422
    assert res.json()["error"] == "Invalid request body"


def test_update_unknown_product_is_404(client):
    res = client.patch("/products/nope", json={"stock": 1})
    assert res.status_code == 404


def test_invalid_payload_is_rejected(client):
    res = client.post("/products", json={"name": "Free", "price": 0, "category": "Misc", "stock": 1})
    assert res.status_code == 422
    assert res.json()["details"][0]["loc"][-1] == "price"

    res = client.post("/products", json={"name": "Broken", "price": 3, "category": "Misc", "stock": -1})
    assert res.status_code == 422


def test_delete_removes_from_list(client, create_product):
    created = create_product(name="Old Stock")
    keep = create_product(name="Fresh Stock")

    res = client.delete(f"/products/{created['id']}")
    assert res.status_code == 200
    assert res.json() == {"success": True}

    ids = [p["id"] for p in client.get("/products").json()]
    assert created["id"] not in ids
    assert keep["id"] in ids

    assert client.delete(f"/products/{created['id']}").status_code == 404


def test_delete_of_sold_product_reports_store_failure(client, create_product, cart_line):
    product = create_product(stock=10)
    order = {"cart": [cart_line(product, 1)], "total": product["price"], "paymentMethod": "cash"}
    assert client.post("/orders", json=order).status_code == 200

    res = client.delete(f"/products/{product['id']}")
    assert res.status_code == 500
    body = res.json()
    assert body["error"] == "Failed to delete product"
    assert "FOREIGN KEY" in body["details"].upper()

    assert product["id"] in [p["id"] for p in client.get("/products").json()]


def test_upload_product_image(client, create_product):
    created = create_product()
    res = client.post(
        f"/products/{created['id']}/image",
        files={"image": ("beans.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
    )
    assert res.status_code == 200
    image_url = res.json()["image_url"]
    assert image_url.startswith("/static/images/") and image_url.endswith(".png")
    assert os.path.exists(os.path.join(Config.UPLOAD_DIR, os.path.basename(image_url)))

    served = client.get(image_url)
    assert served.status_code == 200
    assert served.content == b"\x89PNG\r\n\x1a\nfake"


def test_upload_rejects_non_images(client, create_product):
    created = create_product()
    res = client.post(
        f"/products/{created['id']}/image",
        files={"image": ("notes.txt", b"hello", "text/plain")},
    )
    assert res.status_code == 400
    assert res.json()["error"] == "Only image files can be uploaded"


def test_mutations_are_logged_under_module_logger(client, create_product, caplog):
    caplog.set_level("INFO", logger="main")
    create_product(name="Matcha")

    messages = [r.getMessage() for r in caplog.records if r.name == "main"]
    assert "Creating product: Matcha" in messages
