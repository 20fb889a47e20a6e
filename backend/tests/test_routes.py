"""
HTTP API tests through the Flask test client.
"""


def _create_product(client, **overrides):
    body = {"sku": "SKU-1", "name": "Widget", "price_cents": 1000, "initial_stock": 5}
    body.update(overrides)
    resp = client.post("/api/products", json=body)
    assert resp.status_code == 201, resp.json
    return resp.json["product"]


def _checkout(client, items, headers=None, **extra):
    body = {"items": items, "payment_method": "card"}
    body.update(extra)
    return client.post("/api/checkout", json=body, headers=headers or {})


def test_health(client, db_session):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json["status"] == "healthy"


def test_create_and_get_product(client, db_session):
    product = _create_product(client, category="Tools")
    assert product["stock"] == 5

    resp = client.get(f"/api/products/{product['id']}")
    assert resp.status_code == 200
    assert resp.json["product"]["category"] == "Tools"

    listed = client.get("/api/products?category=Tools").json
    assert listed["count"] == 1


def test_create_product_validation(client, db_session):
    assert client.post("/api/products", json={"sku": "X", "name": "No price"}).status_code == 400
    assert client.post("/api/products", json={"sku": "X", "name": "Float", "price_cents": 9.99}).status_code == 400
    assert client.post("/api/products", json={"sku": "X", "name": "Neg", "price_cents": -1}).status_code == 400
    assert client.post("/api/products", json={"sku": "X", "name": "Extra", "price_cents": 1, "stock": 3}).status_code == 400

    _create_product(client, sku="DUP")
    assert client.post("/api/products", json={"sku": "DUP", "name": "Again", "price_cents": 1}).status_code == 409


def test_unknown_product_is_404(client, db_session):
    resp = client.get("/api/products/424242")
    assert resp.status_code == 404
    assert resp.json["code"] == "product_not_found"


def test_locations(client, db_session):
    resp = client.post("/api/locations", json={"name": "Shop Floor", "address": "1 High St"})
    assert resp.status_code == 201
    assert client.post("/api/locations", json={"name": "Shop Floor"}).status_code == 409
    names = [loc["name"] for loc in client.get("/api/locations").json["items"]]
    assert "Shop Floor" in names


def test_restock_adjust_and_ledger(client, db_session):
    product = _create_product(client, initial_stock=2)
    pid = product["id"]

    resp = client.post("/api/inventory/restock", json={"product_id": pid, "quantity": 10, "note": "PO-9"},
                       headers={"X-Actor-Id": "stock-clerk"})
    assert resp.status_code == 201
    assert resp.json["transaction"]["actor_id"] == "stock-clerk"
    assert resp.json["inventory"]["quantity"] == 12

    resp = client.post("/api/inventory/adjust", json={"product_id": pid, "quantity_delta": -3, "note": "damaged"})
    assert resp.status_code == 201
    assert resp.json["inventory"]["quantity"] == 9

    resp = client.post("/api/inventory/adjust", json={"product_id": pid, "quantity_delta": -50})
    assert resp.status_code == 409
    assert resp.json["code"] == "insufficient_stock"

    assert client.post("/api/inventory/restock", json={"product_id": pid, "quantity": 0}).status_code == 400

    entries = client.get(f"/api/inventory/{pid}/transactions").json["items"]
    assert [e["quantity_delta"] for e in entries] == [-3, 10, 2]

    verify = client.get(f"/api/inventory/{pid}/verify").json
    assert verify["consistent"] is True
    assert verify["ledger_sum"] == 9


def test_low_stock_and_threshold(client, db_session):
    product = _create_product(client, initial_stock=20)
    pid = product["id"]
    assert client.get("/api/inventory/low-stock").json["count"] == 0

    resp = client.put(f"/api/inventory/{pid}/threshold", json={"threshold": 25})
    assert resp.status_code == 200
    assert resp.json["inventory"]["is_low_stock"] is True

    items = client.get("/api/inventory/low-stock").json["items"]
    assert [i["product_id"] for i in items] == [pid]
    assert items[0]["sku"] == "SKU-1"

    inventory = client.get(f"/api/inventory/{pid}").json["inventory"]
    assert inventory["low_stock_threshold"] == 25
    assert inventory["threshold_overridden"] is True


def test_quote(client, db_session):
    a = _create_product(client, sku="A", price_cents=1000, initial_stock=5)
    b = _create_product(client, sku="B", price_cents=2000, initial_stock=1)

    resp = client.post("/api/checkout/quote", json={"items": [
        {"product_id": a["id"], "quantity": 2},
        {"product_id": b["id"], "quantity": 1},
    ]})

    assert resp.status_code == 200
    quote = resp.json["quote"]
    assert (quote["subtotal_cents"], quote["tax_cents"], quote["total_cents"]) == (4000, 200, 4200)


def test_checkout_is_idempotent_per_key(client, db_session):
    product = _create_product(client, initial_stock=3)
    items = [{"product_id": product["id"], "quantity": 2}]

    first = _checkout(client, items, headers={"Idempotency-Key": "abc-123"})
    assert first.status_code == 201
    assert first.json["replayed"] is False
    order = first.json["order"]
    assert order["status"] == "Pending"
    assert order["lines"][0]["product_name"] == "Widget"

    again = _checkout(client, items, headers={"Idempotency-Key": "abc-123"})
    assert again.status_code == 200
    assert again.json["replayed"] is True
    assert again.json["order"]["id"] == order["id"]

    stock = client.get(f"/api/inventory/{product['id']}").json["inventory"]["quantity"]
    assert stock == 1


def test_checkout_rejects_more_than_stock(client, db_session):
    a = _create_product(client, sku="A", initial_stock=1)
    b = _create_product(client, sku="B", initial_stock=1)

    resp = _checkout(client, [
        {"product_id": a["id"], "quantity": 2},
        {"product_id": b["id"], "quantity": 3},
    ])

    assert resp.status_code == 409
    assert resp.json["code"] == "insufficient_stock"
    short = {i["product_id"]: i for i in resp.json["details"]["items"]}
    assert set(short) == {a["id"], b["id"]}
    assert short[b["id"]]["requested_quantity"] == 3
    assert short[b["id"]]["on_hand"] == 1
    assert client.get("/api/orders").json["count"] == 0


def test_checkout_after_last_unit_sold_is_insufficient_stock(client, db_session):
    product = _create_product(client, initial_stock=1)
    items = [{"product_id": product["id"], "quantity": 1}]

    assert _checkout(client, items).status_code == 201

    resp = _checkout(client, items)
    assert resp.status_code == 409
    assert resp.json["code"] == "insufficient_stock"
    assert client.get("/api/orders").json["count"] == 1


def test_checkout_immediate_flag_must_be_boolean(client, db_session):
    product = _create_product(client)
    items = [{"product_id": product["id"], "quantity": 1}]

    resp = _checkout(client, items, immediate="false")
    assert resp.status_code == 400
    assert client.get("/api/orders").json["count"] == 0

    resp = _checkout(client, items, immediate=False)
    assert resp.status_code == 201
    assert resp.json["order"]["status"] == "Pending"


def test_location_default_flag_must_be_boolean(client, db_session):
    resp = client.post("/api/locations", json={"name": "Back Room", "is_default": "yes"})
    assert resp.status_code == 400


def test_checkout_validation(client, db_session):
    product = _create_product(client)
    assert _checkout(client, "not a list").status_code == 400
    assert _checkout(client, [{"product_id": product["id"], "quantity": -1}]).status_code == 400
    assert _checkout(client, [{"product_id": product["id"], "quantity": 1}], payment_method="").status_code == 400
    assert _checkout(client, []).status_code == 400


def test_pos_checkout(client, db_session):
    product = _create_product(client)
    resp = _checkout(client, [{"product_id": product["id"], "quantity": 1}], immediate=True, payment_method="cash")
    assert resp.status_code == 201
    assert resp.json["order"]["status"] == "Delivered"
    assert resp.json["order"]["payment_status"] == "Paid"


def test_order_lifecycle_over_http(client, db_session):
    product = _create_product(client, initial_stock=4)
    order = _checkout(client, [{"product_id": product["id"], "quantity": 3}]).json["order"]
    oid = order["id"]

    resp = client.post(f"/api/orders/{oid}/transition", json={"status": "Shipped"})
    assert resp.status_code == 409
    assert resp.json["code"] == "invalid_transition"
    assert client.get(f"/api/orders/{oid}").json["order"]["status"] == "Pending"

    assert client.post(f"/api/orders/{oid}/transition", json={"status": "Packed"},
                       headers={"X-Actor-Id": "packer-1"}).status_code == 200
    deliveries = client.get("/api/orders/deliveries").json
    assert [o["id"] for o in deliveries["items"]] == [oid]
    assert deliveries["stats"]["Awaiting Dispatch"] == 1

    resp = client.post(f"/api/orders/{oid}/delivery", json={"delivery_status": "Out for Delivery"})
    assert resp.json["order"]["status"] == "Shipped"
    assert resp.json["order"]["tracking_number"].startswith("TRK-")

    resp = client.post(f"/api/orders/{oid}/delivery", json={"delivery_status": "Failed Delivery", "notes": "No answer"})
    assert resp.json["order"]["expected_action"] == "Re-attempt delivery"

    resp = client.post(f"/api/orders/{oid}/transition", json={"status": "Cancelled"})
    assert resp.status_code == 200
    assert resp.json["order"]["status"] == "Cancelled"

    stock = client.get(f"/api/inventory/{product['id']}").json["inventory"]["quantity"]
    assert stock == 4

    history = client.get(f"/api/orders/{oid}/history").json["items"]
    assert [h["status"] for h in history] == ["Pending", "Packed", "Shipped", "Shipped", "Cancelled"]
    assert history[1]["actor_id"] == "packer-1"


def test_order_not_found_and_bad_filters(client, db_session):
    assert client.get("/api/orders/999").status_code == 404
    assert client.post("/api/orders/999/transition", json={"status": "Packed"}).status_code == 404
    assert client.post("/api/orders/999/transition", json={}).status_code == 400
    assert client.get("/api/orders?status=Nope").status_code == 400


def test_product_status_blocks_checkout(client, db_session):
    product = _create_product(client)
    resp = client.patch(f"/api/products/{product['id']}/status", json={"status": "Inactive"})
    assert resp.status_code == 200
    assert client.patch(f"/api/products/{product['id']}/status", json={"status": "Gone"}).status_code == 400

    resp = client.post("/api/checkout/quote", json={"items": [{"product_id": product["id"], "quantity": 1}]})
    assert resp.status_code == 200

    resp = _checkout(client, [{"product_id": product["id"], "quantity": 1}])
    assert resp.status_code == 409
    assert resp.json["code"] == "product_unavailable"
