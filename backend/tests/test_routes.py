"""API routes: request parsing, identity header, error status mapping."""

from datetime import datetime, timedelta, timezone

from helpers import CASHIER_ID, OTHER_USER_ID, user_headers


def _create_product(client, **overrides):
    payload = {"sku": "CAFE-250", "name": "Coffee 250g", "selling_price": "6.50", "opening_stock": 10}
    payload.update(overrides)
    return client.post("/api/products", json=payload, headers=user_headers())


def test_health(client, db_session):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json["status"] == "healthy"


def test_identity_header_is_required(client, db_session):
    assert client.get("/api/products").status_code == 401
    assert client.get("/api/products", headers={"X-User-Id": "abc"}).status_code == 401
    assert client.get("/api/products", headers=user_headers()).status_code == 200


def test_create_and_fetch_product(client, db_session):
    response = _create_product(client)

    assert response.status_code == 201
    product = response.json["product"]
    assert product["stock_quantity"] == 10
    assert product["selling_price"] == "6.50"

    fetched = client.get(f"/api/products/{product['id']}", headers=user_headers())
    assert fetched.status_code == 200
    assert fetched.json["product"]["sku"] == "CAFE-250"


def test_duplicate_sku_is_bad_request(client, db_session):
    _create_product(client)

    response = _create_product(client)

    assert response.status_code == 400
    assert response.json["code"] == "ValidationError"


def test_missing_product_is_404(client, db_session):
    response = client.get("/api/products/999", headers=user_headers())

    assert response.status_code == 404
    assert response.json["code"] == "ProductNotFound"


def test_low_stock_report(client, db_session):
    _create_product(client, sku="LOW", opening_stock=1, min_stock_level=3)
    _create_product(client, sku="OK", opening_stock=30, min_stock_level=3)

    response = client.get("/api/products/low-stock", headers=user_headers())

    assert response.status_code == 200
    assert [p["sku"] for p in response.json["items"]] == ["LOW"]


def test_record_movement_and_read_balance(client, db_session):
    product_id = _create_product(client).json["product"]["id"]

    response = client.post("/api/inventory/movements", headers=user_headers(), json={
        "product_id": product_id, "type": "in", "quantity": 5, "reference": "PO-9",
    })

    assert response.status_code == 201
    movement = response.json["movement"]
    assert (movement["previous_balance"], movement["new_balance"]) == (10, 15)
    assert movement["user_id"] == CASHIER_ID

    balance = client.get(f"/api/inventory/{product_id}/balance", headers=user_headers())
    assert balance.json == {"product_id": product_id, "balance": 15}


def test_out_movement_beyond_stock_is_conflict(client, db_session):
    product_id = _create_product(client).json["product"]["id"]

    response = client.post("/api/inventory/movements", headers=user_headers(), json={
        "product_id": product_id, "type": "out", "quantity": 11,
    })

    assert response.status_code == 409
    assert response.json["code"] == "InsufficientStock"
    assert response.json["details"]["available"] == 10


def test_movement_requires_json_body(client, db_session):
    response = client.post("/api/inventory/movements", headers=user_headers(), data="nope")

    assert response.status_code == 400


def test_adjust_to_counted_level(client, db_session):
    product_id = _create_product(client).json["product"]["id"]

    response = client.post("/api/inventory/adjust", headers=user_headers(), json={
        "product_id": product_id, "new_stock": 4, "reason": "Count",
    })
    unchanged = client.post("/api/inventory/adjust", headers=user_headers(), json={
        "product_id": product_id, "new_stock": 4,
    })

    assert response.status_code == 201
    assert response.json["movement"]["type"] == "adjustment"
    assert unchanged.status_code == 200
    assert unchanged.json["movement"] is None


def test_history_pagination(client, db_session):
    product_id = _create_product(client).json["product"]["id"]
    for _ in range(3):
        client.post("/api/inventory/movements", headers=user_headers(), json={
            "product_id": product_id, "type": "out", "quantity": 1,
        })

    first = client.get(f"/api/inventory/{product_id}/history?limit=3", headers=user_headers())
    second = client.get(
        f"/api/inventory/{product_id}/history?limit=3&cursor={first.json['next_cursor']}",
        headers=user_headers(),
    )

    assert [m["type"] for m in first.json["movements"]] == ["out", "out", "out"]
    assert first.json["next_cursor"] is not None
    assert [m["reason"] for m in second.json["movements"]] == ["Opening balance"]
    assert second.json["next_cursor"] is None


def test_caisse_session_lifecycle(client, db_session):
    opened = client.post("/api/caisse/sessions", headers=user_headers(), json={"opening_amount": "50.00"})
    assert opened.status_code == 201
    session_id = opened.json["session"]["id"]

    again = client.post("/api/caisse/sessions", headers=user_headers(), json={"opening_amount": "10"})
    assert again.status_code == 409
    assert again.json["code"] == "SessionAlreadyActive"

    active = client.get("/api/caisse/active-session", headers=user_headers())
    assert active.json["session"]["id"] == session_id

    cash = client.post(f"/api/caisse/sessions/{session_id}/cash", headers=user_headers(), json={
        "amount": "5.00", "direction": "in", "reason": "Coins",
    })
    assert cash.status_code == 201

    closed = client.put(f"/api/caisse/sessions/{session_id}/close", headers=user_headers(), json={
        "closing_amount": "55.00",
    })
    assert closed.status_code == 200
    assert closed.json["session"]["status"] == "closed"
    assert closed.json["session"]["difference"] == "0.00"
    assert closed.json["summary"]["cash_in"] == "5.00"

    twice = client.put(f"/api/caisse/sessions/{session_id}/close", headers=user_headers(), json={
        "closing_amount": "55.00",
    })
    assert twice.status_code == 409
    assert twice.json["code"] == "SessionAlreadyClosed"


def test_sessions_are_private_to_their_user(client, db_session):
    session_id = client.post(
        "/api/caisse/sessions", headers=user_headers(), json={"opening_amount": "20"},
    ).json["session"]["id"]

    details = client.get(f"/api/caisse/sessions/{session_id}", headers=user_headers(OTHER_USER_ID))
    close = client.put(
        f"/api/caisse/sessions/{session_id}/close",
        headers=user_headers(OTHER_USER_ID),
        json={"closing_amount": "20"},
    )

    assert details.status_code == 404
    assert close.status_code == 404
    own = client.get(f"/api/caisse/sessions/{session_id}", headers=user_headers())
    assert own.status_code == 200
    assert own.json["session"]["id"] == session_id


def test_post_sale_refund_and_fetch(client, db_session):
    product_id = _create_product(client).json["product"]["id"]
    session_id = client.post(
        "/api/caisse/sessions", headers=user_headers(), json={"opening_amount": "100"},
    ).json["session"]["id"]

    posted = client.post("/api/sales", headers=user_headers(), json={
        "items": [{"product_id": product_id, "quantity": 2}],
        "payment_method": "cash",
        "caisse_session_id": session_id,
    })
    assert posted.status_code == 201
    sale = posted.json["sale"]
    assert sale["total_amount"] == "13.00"
    assert sale["status"] == "completed"
    assert len(sale["items"]) == 1

    active = client.get("/api/caisse/active-session", headers=user_headers())
    assert active.json["session"]["current_amount"] == "113.00"

    refunded = client.post(f"/api/sales/{sale['id']}/refund", headers=user_headers(), json={
        "reason": "Wrong size",
    })
    assert refunded.status_code == 201
    assert refunded.json["sale"]["status"] == "refunded"
    assert refunded.json["refund"]["reference"] == f"REFUND-{sale['sale_number']}"

    listed = client.get("/api/sales", headers=user_headers())
    assert listed.json["total"] == 1
    assert client.get(f"/api/inventory/{product_id}/balance", headers=user_headers()).json["balance"] == 10


def test_sale_beyond_stock_is_conflict(client, db_session):
    product_id = _create_product(client, opening_stock=1).json["product"]["id"]

    response = client.post("/api/sales", headers=user_headers(), json={
        "items": [{"product_id": product_id, "quantity": 2}],
        "payment_method": "card",
    })

    assert response.status_code == 409
    assert response.json["code"] == "InsufficientStock"
    assert client.get("/api/sales", headers=user_headers()).json["total"] == 0


def test_unknown_sale_is_404(client, db_session):
    response = client.get("/api/sales/123", headers=user_headers())

    assert response.status_code == 404
    assert response.json["code"] == "SaleNotFound"


def test_malformed_query_integers_are_rejected(client, db_session):
    product_id = _create_product(client).json["product"]["id"]

    history = client.get(f"/api/inventory/{product_id}/history?cursor=abc", headers=user_headers())
    sales = client.get("/api/sales?page=two", headers=user_headers())

    assert history.status_code == 400
    assert history.json["code"] == "ValidationError"
    assert history.json["details"] == {"field": "cursor", "value": "abc"}
    assert sales.status_code == 400


def test_sale_date_filters_honour_utc_offsets(client, db_session):
    product_id = _create_product(client).json["product"]["id"]
    client.post("/api/sales", headers=user_headers(), json={
        "items": [{"product_id": product_id, "quantity": 1}],
        "payment_method": "card",
    })
    plus_two = timezone(timedelta(hours=2))
    now = datetime.now(timezone.utc)

    since_a_minute_ago = client.get("/api/sales", headers=user_headers(), query_string={
        "start_date": (now - timedelta(minutes=1)).astimezone(plus_two).isoformat(),
    })
    until_an_hour_ago = client.get("/api/sales", headers=user_headers(), query_string={
        "end_date": (now - timedelta(hours=1)).astimezone(plus_two).isoformat(),
    })
    malformed = client.get("/api/sales?start_date=yesterday", headers=user_headers())

    assert since_a_minute_ago.json["total"] == 1
    assert until_an_hour_ago.json["total"] == 0
    assert malformed.status_code == 400


def test_movements_across_products(client, db_session):
    first = _create_product(client, sku="A-1").json["product"]["id"]
    second = _create_product(client, sku="B-1").json["product"]["id"]
    client.post("/api/inventory/movements", headers=user_headers(), json={
        "product_id": second, "type": "out", "quantity": 2,
    })

    everything = client.get("/api/inventory/movements", headers=user_headers())
    only_first = client.get(f"/api/inventory/movements?product_id={first}", headers=user_headers())
    outs = client.get("/api/inventory/movements?type=out", headers=user_headers())

    assert [m["product_id"] for m in everything.json["movements"]] == [second, second, first]
    assert [m["product_id"] for m in only_first.json["movements"]] == [first]
    assert only_first.json["filters"] == {"product_id": first}
    assert [m["quantity"] for m in outs.json["movements"]] == [2]


def test_inventory_overview(client, db_session):
    _create_product(client, sku="LOW", opening_stock=2, min_stock_level=5, cost_price="1.50")
    _create_product(client, sku="NONE", opening_stock=0, min_stock_level=1, cost_price="4.00")
    _create_product(client, sku="FULL", opening_stock=10, min_stock_level=1, cost_price="2.00")

    response = client.get("/api/inventory/overview", headers=user_headers())

    assert response.status_code == 200
    overview = response.json
    assert overview["total_products"] == 3
    assert overview["low_stock_products"] == 2
    assert overview["out_of_stock_products"] == 1
    assert overview["total_inventory_value"] == "23.00"
    assert {p["sku"] for p in overview["low_stock"]} == {"LOW", "NONE"}


def test_categories_and_suppliers(client, db_session):
    created = client.post("/api/categories", headers=user_headers(), json={"name": "Boissons"})
    duplicate = client.post("/api/categories", headers=user_headers(), json={"name": "Boissons"})
    supplier = client.post("/api/suppliers", headers=user_headers(), json={"name": "Grossiste Nord"})

    assert created.status_code == 201
    assert duplicate.status_code == 400
    assert supplier.status_code == 201
    category_id = created.json["category"]["id"]
    supplier_id = supplier.json["supplier"]["id"]

    product = _create_product(client, category_id=category_id, supplier_id=supplier_id)
    assert product.status_code == 201

    categories = client.get("/api/categories", headers=user_headers()).json["categories"]
    suppliers = client.get("/api/suppliers", headers=user_headers()).json["suppliers"]
    assert [c["name"] for c in categories] == ["Boissons"]
    assert [s["name"] for s in suppliers] == ["Grossiste Nord"]


def test_customers(client, db_session):
    created = client.post("/api/customers", headers=user_headers(), json={
        "first_name": "Awa", "last_name": "Diallo", "phone": "+221 77 000 00 00",
    })
    client.post("/api/customers", headers=user_headers(), json={"first_name": "Moussa", "last_name": "Ba"})
    invalid = client.post("/api/customers", headers=user_headers(), json={"first_name": "Only"})

    assert created.status_code == 201
    assert invalid.status_code == 400
    customer_id = created.json["customer"]["id"]

    fetched = client.get(f"/api/customers/{customer_id}", headers=user_headers())
    assert fetched.json["customer"]["loyalty_points"] == 0
    assert client.get("/api/customers/999", headers=user_headers()).status_code == 404

    found = client.get("/api/customers?search=diallo", headers=user_headers()).json
    assert [c["id"] for c in found["items"]] == [customer_id]
    assert client.get("/api/customers", headers=user_headers()).json["pagination"]["total"] == 2
