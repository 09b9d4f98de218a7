"""
Item routes: create/merge, update, listing with metrics and batch rollups.
"""

from stockbook.models import Company, Item


def _item_body(company, **overrides):
    body = {
        "company_id": company.id,
        "name": "Monitor",
        "status": "Ordered",
        "quantity_in_stock": 3,
        "cost_per_unit_usd_cents": 2_000,
        "selling_price_srd_cents": 15_000,
    }
    body.update(overrides)
    return body


def test_create_ordered_item(client, db_session, company):
    resp = client.post("/api/items", json=_item_body(company))

    assert resp.status_code == 201
    data = resp.get_json()
    assert data["merged"] is False
    assert data["debited_usd_cents"] == 6_000
    assert data["item"]["name"] == "Monitor"
    db_session.expire_all()
    assert db_session.get(Company, company.id).cash_balance_usd_cents == 44_000


def test_create_ordered_item_insufficient_funds(client, db_session, company):
    company.cash_balance_usd_cents = 5_000
    db_session.commit()

    resp = client.post("/api/items", json=_item_body(company))

    assert resp.status_code == 400
    data = resp.get_json()
    assert data["error"] == "Insufficient funds"
    assert data["required"] == 6_000
    assert data["available"] == 5_000
    assert db_session.query(Item).count() == 0


def test_create_merges_into_stocked_item(client, db_session, company, make_item):
    existing = make_item(name="Monitor", quantity_in_stock=10, cost_per_unit_usd_cents=200)

    resp = client.post("/api/items", json=_item_body(
        company, status="ToOrder", quantity_in_stock=5, cost_per_unit_usd_cents=400,
    ))

    assert resp.status_code == 201
    data = resp.get_json()
    assert data["merged"] is True
    assert data["item"]["id"] == existing.id
    assert data["item"]["quantity_in_stock"] == 15
    assert data["item"]["cost_per_unit_usd_cents"] == 267


def test_create_missing_fields(client, db_session, company):
    resp = client.post("/api/items", json={"company_id": company.id, "name": "Thing"})
    assert resp.status_code == 400
    assert "Missing required fields" in resp.get_json()["error"]


def test_create_rejects_bad_status_and_unknown_field(client, db_session, company):
    assert client.post("/api/items", json=_item_body(company, status="Lost")).status_code == 400
    assert client.post("/api/items", json=_item_body(company, colour="red")).status_code == 400


def test_create_unknown_company(client, db_session):
    resp = client.post("/api/items", json={
        "company_id": 404,
        "name": "Ghost",
        "status": "ToOrder",
        "quantity_in_stock": 1,
        "cost_per_unit_usd_cents": 1,
        "selling_price_srd_cents": 1,
    })
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "Company not found"}


def test_list_items_with_metrics_and_rollups(client, db_session, company, item, batch_item):
    resp = client.get(f"/api/items?company_id={company.id}")

    assert resp.status_code == 200
    rows = {row["name"]: row for row in resp.get_json()["items"]}
    assert rows["Wireless Mouse"]["batch_data"] is None
    # 100.00 SRD - 10.00 USD * 5.5
    assert rows["Wireless Mouse"]["profit_per_unit_srd_cents"] == 4_500
    assert rows["Wireless Mouse"]["total_profit_srd_cents"] == 22_500
    assert rows["USB Hub"]["batch_data"]["batch_count"] == 2
    assert rows["USB Hub"]["batch_data"]["has_multiple_locations"] is True


def test_list_items_bad_status(client, db_session):
    assert client.get("/api/items?status=Nope").status_code == 400


def test_get_item(client, db_session, company, item):
    resp = client.get(f"/api/items/{item.id}")
    assert resp.status_code == 200
    assert resp.get_json()["item"]["total_cost_per_unit_usd_cents"] == 1_000

    assert client.get("/api/items/9999").status_code == 404


def test_update_item(client, db_session, company, item):
    resp = client.put(f"/api/items/{item.id}", json={"notes": "Top seller", "selling_price_srd_cents": 9_000})

    assert resp.status_code == 200
    assert resp.get_json()["item"]["notes"] == "Top seller"
    assert resp.get_json()["item"]["selling_price_srd_cents"] == 9_000


def test_update_accepts_date_only_order_date(client, db_session, company, item):
    resp = client.put(f"/api/items/{item.id}", json={"order_date": "2024-03-01", "expected_arrival": "2024-03-20T09:30:00+02:00"})

    assert resp.status_code == 200
    body = resp.get_json()["item"]
    assert body["order_date"] == "2024-03-01T00:00:00Z"
    assert body["expected_arrival"] == "2024-03-20T07:30:00Z"


def test_update_rejects_garbled_date(client, db_session, company, item):
    resp = client.put(f"/api/items/{item.id}", json={"order_date": "01/03/2024"})
    assert resp.status_code == 400


def test_update_batch_item_quantity_rejected(client, db_session, company, batch_item):
    resp = client.put(f"/api/items/{batch_item.id}", json={"quantity_in_stock": 50})

    assert resp.status_code == 400
    db_session.expire_all()
    assert db_session.get(Item, batch_item.id).quantity_in_stock == 7


def test_update_rejects_company_change(client, db_session, company, other_company, item):
    resp = client.put(f"/api/items/{item.id}", json={"company_id": other_company.id})
    assert resp.status_code == 400
