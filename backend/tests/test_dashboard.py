import pytest

pytestmark = pytest.mark.integration


@pytest.mark.anyio
async def test_overview_counts_paid_revenue_only(client, shop, other_shop, make_product, make_customer, order_payload):
    product = await make_product(shop, sku="D-1", price=10.00, inventory=20)
    low = await make_product(shop, sku="D-2", price=1.00, inventory=3)
    customer = await make_customer(shop)

    r = await client.post("/api/orders", json=order_payload(customer["id"], [(product["id"], 2)]), headers=shop["headers"])
    paid_id = r.json()["order"]["id"]
    await client.post("/api/orders", json=order_payload(customer["id"], [(product["id"], 1), (low["id"], 1)]), headers=shop["headers"])
    await client.patch(f"/api/orders/{paid_id}/payment", json={"paymentStatus": "paid"}, headers=shop["headers"])

    # Noise in another shop must not leak in
    foreign = await make_product(other_shop, sku="D-1", inventory=1)
    foreign_customer = await make_customer(other_shop)
    await client.post("/api/orders", json=order_payload(foreign_customer["id"], [(foreign["id"], 1)]), headers=other_shop["headers"])

    r = await client.get("/api/dashboard/overview", headers=shop["headers"])
    assert r.status_code == 200, r.text
    body = r.json()
    overview = body["overview"]
    assert overview["total_products"] == 2
    assert overview["total_customers"] == 1
    assert overview["total_orders"] == 2
    assert overview["total_revenue"] == 20.00
    assert overview["monthly_orders"] == 2
    assert overview["weekly_revenue"] == 20.00

    assert [p["sku"] for p in body["low_stock_products"]] == ["D-2"]
    top = body["top_selling_products"][0]
    assert top["product_id"] == product["id"]
    assert top["total_sold"] == 3
    assert top["total_revenue"] == 30.00
    assert len(body["recent_orders"]) == 2


@pytest.mark.anyio
async def test_sales_analytics(client, shop, make_product, make_customer, order_payload):
    product = await make_product(shop, sku="A-1", price=7.50, inventory=20)
    customer = await make_customer(shop)
    r = await client.post("/api/orders", json=order_payload(customer["id"], [(product["id"], 2)]), headers=shop["headers"])
    order_id = r.json()["order"]["id"]
    await client.patch(f"/api/orders/{order_id}/payment", json={"paymentStatus": "paid"}, headers=shop["headers"])
    await client.post("/api/orders", json=order_payload(customer["id"], [(product["id"], 1)]), headers=shop["headers"])

    r = await client.get("/api/dashboard/analytics", params={"days": 7}, headers=shop["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["days"] == 7
    assert sum(d["orders"] for d in body["daily_sales"]) == 1
    assert sum(d["revenue"] for d in body["daily_sales"]) == 15.00
    assert body["order_status_breakdown"] == [{"status": "pending", "count": 2}]

    r = await client.get("/api/dashboard/analytics", params={"days": 0}, headers=shop["headers"])
    assert r.status_code == 400
