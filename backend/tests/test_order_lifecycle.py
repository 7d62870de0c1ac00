import pytest
from sqlalchemy import select

from multishop.db.models import AuditLog, Order, Product

pytestmark = pytest.mark.integration


async def _product(session_factory, product_id):
    async with session_factory() as s:
        return await s.get(Product, product_id)


@pytest.fixture
async def placed(client, shop, make_product, make_customer, order_payload):
    """A pending order for 3 units of a product that started with 5 in stock."""
    product = await make_product(shop, sku="P-1", price=10.00, inventory=5)
    customer = await make_customer(shop)
    r = await client.post("/api/orders", json=order_payload(customer["id"], [(product["id"], 3)]), headers=shop["headers"])
    assert r.status_code == 201, r.text
    return {"order": r.json()["order"], "product": product, "customer": customer}


@pytest.mark.anyio
async def test_cancel_restores_inventory_once(client, shop, placed, session_factory):
    order_id = placed["order"]["id"]
    product_id = placed["product"]["id"]

    p = await _product(session_factory, product_id)
    assert p.inventory == 2
    assert p.sales_count == 3

    r = await client.patch(f"/api/orders/{order_id}/cancel", headers=shop["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["order"]["status"] == "cancelled"

    p = await _product(session_factory, product_id)
    assert p.inventory == 5
    assert p.sales_count == 0

    r = await client.patch(f"/api/orders/{order_id}/cancel", headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Order cannot be cancelled"

    p = await _product(session_factory, product_id)
    assert p.inventory == 5
    assert p.sales_count == 0


@pytest.mark.anyio
async def test_cancel_floors_sales_count_at_zero(client, shop, placed, session_factory):
    product_id = placed["product"]["id"]
    async with session_factory() as s:
        p = await s.get(Product, product_id)
        p.sales_count = 1
        await s.commit()

    r = await client.patch(f"/api/orders/{placed['order']['id']}/cancel", headers=shop["headers"])
    assert r.status_code == 200

    p = await _product(session_factory, product_id)
    assert p.inventory == 5
    assert p.sales_count == 0


@pytest.mark.anyio
async def test_cannot_cancel_shipped_order(client, shop, placed, session_factory):
    order_id = placed["order"]["id"]
    for status in ("processing", "shipped"):
        r = await client.patch(f"/api/orders/{order_id}/status", json={"status": status}, headers=shop["headers"])
        assert r.status_code == 200, r.text

    r = await client.patch(f"/api/orders/{order_id}/cancel", headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Order cannot be cancelled"

    p = await _product(session_factory, placed["product"]["id"])
    assert p.inventory == 2


@pytest.mark.anyio
async def test_processing_order_can_be_cancelled(client, shop, placed, session_factory):
    order_id = placed["order"]["id"]
    r = await client.patch(f"/api/orders/{order_id}/status", json={"status": "processing"}, headers=shop["headers"])
    assert r.status_code == 200

    r = await client.patch(f"/api/orders/{order_id}/cancel", headers=shop["headers"])
    assert r.status_code == 200
    p = await _product(session_factory, placed["product"]["id"])
    assert p.inventory == 5


@pytest.mark.anyio
async def test_status_walks_forward_and_stamps_times(client, shop, placed):
    order_id = placed["order"]["id"]
    headers = shop["headers"]

    r = await client.patch(f"/api/orders/{order_id}/status", json={"status": "processing"}, headers=headers)
    assert r.json()["order"]["status"] == "processing"

    r = await client.patch(
        f"/api/orders/{order_id}/status",
        json={"status": "shipped", "trackingNumber": "1Z999"},
        headers=headers,
    )
    order = r.json()["order"]
    assert order["status"] == "shipped"
    assert order["tracking_number"] == "1Z999"
    assert order["shipped_at"] is not None
    assert order["delivered_at"] is None

    r = await client.patch(f"/api/orders/{order_id}/status", json={"status": "delivered"}, headers=headers)
    order = r.json()["order"]
    assert order["status"] == "delivered"
    assert order["delivered_at"] is not None

    r = await client.patch(f"/api/orders/{order_id}/status", json={"status": "refunded"}, headers=headers)
    assert r.json()["order"]["status"] == "refunded"


@pytest.mark.anyio
async def test_illegal_transitions_are_rejected(client, shop, placed):
    order_id = placed["order"]["id"]
    headers = shop["headers"]

    r = await client.patch(f"/api/orders/{order_id}/status", json={"status": "delivered"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Cannot change order status from pending to delivered"

    r = await client.patch(f"/api/orders/{order_id}/status", json={"status": "teleported"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid order status"

    r = await client.get(f"/api/orders/{order_id}", headers=headers)
    assert r.json()["status"] == "pending"


@pytest.mark.anyio
async def test_status_cancelled_goes_through_cancellation(client, shop, placed, session_factory):
    order_id = placed["order"]["id"]
    r = await client.patch(f"/api/orders/{order_id}/status", json={"status": "cancelled"}, headers=shop["headers"])
    assert r.status_code == 200
    assert r.json()["order"]["status"] == "cancelled"

    p = await _product(session_factory, placed["product"]["id"])
    assert p.inventory == 5


@pytest.mark.anyio
async def test_payment_status_stamps_paid_at(client, shop, placed):
    order_id = placed["order"]["id"]
    r = await client.patch(f"/api/orders/{order_id}/payment", json={"paymentStatus": "paid"}, headers=shop["headers"])
    assert r.status_code == 200, r.text
    order = r.json()["order"]
    assert order["payment_status"] == "paid"
    assert order["paid_at"] is not None

    r = await client.patch(f"/api/orders/{order_id}/payment", json={"paymentStatus": "bogus"}, headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid payment status"


@pytest.mark.anyio
async def test_lifecycle_is_audited(client, shop, placed, session_factory):
    order_id = placed["order"]["id"]
    await client.patch(f"/api/orders/{order_id}/cancel", headers=shop["headers"])

    async with session_factory() as s:
        res = await s.execute(
            select(AuditLog.action).where(AuditLog.target_type == "order", AuditLog.target_id == order_id)
        )
        actions = sorted(res.scalars().all())
    assert actions == ["order.cancel", "order.create"]

    r = await client.get("/api/audit/logs", params={"resource": "order", "action": "order"}, headers=shop["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2
    assert body["items"][0]["action"] == "order.cancel"
    assert body["items"][0]["meta"] == {"previous_status": "pending"}


@pytest.mark.anyio
async def test_order_reads_and_filters(client, shop, placed, make_product, make_customer, order_payload):
    other_customer = await make_customer(shop, email="bob@example.com")
    product = await make_product(shop, sku="P-2", price=1.00, inventory=10)
    r = await client.post("/api/orders", json=order_payload(other_customer["id"], [(product["id"], 1)]), headers=shop["headers"])
    second_id = r.json()["order"]["id"]
    await client.patch(f"/api/orders/{second_id}/payment", json={"paymentStatus": "paid"}, headers=shop["headers"])

    r = await client.get("/api/orders", headers=shop["headers"])
    body = r.json()
    assert body["pagination"]["total"] == 2
    assert [o["id"] for o in body["orders"]] == [second_id, placed["order"]["id"]]

    r = await client.get("/api/orders", params={"payment_status": "paid"}, headers=shop["headers"])
    assert [o["id"] for o in r.json()["orders"]] == [second_id]

    r = await client.get("/api/orders", params={"customer_id": placed["customer"]["id"]}, headers=shop["headers"])
    assert [o["id"] for o in r.json()["orders"]] == [placed["order"]["id"]]

    r = await client.get("/api/orders/stats", headers=shop["headers"])
    stats = r.json()
    assert stats["orders"]["total"] == 2
    assert stats["revenue"]["total"] == 1.00

    r = await client.get("/api/orders/999999", headers=shop["headers"])
    assert r.status_code == 404
    assert r.json()["error"] == "Order not found"


@pytest.mark.anyio
async def test_orders_are_tenant_isolated(client, shop, other_shop, placed, session_factory):
    order_id = placed["order"]["id"]
    headers = other_shop["headers"]

    r = await client.get(f"/api/orders/{order_id}", headers=headers)
    assert r.status_code == 404
    r = await client.patch(f"/api/orders/{order_id}/cancel", headers=headers)
    assert r.status_code == 404
    r = await client.get("/api/orders", headers=headers)
    assert r.json()["orders"] == []

    async with session_factory() as s:
        order = await s.get(Order, order_id)
        assert order.status == "pending"
