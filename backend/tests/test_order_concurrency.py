import asyncio

import pytest
from httpx import AsyncClient, ASGITransport

from multishop.db.models import Order, Product
from multishop.main import app

pytestmark = pytest.mark.integration


@pytest.mark.anyio
async def test_concurrent_placements_never_oversell(shop, make_product, make_customer, order_payload, session_factory):
    product = await make_product(shop, sku="C-1", price=5.00, inventory=5)
    customer = await make_customer(shop)
    payload = order_payload(customer["id"], [(product["id"], 3)])

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c1, \
            AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c2:
        r1, r2 = await asyncio.gather(
            c1.post("/api/orders", json=payload, headers=shop["headers"]),
            c2.post("/api/orders", json=payload, headers=shop["headers"]),
        )

    statuses = sorted([r1.status_code, r2.status_code])
    # The loser either sees the reduced stock or loses the write lock
    assert statuses[0] == 201
    assert statuses[1] in (400, 500)

    async with session_factory() as s:
        p = await s.get(Product, product["id"])
        assert p.inventory == 2
        assert p.sales_count == 3
        orders = (await s.execute(Order.__table__.select())).all()
        assert len(orders) == 1


@pytest.mark.anyio
async def test_concurrent_cancellations_restore_once(client, shop, make_product, make_customer, order_payload, session_factory):
    product = await make_product(shop, sku="C-2", price=5.00, inventory=5)
    customer = await make_customer(shop)
    r = await client.post("/api/orders", json=order_payload(customer["id"], [(product["id"], 3)]), headers=shop["headers"])
    order_id = r.json()["order"]["id"]

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c1, \
            AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c2:
        r1, r2 = await asyncio.gather(
            c1.patch(f"/api/orders/{order_id}/cancel", headers=shop["headers"]),
            c2.patch(f"/api/orders/{order_id}/cancel", headers=shop["headers"]),
        )

    assert [r1.status_code, r2.status_code].count(200) == 1

    async with session_factory() as s:
        p = await s.get(Product, product["id"])
        assert p.inventory == 5
        assert p.sales_count == 0


@pytest.mark.anyio
async def test_reversed_carts_keep_stock_consistent(shop, make_product, make_customer, order_payload, session_factory):
    first = await make_product(shop, sku="C-3", price=4.00, inventory=10)
    second = await make_product(shop, sku="C-4", price=6.00, inventory=10)
    customer = await make_customer(shop)
    forward = order_payload(customer["id"], [(first["id"], 2), (second["id"], 1)])
    backward = order_payload(customer["id"], [(second["id"], 3), (first["id"], 1)])

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c1, \
            AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c2:
        r1, r2 = await asyncio.gather(
            c1.post("/api/orders", json=forward, headers=shop["headers"]),
            c2.post("/api/orders", json=backward, headers=shop["headers"]),
        )

    assert r1.status_code in (201, 500)
    assert r2.status_code in (201, 500)
    placed = [r.json()["order"] for r in (r1, r2) if r.status_code == 201]
    assert placed

    async with session_factory() as s:
        a = await s.get(Product, first["id"])
        b = await s.get(Product, second["id"])
        orders = (await s.execute(Order.__table__.select())).all()
    assert len(orders) == len(placed)
    taken_a = sum(i["quantity"] for o in placed for i in o["items"] if i["product_id"] == first["id"])
    taken_b = sum(i["quantity"] for o in placed for i in o["items"] if i["product_id"] == second["id"])
    assert a.inventory == 10 - taken_a
    assert b.inventory == 10 - taken_b
