import pytest

from multishop.db.models import Product

pytestmark = pytest.mark.integration


@pytest.mark.anyio
async def test_product_crud(client, shop, make_category, session_factory):
    category = await make_category(shop, name="Shoes")
    r = await client.post("/api/products", json={
        "name": "Trail Runner",
        "sku": "TR-1",
        "price": 120.5,
        "costPrice": 60,
        "categoryId": category["id"],
        "inventory": 7,
        "tags": ["outdoor"],
    }, headers=shop["headers"])
    assert r.status_code == 201, r.text
    product = r.json()["product"]
    assert product["slug"] == "trail-runner"
    assert product["status"] == "draft"
    assert product["track_inventory"] is True
    assert product["cost_price"] == 60.0
    assert product["category"]["name"] == "Shoes"

    r = await client.get(f"/api/products/{product['id']}", headers=shop["headers"])
    assert r.status_code == 200
    assert r.json()["view_count"] == 1

    r = await client.put(f"/api/products/{product['id']}", json={"status": "active", "isFeatured": True}, headers=shop["headers"])
    assert r.status_code == 200
    assert r.json()["product"]["status"] == "active"
    assert r.json()["product"]["is_featured"] is True

    r = await client.get("/api/products", params={"search": "trail"}, headers=shop["headers"])
    assert r.json()["pagination"]["total"] == 1

    r = await client.delete(f"/api/products/{product['id']}", headers=shop["headers"])
    assert r.status_code == 200
    async with session_factory() as s:
        assert await s.get(Product, product["id"]) is None


@pytest.mark.anyio
async def test_sku_unique_per_tenant(client, shop, other_shop, make_product):
    await make_product(shop, sku="DUP-1")

    existing = await make_product(shop, sku="DUP-2")
    r = await client.post("/api/products", json={
        "name": "Another", "sku": "DUP-1", "price": 1, "categoryId": existing["category_id"],
    }, headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "SKU already exists"

    r = await client.put(f"/api/products/{existing['id']}", json={"sku": "DUP-1"}, headers=shop["headers"])
    assert r.status_code == 400

    # Same SKU in another shop is fine
    await make_product(other_shop, sku="DUP-1")


@pytest.mark.anyio
async def test_product_requires_own_category(client, shop, other_shop, make_category):
    foreign = await make_category(other_shop, name="Theirs")
    r = await client.post("/api/products", json={
        "name": "Mine", "sku": "M-1", "price": 1, "categoryId": foreign["id"],
    }, headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid category"


@pytest.mark.anyio
async def test_ordered_product_cannot_be_deleted(client, shop, make_product, make_customer, order_payload):
    product = await make_product(shop, sku="O-1")
    customer = await make_customer(shop)
    await client.post("/api/orders", json=order_payload(customer["id"], [(product["id"], 1)]), headers=shop["headers"])

    r = await client.delete(f"/api/products/{product['id']}", headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Product has orders; archive it instead"


@pytest.mark.anyio
async def test_bulk_update_uses_whitelist_and_tenant(client, shop, other_shop, make_product, session_factory):
    a = await make_product(shop, sku="B-1")
    b = await make_product(shop, sku="B-2")
    foreign = await make_product(other_shop, sku="B-3")

    r = await client.patch("/api/products/bulk", json={
        "productIds": [a["id"], b["id"], foreign["id"]],
        "updates": {"status": "archived", "is_featured": True},
    }, headers=shop["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["updated"] == 2

    async with session_factory() as s:
        assert (await s.get(Product, a["id"])).status == "archived"
        assert (await s.get(Product, foreign["id"])).status == "active"

    r = await client.patch("/api/products/bulk", json={
        "productIds": [a["id"]],
        "updates": {"inventory": 1000},
    }, headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Fields not allowed in bulk update: inventory"


@pytest.mark.anyio
async def test_products_are_tenant_isolated(client, shop, other_shop, make_product):
    product = await make_product(shop, sku="I-1")
    r = await client.get(f"/api/products/{product['id']}", headers=other_shop["headers"])
    assert r.status_code == 404
    r = await client.put(f"/api/products/{product['id']}", json={"price": 1}, headers=other_shop["headers"])
    assert r.status_code == 404
    r = await client.get("/api/products", headers=other_shop["headers"])
    assert r.json()["products"] == []


@pytest.mark.anyio
async def test_category_tree_and_delete_guards(client, shop, make_category, make_product):
    root = await make_category(shop, name="Apparel", sortOrder=1)
    child = await make_category(shop, name="Shirts", parentId=root["id"])
    await make_category(shop, name="Books", sortOrder=0)

    r = await client.get("/api/categories/tree", headers=shop["headers"])
    assert r.status_code == 200
    tree = r.json()["categories"]
    assert [n["name"] for n in tree] == ["Books", "Apparel"]
    assert [n["name"] for n in tree[1]["children"]] == ["Shirts"]

    r = await client.delete(f"/api/categories/{root['id']}", headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Category has subcategories"

    await make_product(shop, sku="SH-1", category_id=child["id"])
    r = await client.delete(f"/api/categories/{child['id']}", headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Category has products"

    r = await client.post("/api/categories", json={"name": "Apparel"}, headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Slug already exists"


@pytest.mark.anyio
async def test_category_update_and_delete(client, shop, make_category):
    category = await make_category(shop, name="Toys")
    r = await client.put(f"/api/categories/{category['id']}", json={"parentId": category["id"]}, headers=shop["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "A category cannot be its own parent"

    r = await client.put(f"/api/categories/{category['id']}", json={"name": "Games", "isActive": False}, headers=shop["headers"])
    assert r.status_code == 200
    assert r.json()["category"]["name"] == "Games"
    assert r.json()["category"]["is_active"] is False

    r = await client.delete(f"/api/categories/{category['id']}", headers=shop["headers"])
    assert r.status_code == 200
    r = await client.get(f"/api/categories/{category['id']}", headers=shop["headers"])
    assert r.status_code == 404
    assert r.json()["error"] == "Category not found"


@pytest.mark.anyio
async def test_category_parent_loop_is_rejected(client, shop, make_category):
    top = await make_category(shop, name="Outdoor")
    middle = await make_category(shop, name="Camping", parentId=top["id"])
    bottom = await make_category(shop, name="Tents", parentId=middle["id"])

    for new_parent in (middle["id"], bottom["id"]):
        r = await client.put(f"/api/categories/{top['id']}", json={"parentId": new_parent}, headers=shop["headers"])
        assert r.status_code == 400
        assert r.json()["error"] == "A category cannot be its own ancestor"

    r = await client.get("/api/categories/tree", headers=shop["headers"])
    tree = r.json()["categories"]
    assert [n["name"] for n in tree] == ["Outdoor"]
    assert [n["name"] for n in tree[0]["children"]] == ["Camping"]
    assert [n["name"] for n in tree[0]["children"][0]["children"]] == ["Tents"]

    # Moving a subtree under an unrelated branch is still allowed
    other = await make_category(shop, name="Indoor")
    r = await client.put(f"/api/categories/{middle['id']}", json={"parentId": other["id"]}, headers=shop["headers"])
    assert r.status_code == 200
