import os
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Must be set before the application modules read their settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["APP_ENV"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from multishop.main import app
from multishop.core.rate_limit_config import rate_limit_settings
from multishop.db.database import Base, get_db


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def disable_rate_limiting_for_tests():
    rate_limit_settings.ENABLED = False


@pytest.fixture(scope="session")
async def test_engine(tmp_path_factory):
    # On-disk file so request sessions and test sessions share one database
    db_file = tmp_path_factory.mktemp("db") / "multishop_test.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_file}",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="session")
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="session", autouse=True)
async def override_get_db_for_app(anyio_backend, session_factory):
    """Route every request-scoped session to the test engine."""

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
async def clean_tables(anyio_backend, test_engine):
    """Ensure DB is empty before each test by deleting from all tables (keep schema intact)."""
    async with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    yield


@pytest.fixture
async def test_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def register_shop(client: AsyncClient, subdomain: str, email: str, password: str = "Password123!") -> dict:
    r = await client.post("/api/auth/register", json={
        "email": email,
        "password": password,
        "firstName": "Shop",
        "lastName": "Owner",
        "tenantName": f"{subdomain.title()} Store",
        "subdomain": subdomain,
    })
    assert r.status_code == 201, r.text
    body = r.json()
    return {
        "token": body["token"],
        "headers": {"Authorization": f"Bearer {body['token']}"},
        "tenant": body["tenant"],
        "user": body["user"],
    }


@pytest.fixture
def register(client):
    async def _register(subdomain: str, email: str, password: str = "Password123!") -> dict:
        return await register_shop(client, subdomain, email, password)
    return _register


@pytest.fixture
async def shop(client):
    return await register_shop(client, "acme", "owner@acme.example.com")


@pytest.fixture
async def other_shop(client):
    return await register_shop(client, "globex", "owner@globex.example.com")


@pytest.fixture
def make_category(client):
    async def _make(shop: dict, name: str = "General", **fields) -> dict:
        r = await client.post("/api/categories", json={"name": name, **fields}, headers=shop["headers"])
        assert r.status_code == 201, r.text
        return r.json()["category"]
    return _make


@pytest.fixture
def make_product(client, make_category):
    async def _make(shop: dict, sku: str = "SKU-1", price: float = 10.0, inventory: int = 5, **fields) -> dict:
        category_id = fields.pop("category_id", None)
        if category_id is None:
            category_id = (await make_category(shop, name=f"Category {sku}"))["id"]
        payload = {
            "name": fields.pop("name", f"Product {sku}"),
            "sku": sku,
            "price": price,
            "inventory": inventory,
            "categoryId": category_id,
            "status": fields.pop("status", "active"),
            **fields,
        }
        r = await client.post("/api/products", json=payload, headers=shop["headers"])
        assert r.status_code == 201, r.text
        return r.json()["product"]
    return _make


@pytest.fixture
def make_customer(client):
    async def _make(shop: dict, email: str = "jane@example.com") -> dict:
        r = await client.post("/api/customers", json={
            "email": email,
            "firstName": "Jane",
            "lastName": "Doe",
        }, headers=shop["headers"])
        assert r.status_code == 201, r.text
        return r.json()["customer"]
    return _make


@pytest.fixture
def order_payload():
    def _payload(customer_id: int, items: list, **extra) -> dict:
        return {
            "customerId": customer_id,
            "items": [{"productId": pid, "quantity": qty} for pid, qty in items],
            "billingAddress": {"line1": "1 Main St", "city": "Springfield"},
            "shippingAddress": {"line1": "1 Main St", "city": "Springfield"},
            "paymentMethod": "card",
            **extra,
        }
    return _payload
